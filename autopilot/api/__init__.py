"""HTTP API for Content Autopilot."""
