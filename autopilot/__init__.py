"""Content Autopilot - automation execution engine for content production."""

__version__ = "1.0.0"
