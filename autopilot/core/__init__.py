"""Core configuration for Content Autopilot."""
from .config import Settings, settings

__all__ = ["Settings", "settings"]
