"""Configuration package for the backend operations."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
