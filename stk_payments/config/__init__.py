"""Configuration package for STK payments."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
