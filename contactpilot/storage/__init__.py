"""Storage modules for contactpilot."""

from .screenshots import ScreenshotManager
from .sessions import SessionStore

__all__ = ["ScreenshotManager", "SessionStore"]
