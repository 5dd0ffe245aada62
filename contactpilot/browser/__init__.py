"""Browser pool management."""

from .models import BrowserInstance, BrowserPoolConfig, InstanceOptions, PoolStats, TabInfo
from .pool import BrowserInstanceManager

__all__ = [
    "BrowserInstance",
    "BrowserInstanceManager",
    "BrowserPoolConfig",
    "InstanceOptions",
    "PoolStats",
    "TabInfo",
]
