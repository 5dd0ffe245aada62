"""Browser pool data models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Page

from .constants import DEFAULT_VIEWPORT


@dataclass
class BrowserPoolConfig:
    """Limits and launch settings for the browser pool."""

    max_instances: int = 3
    max_tabs_per_instance: int = 10
    idle_timeout: float = 30 * 60
    cleanup_interval: float = 5 * 60
    headless: bool = True
    disable_sandbox: bool = False
    viewport: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    user_agent: str = ""
    args: list[str] = field(default_factory=list)


@dataclass
class InstanceOptions:
    """Per-instance overrides for ``create_instance``."""

    viewport: Optional[dict[str, int]] = None
    user_agent: Optional[str] = None
    headless: Optional[bool] = None


@dataclass
class TabInfo:
    id: str
    instance_id: str
    page: Page
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    @property
    def url(self) -> str:
        try:
            return self.page.url
        except Exception:
            return ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "url": self.url,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }


@dataclass
class BrowserInstance:
    """One browser process and the tabs it hosts."""

    id: str
    browser: Browser
    context: BrowserContext
    viewport: dict[str, int]
    user_agent: str
    tabs: dict[str, TabInfo] = field(default_factory=dict)
    healthy: bool = True
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_activity = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "healthy": self.healthy,
            "tabs": len(self.tabs),
            "viewport": dict(self.viewport),
            "user_agent": self.user_agent,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }


@dataclass
class PoolStats:
    total_instances: int = 0
    total_tabs: int = 0
    active_instances: int = 0
    idle_instances: int = 0
    oldest_instance: Optional[float] = None
    newest_instance: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_instances": self.total_instances,
            "total_tabs": self.total_tabs,
            "active_instances": self.active_instances,
            "idle_instances": self.idle_instances,
            "oldest_instance": self.oldest_instance,
            "newest_instance": self.newest_instance,
        }
