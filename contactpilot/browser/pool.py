"""Browser instance pool: owns every Playwright browser process and page."""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
import time
from dataclasses import asdict, replace
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..errors import (
    BrowserLaunchError,
    InstanceLimitError,
    InstanceNotFoundError,
    TabLimitError,
    TabNotFoundError,
)
from .constants import DEFAULT_LOCALE, DEFAULT_TIMEZONE, INSTANCE_ID_PREFIX, TAB_ID_PREFIX, USER_AGENTS
from .models import BrowserInstance, BrowserPoolConfig, InstanceOptions, PoolStats, TabInfo

logger = logging.getLogger(__name__)

Launcher = Callable[[bool], Awaitable[Browser]]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class BrowserInstanceManager:
    """
    Single owner of the instance-id -> BrowserInstance map.

    Lifecycle operations (create/close) are serialized through one lock that is
    held only while the map is mutated; launching a browser, opening a page and
    closing handles all happen outside of it so that page-level work on live
    instances is never blocked by a slow launch.
    """

    def __init__(self, config: BrowserPoolConfig | None = None, launcher: Launcher | None = None):
        self.config = config or BrowserPoolConfig()
        self._launcher = launcher
        self._playwright: Optional[Playwright] = None
        self._instances: dict[str, BrowserInstance] = {}
        self._tab_owner: dict[str, str] = {}
        self._pending_launches = 0
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the idle-cleanup loop. Browsers are launched lazily."""
        if self._cleanup_task is None and self.config.cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            "Browser pool started (max %s instances, %s tabs each)",
            self.config.max_instances,
            self.config.max_tabs_per_instance,
        )

    async def cleanup(self) -> None:
        """Close every instance and stop the Playwright driver."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for instance_id in list(self._instances):
            await self.close_instance(instance_id)

        try:
            if self._playwright:
                await self._playwright.stop()
        except Exception as exc:  # pragma: no cover
            logger.warning("Playwright stop error: %s", exc)
        finally:
            self._playwright = None

        logger.info("Browser pool stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            try:
                closed = await self.cleanup_idle_instances()
                if closed:
                    logger.info("Closed %s idle browser instance(s)", closed)
            except Exception as exc:
                logger.warning("Idle cleanup failed: %s", exc)

    async def _launch(self, headless: bool) -> Browser:
        if self._launcher is not None:
            return await self._launcher(headless)
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        sandbox_args: list[str] = []
        if self.config.disable_sandbox:
            sandbox_args = ["--no-sandbox", "--disable-setuid-sandbox"]
            logger.warning("Chromium sandbox disabled via CONTACTPILOT_DISABLE_CHROMIUM_SANDBOX=1")
        return await self._playwright.chromium.launch(
            headless=headless,
            chromium_sandbox=not self.config.disable_sandbox,
            args=[*self.config.args, *sandbox_args],
        )

    async def _launch_with_retry(self, headless: bool) -> Browser:
        last_exc: Exception | None = None
        for attempt in (1, 2):
            try:
                return await self._launch(headless)
            except Exception as exc:
                last_exc = exc
                logger.warning("Browser launch attempt %s failed: %s", attempt, exc)
        raise BrowserLaunchError(f"Browser launch failed: {last_exc}")

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    async def create_instance(
        self,
        instance_id: str | None = None,
        options: InstanceOptions | None = None,
    ) -> BrowserInstance:
        """Launch a browser process with one initial tab."""
        options = options or InstanceOptions()
        instance_id = instance_id or _new_id(INSTANCE_ID_PREFIX)

        async with self._lock:
            if instance_id in self._instances:
                raise BrowserLaunchError(f"Instance {instance_id} already exists")
            if len(self._instances) + self._pending_launches >= self.config.max_instances:
                raise InstanceLimitError(
                    f"Maximum browser instances ({self.config.max_instances}) reached"
                )
            self._pending_launches += 1

        try:
            viewport = dict(options.viewport or self.config.viewport)
            user_agent = options.user_agent or self.config.user_agent or random.choice(USER_AGENTS)
            headless = self.config.headless if options.headless is None else options.headless

            browser = await self._launch_with_retry(headless)
            try:
                context = await browser.new_context(
                    viewport=viewport,
                    user_agent=user_agent,
                    ignore_https_errors=True,
                    locale=DEFAULT_LOCALE,
                    timezone_id=DEFAULT_TIMEZONE,
                )
                page = await context.new_page()
            except Exception as exc:
                await self._safe_close(browser)
                raise BrowserLaunchError(f"Browser context setup failed: {exc}") from exc

            instance = BrowserInstance(
                id=instance_id,
                browser=browser,
                context=context,
                viewport=viewport,
                user_agent=user_agent,
            )
            tab = TabInfo(id=_new_id(TAB_ID_PREFIX), instance_id=instance_id, page=page)
            instance.tabs[tab.id] = tab
            browser.on("disconnected", lambda _browser: self._handle_disconnect(instance_id))

            async with self._lock:
                self._instances[instance_id] = instance
                self._tab_owner[tab.id] = instance_id
        finally:
            async with self._lock:
                self._pending_launches -= 1

        logger.info("Created browser instance %s", instance_id)
        return instance

    def _handle_disconnect(self, instance_id: str) -> None:
        """Drop a disconnected instance so its handle is never handed out again."""
        instance = self._instances.pop(instance_id, None)
        if instance is None:
            return
        instance.healthy = False
        for tab_id in instance.tabs:
            self._tab_owner.pop(tab_id, None)
        logger.warning("Browser instance %s disconnected", instance_id)

    async def is_healthy(self, instance: BrowserInstance) -> bool:
        """Lightweight introspection to confirm the process still answers."""
        if not instance.healthy:
            return False
        try:
            if not instance.browser.is_connected():
                return False
            _ = instance.context.pages
            return True
        except Exception as exc:
            logger.debug("Health check failed for %s: %s", instance.id, exc)
            return False

    async def acquire_instance(self) -> BrowserInstance:
        """Return a healthy instance with free tab capacity, launching one if needed."""
        for instance in list(self._instances.values()):
            if len(instance.tabs) >= self.config.max_tabs_per_instance:
                continue
            if await self.is_healthy(instance):
                instance.touch()
                return instance
            logger.warning("Discarding unhealthy browser instance %s", instance.id)
            await self.close_instance(instance.id)
        return await self.create_instance()

    def get_instance(self, instance_id: str) -> Optional[BrowserInstance]:
        return self._instances.get(instance_id)

    def get_all_instances(self) -> list[BrowserInstance]:
        return list(self._instances.values())

    async def close_instance(self, instance_id: str) -> bool:
        async with self._lock:
            instance = self._instances.pop(instance_id, None)
            if instance is None:
                return False
            for tab_id in instance.tabs:
                self._tab_owner.pop(tab_id, None)

        for tab in list(instance.tabs.values()):
            await self._safe_close(tab.page)
        instance.tabs.clear()
        instance.healthy = False
        await self._safe_close(instance.context)
        await self._safe_close(instance.browser)
        logger.info("Closed browser instance %s", instance_id)
        return True

    # ------------------------------------------------------------------
    # Tabs
    # ------------------------------------------------------------------

    async def create_tab(self, instance_id: str, url: str | None = None, timeout: float = 30.0) -> str:
        """Open a page in an existing instance, optionally navigating it."""
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"Browser instance {instance_id} not found")
        if len(instance.tabs) >= self.config.max_tabs_per_instance:
            raise TabLimitError(
                f"Maximum tabs per instance ({self.config.max_tabs_per_instance}) reached"
            )

        page = await instance.context.new_page()
        tab = TabInfo(id=_new_id(TAB_ID_PREFIX), instance_id=instance_id, page=page)

        async with self._lock:
            owner = self._instances.get(instance_id)
            registered = owner is not None and len(owner.tabs) < self.config.max_tabs_per_instance
            if registered:
                owner.tabs[tab.id] = tab
                self._tab_owner[tab.id] = instance_id
                owner.touch()

        if not registered:
            await self._safe_close(page)
            if instance_id not in self._instances:
                raise InstanceNotFoundError(f"Browser instance {instance_id} closed")
            raise TabLimitError(
                f"Maximum tabs per instance ({self.config.max_tabs_per_instance}) reached"
            )

        if url:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        return tab.id

    def get_tab_info(self, tab_id: str) -> Optional[TabInfo]:
        instance_id = self._tab_owner.get(tab_id)
        if instance_id is None:
            return None
        instance = self._instances.get(instance_id)
        return instance.tabs.get(tab_id) if instance else None

    def get_page(self, tab_id: str) -> Page:
        tab = self.get_tab_info(tab_id)
        if tab is None:
            raise TabNotFoundError(f"Tab {tab_id} not found")
        return tab.page

    def get_all_tabs(self) -> list[TabInfo]:
        return [tab for instance in self._instances.values() for tab in instance.tabs.values()]

    async def close_tab(self, tab_id: str) -> bool:
        async with self._lock:
            instance_id = self._tab_owner.pop(tab_id, None)
            instance = self._instances.get(instance_id) if instance_id else None
            tab = instance.tabs.pop(tab_id, None) if instance else None
        if tab is None:
            return False
        await self._safe_close(tab.page)
        return True

    def update_activity(self, instance_id: str, tab_id: str | None = None) -> None:
        instance = self._instances.get(instance_id)
        if instance is None:
            return
        instance.touch()
        if tab_id and tab_id in instance.tabs:
            instance.tabs[tab_id].last_activity = instance.last_activity

    # ------------------------------------------------------------------
    # Maintenance & introspection
    # ------------------------------------------------------------------

    async def cleanup_idle_instances(self) -> int:
        now = time.time()
        stale = [
            instance.id
            for instance in self._instances.values()
            if not instance.healthy or now - instance.last_activity >= self.config.idle_timeout
        ]
        closed = 0
        for instance_id in stale:
            if await self.close_instance(instance_id):
                closed += 1
        return closed

    def get_stats(self) -> PoolStats:
        now = time.time()
        instances = list(self._instances.values())
        stats = PoolStats(
            total_instances=len(instances),
            total_tabs=sum(len(i.tabs) for i in instances),
        )
        for instance in instances:
            if now - instance.last_activity >= self.config.idle_timeout:
                stats.idle_instances += 1
            else:
                stats.active_instances += 1
        if instances:
            stats.oldest_instance = min(i.created_at for i in instances)
            stats.newest_instance = max(i.created_at for i in instances)
        return stats

    def update_config(self, **changes: Any) -> BrowserPoolConfig:
        unknown = set(changes) - set(asdict(self.config))
        if unknown:
            raise ValueError(f"Unknown pool settings: {', '.join(sorted(unknown))}")
        self.config = replace(self.config, **changes)
        return self.config

    def get_config(self) -> dict[str, Any]:
        return asdict(self.config)

    @staticmethod
    async def _safe_close(handle: Any) -> None:
        if handle is None:
            return
        try:
            await handle.close()
        except PlaywrightError as exc:
            logger.debug("Close failed: %s", exc)
        except Exception as exc:  # pragma: no cover
            logger.warning("Close error: %s", exc)
