"""Main entry point for the contactpilot automation service."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone

from .automation.orchestrator import AutomationOrchestrator
from .browser import BrowserInstanceManager, BrowserPoolConfig
from .config import Config, load_config, validate_config
from .monitoring.health import HealthServer
from .remote import RemoteController, RemoteControlServer
from .storage import ScreenshotManager, SessionStore
from .utils.rate_limiter import RateLimiter

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


class ContactPilotService:
    """Owns every long-lived component and their start/stop order."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False
        self._stop_event = asyncio.Event()
        self._stop_lock = asyncio.Lock()
        self._stop_task: asyncio.Task | None = None
        self._started_at = datetime.now(timezone.utc)

        self.rate_limiter = RateLimiter(
            max_requests_per_minute=config.max_requests_per_minute,
            delay=config.rate_limit_delay,
        )
        self.pool = BrowserInstanceManager(
            BrowserPoolConfig(
                max_instances=config.max_instances,
                max_tabs_per_instance=config.max_tabs_per_instance,
                idle_timeout=config.idle_timeout,
                cleanup_interval=config.cleanup_interval,
                headless=config.headless,
                disable_sandbox=config.disable_sandbox,
                viewport=config.viewport,
                user_agent=config.user_agent,
                args=list(config.browser_args),
            )
        )
        self.screenshots = ScreenshotManager(
            config.screenshot_dir,
            max_screenshots=config.max_screenshots,
            max_storage_bytes=config.max_storage_bytes,
            compression=config.screenshot_compression,
            quality=config.screenshot_quality,
            default_expiry=config.screenshot_expiry_hours * 3600 or None,
        )
        self.sessions = SessionStore(session_ttl=config.session_ttl, job_ttl=config.job_ttl)
        self.orchestrator = AutomationOrchestrator.from_config(
            config, self.pool, self.rate_limiter, self.screenshots
        )
        self.controller = RemoteController(
            self.pool,
            self.sessions,
            self.screenshots,
            command_timeout=config.command_timeout,
            navigation_timeout=config.navigation_timeout,
            fill_delay=config.fill_delay,
            field_timeout=config.field_timeout,
            rate_limiter=self.rate_limiter,
        )
        self.remote_server = RemoteControlServer(
            self.controller,
            self.sessions,
            self.orchestrator,
            host=config.remote_host,
            port=config.remote_port,
            enabled=config.remote_enabled,
        )
        self.health_server = HealthServer(
            host=config.health_host,
            port=config.health_port,
            status_provider=self._health_snapshot,
            enabled=config.health_enabled,
        )

    def _health_snapshot(self) -> dict:
        """Provide a lightweight status dict for health endpoints."""
        uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
        pool_stats = self.pool.get_stats()
        storage = self.screenshots.get_storage_stats()
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": round(uptime, 1),
            "pool": {
                "instances": pool_stats.total_instances,
                "tabs": pool_stats.total_tabs,
                "active_instances": pool_stats.active_instances,
                "idle_instances": pool_stats.idle_instances,
            },
            "screenshots": {
                "count": storage.total_screenshots,
                "bytes": storage.total_size,
            },
            "sessions": self.sessions.get_stats(),
            "remote_commands": self.controller.get_stats(),
            "rate_limited_domains": len(self.rate_limiter.get_status()),
        }

    async def start(self):
        """Start all components and block until stop() is called."""
        logger.info("Starting contactpilot...")
        self._running = True

        await self.sessions.start()
        await self.pool.start()
        await self.remote_server.start()
        await self.health_server.start()

        logger.info("contactpilot running")
        await self._stop_event.wait()

    async def stop(self):
        """Stop all components (idempotent)."""
        async with self._stop_lock:
            if self._stop_task is None:
                self._stop_task = asyncio.create_task(self._stop_impl())
            stop_task = self._stop_task
        await stop_task

    async def _stop_impl(self):
        logger.info("Stopping contactpilot...")
        self._running = False

        # Reverse start order
        await self.health_server.stop()
        await self.remote_server.stop()
        await self.sessions.close()
        await self.pool.cleanup()
        expired = await self.screenshots.cleanup_expired()
        if expired:
            logger.info("Removed %s expired screenshot(s)", expired)

        self._stop_event.set()
        logger.info("contactpilot stopped")


async def run_service():
    """Run the contactpilot service."""
    config = load_config()

    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        sys.exit(1)

    service = ContactPilotService(config)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

    try:
        await service.start()
    finally:
        await service.stop()


def main():
    """Entry point."""
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
