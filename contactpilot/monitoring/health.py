"""Health and metrics endpoints for the automation service."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator

from aiohttp import web

logger = logging.getLogger(__name__)

METRIC_PREFIX = "contactpilot"


def _flatten(data: dict[str, Any], prefix: str = "") -> Iterator[tuple[str, float]]:
    """Yield numeric leaves of a nested status dict as ``a_b_c`` metric names."""
    for key, value in data.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        name = name.replace(".", "_").replace("-", "_")
        if isinstance(value, bool):
            yield name, int(value)
        elif isinstance(value, (int, float)):
            yield name, value
        elif isinstance(value, dict):
            yield from _flatten(value, name)


class HealthServer:
    """Serves ``/healthz`` (JSON) and ``/metrics`` (Prometheus text)."""

    def __init__(
        self,
        host: str,
        port: int,
        status_provider: Callable[[], dict],
        enabled: bool = True,
    ):
        self.host = host
        self.port = port
        self.status_provider = status_provider
        self.enabled = enabled
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self.app = web.Application()
        self.app.router.add_get("/healthz", self._handle_health)
        self.app.router.add_get("/metrics", self._handle_metrics)

    async def start(self):
        if not self.enabled:
            logger.info("Health server disabled")
            return

        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("Health server listening on %s:%s", self.host, self.port)

    async def stop(self):
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    def _snapshot(self) -> dict:
        try:
            return self.status_provider() or {}
        except Exception as exc:
            logger.warning("Health status provider failed: %s", exc)
            return {"status": "error", "message": str(exc)}

    async def _handle_health(self, request: web.Request) -> web.Response:
        payload = self._snapshot()
        payload.setdefault("status", "ok")
        status = 200 if payload["status"] == "ok" else 503
        return web.json_response(payload, status=status)

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        lines = [f"{METRIC_PREFIX}_{name} {value}" for name, value in _flatten(self._snapshot())]
        if not lines:
            lines.append(f'{METRIC_PREFIX}_status{{state="empty"}} 1')
        return web.Response(text="\n".join(lines) + "\n")
