"""Executes remote-control commands against pooled pages."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from playwright.async_api import Page

from ..automation.filler import FormFillingEngine
from ..automation.models import FieldInput
from ..browser.pool import BrowserInstanceManager
from ..errors import (
    AuthenticationError,
    ErrorCategory,
    RateLimitError,
    ResourceNotFoundError,
    structured_error_from_exception,
)
from ..storage.screenshots import ScreenshotManager, ScreenshotOptions
from ..storage.sessions import Session, SessionStore
from ..utils.domains import registered_domain
from ..utils.rate_limiter import RateLimiter
from .protocol import CommandType, RemoteCommand, RemoteResponse

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100


@dataclass
class CommandRecord:
    type: str
    success: bool
    execution_time: float
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class RemoteController:
    """
    Validates, authenticates and runs one command at a time per call.

    The token is checked before any browser work. Every command is bounded by
    ``command_timeout`` (OPEN by ``navigation_timeout``). With a ``rate_limiter``,
    OPEN waits up to ``command_timeout`` for a slot in the target domain's window.
    """

    def __init__(
        self,
        pool: BrowserInstanceManager,
        sessions: SessionStore,
        screenshots: ScreenshotManager,
        command_timeout: float = 10.0,
        navigation_timeout: float = 30.0,
        fill_delay: float = 0.1,
        field_timeout: float = 5.0,
        history_size: int = HISTORY_SIZE,
        rate_limiter: RateLimiter | None = None,
    ):
        self.pool = pool
        self.sessions = sessions
        self.screenshots = screenshots
        self.command_timeout = command_timeout
        self.navigation_timeout = navigation_timeout
        self.fill_delay = fill_delay
        self.field_timeout = field_timeout
        self.rate_limiter = rate_limiter
        self._history: deque[CommandRecord] = deque(maxlen=history_size)

    async def execute(self, raw: Any) -> RemoteResponse:
        started = time.monotonic()
        command_type = str(raw.get("type")) if isinstance(raw, dict) else "INVALID"
        try:
            command = RemoteCommand.parse(raw)
            session = self.sessions.validate(command.token)
            if session is None:
                raise AuthenticationError("Invalid or expired session token")
            if command.type == CommandType.OPEN:
                await self._admit(command.data["url"])
            timeout = self.navigation_timeout if command.type == CommandType.OPEN else self.command_timeout
            response = await asyncio.wait_for(self._dispatch(command, session), timeout=timeout)
        except asyncio.TimeoutError:
            response = RemoteResponse(
                success=False,
                error=f"{command_type} timed out",
                error_category=ErrorCategory.TIMEOUT,
            )
        except Exception as exc:
            structured = structured_error_from_exception(exc)
            response = RemoteResponse(success=False, error=structured.message, error_category=structured.category)

        response.execution_time = (time.monotonic() - started) * 1000
        self._history.append(
            CommandRecord(
                type=command_type,
                success=response.success,
                execution_time=response.execution_time,
                error=response.error,
            )
        )
        if not response.success:
            logger.info("Remote command %s failed: %s", command_type, response.error)
        return response

    async def _admit(self, url: str) -> None:
        if self.rate_limiter is None:
            return
        if not await self.rate_limiter.acquire(url, timeout=self.command_timeout):
            raise RateLimitError(registered_domain(url), self.rate_limiter.retry_after(url))

    async def _dispatch(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        handlers = {
            CommandType.OPEN: self._open,
            CommandType.FILL: self._fill,
            CommandType.SCREENSHOT: self._screenshot,
            CommandType.CLOSE: self._close,
            CommandType.PAUSE: self._pause,
            CommandType.RESUME: self._resume,
        }
        return await handlers[command.type](command, session)

    def _session_page(self, session: Session) -> Page:
        if not session.tab_id or self.pool.get_tab_info(session.tab_id) is None:
            raise ResourceNotFoundError("No page is open for this session")
        return self.pool.get_page(session.tab_id)

    async def _open(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        url = command.data["url"]
        if session.tab_id and self.pool.get_tab_info(session.tab_id) is not None:
            page = self.pool.get_page(session.tab_id)
        else:
            instance = await self.pool.acquire_instance()
            tab_id = await self.pool.create_tab(instance.id)
            self.sessions.bind(session.token, instance.id, tab_id)
            page = self.pool.get_page(tab_id)

        await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
        if session.instance_id:
            self.pool.update_activity(session.instance_id, session.tab_id)
        return RemoteResponse(
            success=True,
            data={"url": page.url, "title": await page.title(), "tab_id": session.tab_id},
        )

    async def _fill(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        page = self._session_page(session)
        engine = FormFillingEngine(page, fill_delay=self.fill_delay, field_timeout=self.field_timeout)
        fields = [
            FieldInput(value=str(item["value"]), selector=item["selector"])
            for item in command.data["fields"]
        ]
        result = await engine.fill_form(command.data.get("form_selector"), fields)
        return RemoteResponse(
            success=result.success,
            data=result.to_dict(),
            error=None if result.success else "No fields could be filled",
            error_category=None if result.success else ErrorCategory.FORM_SUBMISSION,
        )

    async def _screenshot(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        page = self._session_page(session)
        try:
            options = ScreenshotOptions(
                format=str(command.data.get("format") or "png"),
                full_page=bool(command.data.get("full_page", False)),
                encoding="base64",
            )
        except ValueError as exc:
            return RemoteResponse(success=False, error=str(exc), error_category=ErrorCategory.VALIDATION)
        capture = await self.screenshots.take_screenshot(page, options)
        data: dict[str, Any] = {"metadata": capture.metadata.to_dict()}
        if command.data.get("save"):
            data["screenshot_id"] = await self.screenshots.save_screenshot(capture.screenshot, capture.metadata)
        return RemoteResponse(success=True, data=data, screenshot=str(capture.screenshot))

    async def _close(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        closed_tab = False
        if session.tab_id:
            closed_tab = await self.pool.close_tab(session.tab_id)
        self.sessions.revoke(session.token)
        return RemoteResponse(success=True, data={"closed": True, "tab_closed": closed_tab})

    async def _pause(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        session.control.pause()
        return RemoteResponse(success=True, data={"paused": True})

    async def _resume(self, command: RemoteCommand, session: Session) -> RemoteResponse:
        session.control.resume()
        return RemoteResponse(success=True, data={"paused": False})

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self, limit: int = 20) -> list[dict[str, Any]]:
        records = list(self._history)[-max(0, limit):] if limit else []
        return [asdict(r) for r in reversed(records)]

    def get_stats(self) -> dict[str, Any]:
        records = list(self._history)
        succeeded = sum(1 for r in records if r.success)
        by_type: dict[str, int] = {}
        for record in records:
            by_type[record.type] = by_type.get(record.type, 0) + 1
        return {
            "total": len(records),
            "succeeded": succeeded,
            "failed": len(records) - succeeded,
            "average_execution_time": (
                round(sum(r.execution_time for r in records) / len(records), 1) if records else 0.0
            ),
            "by_type": by_type,
        }
