"""Cooperative pause/resume/cancel flag for one automation attempt."""

from __future__ import annotations

import asyncio
import logging

from ..errors import AutomationCancelled

logger = logging.getLogger(__name__)


class AutomationControl:
    """
    Checked by the orchestrator between pipeline steps.

    Pausing never interrupts a step in flight; the attempt blocks at the next
    ``checkpoint()`` until resumed or closed.
    """

    def __init__(self):
        self._running = asyncio.Event()
        self._running.set()
        self._closed = False

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set() and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def pause(self) -> None:
        if not self._closed:
            self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def close(self) -> None:
        self._closed = True
        self._running.set()

    async def checkpoint(self, step: str = "") -> None:
        if self._closed:
            raise AutomationCancelled(f"Automation closed before {step or 'next step'}")
        if not self._running.is_set():
            logger.info("Automation paused before %s", step or "next step")
            await self._running.wait()
        if self._closed:
            raise AutomationCancelled(f"Automation closed before {step or 'next step'}")
