"""Best-effort free-tier CAPTCHA handling."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from playwright.async_api import Page

from .captcha import RESPONSE_TOKEN_SCRIPT, CaptchaDetector
from .models import CaptchaSolveResult

logger = logging.getLogger(__name__)

# (frame url fragment, checkbox selector inside that frame)
CHECKBOX_TARGETS: dict[str, tuple[str, str]] = {
    "recaptcha": ("recaptcha", "#recaptcha-anchor, .recaptcha-checkbox-border"),
    "hcaptcha": ("hcaptcha", "#checkbox"),
    "cloudflare": ("challenges.cloudflare.com", 'input[type="checkbox"]'),
}


class CaptchaSolver:
    """
    Tries a small fixed set of strategies, in order:

    1. activate the checkbox challenge and wait a grace period for a token
    2. wait passively for a non-interactive challenge to clear
    3. optionally wait for a human to solve it through the remote channel

    Never raises; a failed attempt is reported with ``success=False``.
    """

    def __init__(
        self,
        detector: CaptchaDetector | None = None,
        grace_period: float = 3.0,
        manual_wait: float = 0.0,
        enabled: bool = True,
    ):
        self.detector = detector or CaptchaDetector()
        self.grace_period = grace_period
        self.manual_wait = manual_wait
        self.enabled = enabled

    async def solve(self, page: Page) -> CaptchaSolveResult:
        detection = await self.detector.detect_captcha(page)
        if not detection.is_captcha:
            return CaptchaSolveResult(success=True, method="none")
        if not self.enabled:
            return CaptchaSolveResult(
                success=False, method="disabled", error="CAPTCHA solving is disabled"
            )

        captcha_type = detection.captcha_type or "other"
        method = "checkbox"
        error: Optional[str] = None
        try:
            clicked = await self._click_checkbox(page, captcha_type)
            if not clicked:
                method = "passive"
            await asyncio.sleep(self.grace_period)
            if await self._is_solved(page):
                logger.info("CAPTCHA (%s) cleared via %s", captcha_type, method)
                return CaptchaSolveResult(success=True, method=method)
            error = f"{captcha_type} CAPTCHA still present after {method} attempt"
        except Exception as exc:
            logger.warning("CAPTCHA %s attempt failed: %s", method, exc)
            error = f"{method} attempt failed: {exc}"

        if self.manual_wait > 0:
            logger.info("Waiting up to %.0fs for manual CAPTCHA solution", self.manual_wait)
            if await self.detector.wait_for_captcha_solution(page, timeout=self.manual_wait):
                return CaptchaSolveResult(success=True, method="manual")
            error = f"{captcha_type} CAPTCHA not solved within {self.manual_wait:.0f}s manual wait"
            method = "manual"

        return CaptchaSolveResult(success=False, method=method, error=error)

    async def _click_checkbox(self, page: Page, captcha_type: str) -> bool:
        target = CHECKBOX_TARGETS.get(captcha_type)
        if target is None:
            return False
        url_fragment, selector = target
        for frame in page.frames:
            if url_fragment not in (frame.url or ""):
                continue
            checkbox = await frame.query_selector(selector)
            if checkbox is None:
                continue
            await checkbox.click()
            logger.debug("Clicked %s checkbox", captcha_type)
            return True
        return False

    async def _is_solved(self, page: Page) -> bool:
        try:
            token = await page.evaluate(RESPONSE_TOKEN_SCRIPT)
        except Exception as exc:
            logger.debug("CAPTCHA token check failed: %s", exc)
            token = ""
        if token:
            return True
        return not (await self.detector.detect_captcha(page)).is_captcha
