"""CAPTCHA and anti-bot marker detection."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import Page

from .models import AntiBotResult, CaptchaDetectionResult
from .rules import (
    ANTIBOT_DOM_RULES,
    ANTIBOT_POINTS_PER_GROUP,
    ANTIBOT_TEXT_RULES,
    CAPTCHA_POINTS_PER_MATCH,
    CAPTCHA_RULES,
    GENERIC_CAPTCHA_CONFIDENCE,
    GENERIC_CAPTCHA_PHRASES,
    clamp_confidence,
    contains_any,
)

logger = logging.getLogger(__name__)

MARKERS_SCRIPT = """
(selectors) => {
    const matched = [];
    for (const selector of selectors) {
        try {
            if (document.querySelector(selector)) matched.push(selector);
        } catch (e) {}
    }
    const iframes = Array.from(document.querySelectorAll('iframe')).map((f) => f.src || '');
    const text = ((document.body && document.body.innerText) || '').toLowerCase().slice(0, 50000);
    return { matched, iframes, text, title: document.title || '' };
}
"""

RESPONSE_TOKEN_SCRIPT = """
() => {
    const el = document.querySelector('#g-recaptcha-response, [name="g-recaptcha-response"], [name="h-captcha-response"], [name="cf-turnstile-response"]');
    return el ? (el.value || '') : '';
}
"""

POLL_INTERVAL = 2.0


@dataclass
class PageMarkers:
    """Point-in-time snapshot of the DOM markers the detectors look at."""

    matched: set[str] = field(default_factory=set)
    iframes: list[str] = field(default_factory=list)
    text: str = ""
    title: str = ""

    @classmethod
    def from_raw(cls, raw: object) -> "PageMarkers":
        if not isinstance(raw, dict):
            return cls()
        return cls(
            matched={str(s) for s in raw.get("matched") or []},
            iframes=[str(s) for s in raw.get("iframes") or []],
            text=str(raw.get("text") or "").lower(),
            title=str(raw.get("title") or ""),
        )


def _all_selectors() -> list[str]:
    selectors: list[str] = []
    for rule in CAPTCHA_RULES.values():
        selectors.extend(rule["selectors"])
    for group in ANTIBOT_DOM_RULES.values():
        selectors.extend(group)
    return list(dict.fromkeys(selectors))


class CaptchaDetector:
    """Classifies CAPTCHA challenges and broader bot-mitigation walls on a page."""

    def __init__(self):
        self._selectors = _all_selectors()

    async def collect_markers(self, page: Page) -> PageMarkers:
        try:
            raw = await page.evaluate(MARKERS_SCRIPT, self._selectors)
        except Exception as exc:
            logger.warning("Marker collection failed: %s", exc)
            return PageMarkers()
        return PageMarkers.from_raw(raw)

    async def detect_captcha(self, page: Page) -> CaptchaDetectionResult:
        return self.classify_captcha(await self.collect_markers(page))

    async def detect_anti_bot_protection(self, page: Page) -> AntiBotResult:
        return self.classify_anti_bot(await self.collect_markers(page))

    @staticmethod
    def classify_captcha(markers: PageMarkers) -> CaptchaDetectionResult:
        best_type: Optional[str] = None
        best_confidence = 0
        best_markers: list[str] = []

        for captcha_type, rule in CAPTCHA_RULES.items():
            found = [s for s in rule["selectors"] if s in markers.matched]
            for pattern in rule["iframes"]:
                if any(pattern in src for src in markers.iframes):
                    found.append(f"iframe:{pattern}")
            if not found:
                continue
            confidence = clamp_confidence(len(found) * CAPTCHA_POINTS_PER_MATCH)
            if confidence > best_confidence:
                best_type, best_confidence, best_markers = captcha_type, confidence, found

        if best_type is None and contains_any(markers.text, GENERIC_CAPTCHA_PHRASES):
            return CaptchaDetectionResult(
                is_captcha=True,
                captcha_type="other",
                confidence=GENERIC_CAPTCHA_CONFIDENCE,
                matched_markers=["text"],
            )

        return CaptchaDetectionResult(
            is_captcha=best_type is not None,
            captcha_type=best_type,
            confidence=best_confidence,
            matched_markers=best_markers,
        )

    @staticmethod
    def classify_anti_bot(markers: PageMarkers) -> AntiBotResult:
        found: list[str] = []
        for protection, selectors in ANTIBOT_DOM_RULES.items():
            if any(s in markers.matched for s in selectors):
                found.append(protection)
        for protection, phrases in ANTIBOT_TEXT_RULES.items():
            if contains_any(markers.text, phrases):
                found.append(protection)
        return AntiBotResult(
            has_protection=bool(found),
            protection_types=found,
            confidence=clamp_confidence(len(found) * ANTIBOT_POINTS_PER_GROUP),
        )

    async def wait_for_captcha_solution(self, page: Page, timeout: float = 300.0) -> bool:
        """Poll until a response token appears or the CAPTCHA markers disappear."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                token = await page.evaluate(RESPONSE_TOKEN_SCRIPT)
            except Exception as exc:
                logger.debug("CAPTCHA token poll failed: %s", exc)
                token = ""
            if token:
                return True
            if not (await self.detect_captcha(page)).is_captcha:
                return True
            await asyncio.sleep(POLL_INTERVAL)
        return False
