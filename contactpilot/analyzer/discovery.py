"""Contact page discovery by link and URL-pattern heuristics."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import unquote, urlparse

from playwright.async_api import Page

from ..utils.domains import comparable_url, join_path, registered_domain, same_site, strip_fragment
from ..utils.rate_limiter import RateLimiter
from .forms import FormDetector
from .models import ContactPageDetectionResult, DetectedContactPage
from .rules import (
    CONTACT_INFO_MARKERS,
    CONTACT_INFO_POINTS,
    CONTACT_LINK_WORDS,
    CONTACT_PAGE_THRESHOLD,
    CONTACT_PATHS,
    CONTACT_TITLE_WEIGHTS,
    CONTACT_URL_WEIGHTS,
    MIN_CANDIDATE_CONFIDENCE,
    PAGE_TYPE_KEYWORDS,
    clamp_confidence,
    contains_any,
    first_match_weight,
)
from .scraper import WebScraper

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 10

LINKS_SCRIPT = """
() => ({
    title: document.title || '',
    text: ((document.body && document.body.innerText) || '').slice(0, 20000),
    links: Array.from(document.querySelectorAll('a[href]')).map((a) => ({
        href: a.href,
        text: (a.textContent || a.getAttribute('title') || '').trim().slice(0, 200),
    })),
})
"""

_SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "data:")


def _url_path(url: str) -> str:
    parsed = urlparse(url)
    return unquote(f"{parsed.path}?{parsed.query}" if parsed.query else parsed.path).lower()


class ContactPageDiscoverer:
    """Finds the most likely contact page on a site."""

    def __init__(
        self,
        scraper: WebScraper | None = None,
        form_detector: FormDetector | None = None,
        rate_limiter: RateLimiter | None = None,
        contact_paths: Iterable[str] | None = None,
        url_weights: list[tuple[str, int]] | None = None,
        title_weights: list[tuple[str, int]] | None = None,
        url_checker: Callable[[str], Awaitable[bool]] | None = None,
        max_candidates: int = MAX_CANDIDATES,
        navigation_timeout: float = 30.0,
    ):
        self.scraper = scraper or WebScraper()
        self.form_detector = form_detector or FormDetector()
        self.rate_limiter = rate_limiter
        self.contact_paths = list(contact_paths or CONTACT_PATHS)
        self.url_weights = list(url_weights or CONTACT_URL_WEIGHTS)
        self.title_weights = list(title_weights or CONTACT_TITLE_WEIGHTS)
        self.url_checker = url_checker or self.scraper.is_url_accessible
        self.max_candidates = max_candidates
        self.navigation_timeout = navigation_timeout

    @staticmethod
    def is_contact_page(url: str, title: str = "") -> bool:
        return contains_any(f"{_url_path(url)} {title}", CONTACT_LINK_WORDS)

    def calculate_pattern_confidence(self, url: str, title: str = "", text: str = "") -> tuple[int, str, bool]:
        """Return (confidence, page_type, has_contact_info) for one page."""
        url_points, _ = first_match_weight(_url_path(url), self.url_weights)
        title_points, _ = first_match_weight(title, self.title_weights)
        has_contact_info = contains_any(text, CONTACT_INFO_MARKERS)
        confidence = clamp_confidence(
            url_points + title_points + (CONTACT_INFO_POINTS if has_contact_info else 0)
        )

        if confidence >= CONTACT_PAGE_THRESHOLD:
            page_type = "contact"
        else:
            page_type = "other"
            haystack = f"{_url_path(url)} {title}"
            for candidate_type, keywords in PAGE_TYPE_KEYWORDS:
                if contains_any(haystack, keywords):
                    page_type = candidate_type
                    break
        return confidence, page_type, has_contact_info

    async def _snapshot(self, page: Page) -> dict:
        try:
            raw = await page.evaluate(LINKS_SCRIPT)
        except Exception as exc:
            logger.warning("Link extraction failed: %s", exc)
            return {}
        return raw if isinstance(raw, dict) else {}

    def candidate_urls(
        self,
        links: list[dict],
        base_url: str,
        current_url: str = "",
        extra_paths: Iterable[str] = (),
    ) -> list[str]:
        """Unvalidated candidates: matching links first, then synthesized paths."""
        excluded = {comparable_url(base_url), comparable_url(join_path(base_url, "/"))}
        if current_url:
            excluded.add(comparable_url(current_url))

        ordered: list[str] = []
        seen: set[str] = set()

        def add(url: str) -> None:
            url = strip_fragment(url or "").strip()
            if not url or url.lower().startswith(_SKIP_SCHEMES):
                return
            key = comparable_url(url)
            if key in excluded or key in seen:
                return
            seen.add(key)
            ordered.append(url)

        for link in links:
            if not isinstance(link, dict):
                continue
            href = str(link.get("href") or "")
            text = str(link.get("text") or "")
            if not href or not same_site(href, base_url):
                continue
            if contains_any(f"{text} {unquote(href)}", CONTACT_LINK_WORDS):
                add(href)

        for path in [*extra_paths, *self.contact_paths]:
            add(join_path(base_url, path))
        return ordered

    async def find_contact_page_urls(
        self, page: Page, base_url: str, extra_paths: Iterable[str] = ()
    ) -> list[str]:
        """Reachable contact-page candidates, best first, capped at ``max_candidates``."""
        snapshot = await self._snapshot(page)
        current_url = ""
        try:
            current_url = page.url
        except Exception:
            current_url = ""
        candidates = self.candidate_urls(snapshot.get("links") or [], base_url, current_url, extra_paths)

        found: list[str] = []
        for url in candidates:
            if len(found) >= self.max_candidates:
                break
            try:
                reachable = await self.url_checker(url)
            except Exception as exc:
                logger.debug("Candidate check failed for %s: %s", url, exc)
                reachable = False
            if reachable:
                found.append(url)
        logger.info("Found %s contact page candidate(s) for %s", len(found), base_url)
        return found

    async def evaluate_current_page(self, page: Page, url: str | None = None) -> Optional[DetectedContactPage]:
        snapshot = await self._snapshot(page)
        url = url or page.url
        title = str(snapshot.get("title") or "")
        text = str(snapshot.get("text") or "")
        confidence, page_type, has_info = self.calculate_pattern_confidence(url, title, text)
        if confidence < MIN_CANDIDATE_CONFIDENCE:
            return None
        forms = await self.form_detector.analyze_forms(page)
        has_form = forms.contact_forms_count > 0
        return DetectedContactPage(
            url=url,
            title=title,
            confidence=confidence,
            detection_method="hybrid" if has_form else "heuristic",
            has_contact_form=has_form,
            has_contact_info=has_info,
            page_type=page_type,
            content_summary=" ".join(text.split())[:200],
        )

    async def detect_contact_pages(
        self,
        page: Page,
        base_url: str,
        max_pages: int | None = None,
        stop_on_form: bool = False,
        extra_paths: Iterable[str] = (),
        admitted: bool = False,
    ) -> ContactPageDetectionResult:
        """
        Visit candidates with ``page`` and score each one.

        A standalone call draws one request from the domain's rate-limit window.
        With ``admitted`` the caller already holds a slot for this attempt, so
        visits are only paced by the limiter's delay.
        """
        domain = registered_domain(base_url)
        if not admitted and self.rate_limiter is not None and not self.rate_limiter.check_rate_limit(base_url):
            return ContactPageDetectionResult(error=f"Rate limit exceeded for {domain}")

        candidates = await self.find_contact_page_urls(page, base_url, extra_paths)
        if max_pages is not None:
            candidates = candidates[:max_pages]

        pages: list[DetectedContactPage] = []
        for index, url in enumerate(candidates):
            if (index or admitted) and self.rate_limiter is not None:
                await self.rate_limiter.wait_for_delay(domain)
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
            except Exception as exc:
                logger.debug("Skipping candidate %s: %s", url, exc)
                continue
            detected = await self.evaluate_current_page(page, url)
            if detected is None:
                continue
            pages.append(detected)
            if stop_on_form and detected.has_contact_form:
                break

        best = None
        for detected in pages:
            if best is None or (detected.has_contact_form, detected.confidence) > (
                best.has_contact_form,
                best.confidence,
            ):
                best = detected
        overall = round(sum(p.confidence for p in pages) / len(pages)) if pages else 0
        return ContactPageDetectionResult(pages=pages, best_page=best, overall_confidence=overall)
