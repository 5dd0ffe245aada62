"""End-to-end contact automation for a single website."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..analyzer.captcha import CaptchaDetector
from ..analyzer.captcha_solver import CaptchaSolver
from ..analyzer.discovery import ContactPageDiscoverer
from ..analyzer.forms import FormDetector
from ..analyzer.models import CaptchaDetectionResult, FormAnalysisResult
from ..analyzer.rules import ERROR_PHRASES, SUCCESS_PHRASES
from ..analyzer.scraper import WebScraper
from ..browser.pool import BrowserInstanceManager
from ..errors import (
    AutomationTimeoutError,
    BrowserDisconnectedError,
    CaptchaError,
    NavigationError,
    RateLimitError,
    StructuredError,
    ValidationError,
    structured_error_from_exception,
)
from ..storage.screenshots import ScreenshotManager, ScreenshotOptions
from ..utils.domains import (
    comparable_url,
    is_valid_http_url,
    join_path,
    normalize_website,
    registered_domain,
)
from ..utils.rate_limiter import RateLimiter
from .control import AutomationControl
from .filler import FormFillingEngine
from .models import (
    AutomationRequest,
    AutomationResult,
    AutomationStage,
    FieldInput,
    SubmissionResult,
)
from .profiles import SiteProfile, build_contact_data, select_profile
from .success import check_submission_success

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

DISCOVERY_MAX_PAGES = 3


@dataclass
class _Lease:
    """Pool handles held by one attempt; released in ``run``'s finally block."""

    instance_id: Optional[str] = None
    tab_id: Optional[str] = None


class AutomationOrchestrator:
    """Drives one attempt through the pipeline stages and always returns a result."""

    def __init__(
        self,
        pool: BrowserInstanceManager,
        rate_limiter: RateLimiter,
        screenshots: ScreenshotManager | None = None,
        captcha_detector: CaptchaDetector | None = None,
        captcha_solver: CaptchaSolver | None = None,
        form_detector: FormDetector | None = None,
        scraper: WebScraper | None = None,
        discoverer: ContactPageDiscoverer | None = None,
        profiles: Iterable[SiteProfile] = (),
        *,
        navigation_timeout: float = 30.0,
        settle_delay: float = 2.0,
        post_submit_wait: float = 5.0,
        default_timeout: float = 120.0,
        field_timeout: float = 5.0,
        fill_delay: float = 0.1,
        submit_delay: float = 2.0,
        max_retries: int = 3,
        success_phrases: Iterable[str] = SUCCESS_PHRASES,
        error_phrases: Iterable[str] = ERROR_PHRASES,
    ):
        self.pool = pool
        self.rate_limiter = rate_limiter
        self.screenshots = screenshots
        self.captcha_detector = captcha_detector or CaptchaDetector()
        self.captcha_solver = captcha_solver or CaptchaSolver(self.captcha_detector)
        self.form_detector = form_detector or FormDetector()
        self.scraper = scraper or WebScraper()
        self.discoverer = discoverer or ContactPageDiscoverer(
            scraper=self.scraper,
            form_detector=self.form_detector,
            rate_limiter=rate_limiter,
            navigation_timeout=navigation_timeout,
        )
        self.profiles = list(profiles)
        self.navigation_timeout = navigation_timeout
        self.settle_delay = settle_delay
        self.post_submit_wait = post_submit_wait
        self.default_timeout = default_timeout
        self.field_timeout = field_timeout
        self.fill_delay = fill_delay
        self.submit_delay = submit_delay
        self.max_retries = max_retries
        self.success_phrases = list(success_phrases)
        self.error_phrases = list(error_phrases)

    @classmethod
    def from_config(
        cls,
        config: "Config",
        pool: BrowserInstanceManager,
        rate_limiter: RateLimiter,
        screenshots: ScreenshotManager | None = None,
    ) -> "AutomationOrchestrator":
        detector = CaptchaDetector()
        form_detector = FormDetector()
        scraper = WebScraper()
        return cls(
            pool,
            rate_limiter,
            screenshots,
            captcha_detector=detector,
            captcha_solver=CaptchaSolver(
                detector,
                grace_period=config.captcha_grace_period,
                manual_wait=config.captcha_manual_wait,
                enabled=config.captcha_solving_enabled,
            ),
            form_detector=form_detector,
            scraper=scraper,
            discoverer=ContactPageDiscoverer(
                scraper=scraper,
                form_detector=form_detector,
                rate_limiter=rate_limiter,
                contact_paths=config.contact_paths,
                url_weights=config.url_keyword_weights,
                title_weights=config.title_keyword_weights,
                navigation_timeout=config.navigation_timeout,
            ),
            profiles=config.site_profiles,
            navigation_timeout=config.navigation_timeout,
            settle_delay=config.settle_delay,
            post_submit_wait=config.post_submit_wait,
            default_timeout=config.request_timeout,
            field_timeout=config.field_timeout,
            fill_delay=config.fill_delay,
            submit_delay=config.submit_delay,
            max_retries=config.max_retries,
            success_phrases=config.success_phrases,
            error_phrases=config.error_phrases,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        request: AutomationRequest,
        control: AutomationControl | None = None,
    ) -> AutomationResult:
        """Run one attempt. Never raises; failures land in ``result.error``."""
        result = AutomationResult(success=False)
        website = normalize_website(request.website)
        if not is_valid_http_url(website):
            return self._fail(result, ValidationError(f"Invalid website URL: {request.website!r}").to_structured())

        domain = registered_domain(website)
        if not self.rate_limiter.check_rate_limit(website):
            error = RateLimitError(domain, self.rate_limiter.retry_after(website))
            return self._fail(result, error.to_structured())

        control = control or AutomationControl()
        lease = _Lease()
        timeout = request.timeout or self.default_timeout
        logger.info("Automation started for %s", website)
        try:
            await asyncio.wait_for(
                self._run_steps(website, request, result, control, lease),
                timeout=timeout,
            )
            result.success = True
            self._advance(result, AutomationStage.COMPLETED)
        except asyncio.TimeoutError:
            error = AutomationTimeoutError(
                f"Automation timed out after {timeout:.0f}s at stage {result.stage.value}"
            )
            self._fail(result, error.to_structured())
        except Exception as exc:
            logger.warning("Automation failed for %s at %s: %s", website, result.stage.value, exc)
            if await self._browser_lost(lease):
                error = BrowserDisconnectedError(
                    f"Browser disconnected during {result.stage.value}: {exc}"
                ).to_structured()
            else:
                error = structured_error_from_exception(exc)
            self._fail(result, error)
        finally:
            await self._release(lease)

        logger.info(
            "Automation finished for %s: success=%s contact_page=%s",
            website,
            result.success,
            result.contact_page_url,
        )
        return result

    @staticmethod
    def _advance(result: AutomationResult, stage: AutomationStage) -> None:
        result.stage = stage
        logger.debug("Stage -> %s", stage.value)

    def _fail(self, result: AutomationResult, error: StructuredError) -> AutomationResult:
        result.success = False
        result.error = error
        self._advance(result, AutomationStage.FAILED)
        return result

    async def _browser_lost(self, lease: _Lease) -> bool:
        if not lease.instance_id:
            return False
        instance = self.pool.get_instance(lease.instance_id)
        return instance is None or not await self.pool.is_healthy(instance)

    async def _release(self, lease: _Lease) -> None:
        if lease.tab_id:
            await self.pool.close_tab(lease.tab_id)
        if lease.instance_id:
            instance = self.pool.get_instance(lease.instance_id)
            if instance is not None and not await self.pool.is_healthy(instance):
                await self.pool.close_instance(lease.instance_id)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_steps(
        self,
        website: str,
        request: AutomationRequest,
        result: AutomationResult,
        control: AutomationControl,
        lease: _Lease,
    ) -> None:
        profile = select_profile(website, self.profiles)

        await control.checkpoint("browser acquisition")
        instance = await self.pool.acquire_instance()
        lease.instance_id = instance.id
        lease.tab_id = await self.pool.create_tab(instance.id)
        page = self.pool.get_page(lease.tab_id)
        self._advance(result, AutomationStage.BROWSER_ACQUIRED)

        await control.checkpoint("navigation")
        await self._navigate(page, website)
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)
        self._advance(result, AutomationStage.NAVIGATED)

        await control.checkpoint("captcha check")
        await self._handle_captcha(page, request, result)

        await control.checkpoint("form analysis")
        analysis = await self.form_detector.analyze_forms(page)
        result.forms_found = analysis.forms
        self._advance(result, AutomationStage.FORMS_ANALYZED)

        await control.checkpoint("data extraction")
        await self._scrape_into(page, result)
        self._advance(result, AutomationStage.DATA_SCRAPED)

        await control.checkpoint("contact page resolution")
        analysis = await self._resolve_contact_page(page, website, request, profile, result, analysis)
        self._advance(result, AutomationStage.CONTACT_PAGE_RESOLVED)
        self.pool.update_activity(instance.id, lease.tab_id)

        if request.enable_auto_submit:
            await control.checkpoint("form submission")
            result.submission_result = await self._auto_submit(page, website, request, profile, result, analysis)
            self._advance(result, AutomationStage.FORM_SUBMITTED)

        result.screenshot_id = await self._capture_evidence(page)

    async def _navigate(self, page: Page, url: str) -> None:
        """Navigate waiting for network idle, retrying once on DOM content loaded."""
        timeout_ms = self.navigation_timeout * 1000
        try:
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            return
        except (PlaywrightTimeoutError, PlaywrightError) as exc:
            logger.warning("Navigation to %s did not settle (%s); retrying", url, exc)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except (PlaywrightTimeoutError, PlaywrightError) as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc}") from exc

    async def _handle_captcha(self, page: Page, request: AutomationRequest, result: AutomationResult) -> None:
        detection = await self.captcha_detector.detect_captcha(page)
        result.captcha_status.detected = detection.is_captcha
        result.captcha_status.captcha_type = detection.captcha_type
        self._advance(result, AutomationStage.CAPTCHA_CHECKED)

        if detection.is_captcha:
            self._advance(result, AutomationStage.CAPTCHA_SOLVING)
            await self._solve_captcha(page, detection, request, result)

        result.anti_bot_protection = await self.captcha_detector.detect_anti_bot_protection(page)

    async def _solve_captcha(
        self,
        page: Page,
        detection: CaptchaDetectionResult,
        request: AutomationRequest,
        result: AutomationResult,
    ) -> None:
        solved = await self.captcha_solver.solve(page)
        result.captcha_status.solved = solved.success
        result.captcha_status.error = None if solved.success else (solved.error or "CAPTCHA not solved")
        if not solved.success:
            logger.info("CAPTCHA (%s) unsolved: %s", detection.captcha_type, result.captcha_status.error)
            if request.require_captcha_solved:
                raise CaptchaError(result.captcha_status.error)

    async def _recheck_protection(self, page: Page, request: AutomationRequest, result: AutomationResult) -> None:
        """Observe CAPTCHA and anti-bot markers again after navigating within the attempt."""
        detection = await self.captcha_detector.detect_captcha(page)
        if detection.is_captcha:
            result.captcha_status.detected = True
            result.captcha_status.captcha_type = detection.captcha_type
            await self._solve_captcha(page, detection, request, result)
        result.anti_bot_protection = await self.captcha_detector.detect_anti_bot_protection(page)

    async def _scrape_into(self, page: Page, result: AutomationResult) -> None:
        scrape = await self.scraper.scrape_page(page)
        extracted = result.data_extracted
        if scrape.success and scrape.data is not None:
            for email in scrape.data.emails:
                if email not in extracted.emails:
                    extracted.emails.append(email)
            for phone in scrape.data.phones:
                if phone not in extracted.phones:
                    extracted.phones.append(phone)
            for link in scrape.data.contact_links:
                if link not in extracted.contact_links:
                    extracted.contact_links.append(link)
        forms = result.forms_found or []
        extracted.forms_count = len(forms)
        extracted.contact_forms_count = sum(1 for f in forms if f.is_contact_form)

    async def _page_title(self, page: Page) -> str:
        try:
            return await page.title()
        except PlaywrightError:
            return ""

    async def _open_contact_page(
        self,
        page: Page,
        url: str,
        domain: str,
        request: AutomationRequest,
        result: AutomationResult,
    ) -> FormAnalysisResult:
        await self.rate_limiter.wait_for_delay(domain)
        await self._navigate(page, url)
        await self._recheck_protection(page, request, result)
        analysis = await self.form_detector.analyze_forms(page)
        result.forms_found = analysis.forms
        await self._scrape_into(page, result)
        return analysis

    async def _resolve_contact_page(
        self,
        page: Page,
        website: str,
        request: AutomationRequest,
        profile: SiteProfile,
        result: AutomationResult,
        analysis: FormAnalysisResult,
    ) -> FormAnalysisResult:
        domain = registered_domain(website)

        if profile.contact_url:
            logger.info("Using %s profile contact page %s", profile.name, profile.contact_url)
            analysis = await self._open_contact_page(page, profile.contact_url, domain, request, result)
            result.contact_page_url = profile.contact_url
            return analysis

        # The site root is never reported as the contact page, whatever forms it carries.
        current_url = page.url
        title = await self._page_title(page)
        on_root = comparable_url(current_url) == comparable_url(join_path(website, "/"))
        if not on_root and self.discoverer.is_contact_page(current_url, title):
            result.contact_page_url = current_url
            return analysis

        detection = await self.discoverer.detect_contact_pages(
            page,
            website,
            max_pages=DISCOVERY_MAX_PAGES,
            stop_on_form=True,
            extra_paths=profile.extra_contact_paths,
            admitted=True,
        )
        if detection.error:
            logger.warning("Contact page discovery skipped for %s: %s", website, detection.error)
        best = detection.best_page
        if best is None:
            logger.info("No contact page found for %s", website)
            return analysis

        result.contact_page_url = best.url
        return await self._open_contact_page(page, best.url, domain, request, result)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @staticmethod
    def _field_inputs(data: dict[str, str], profile: SiteProfile) -> list[FieldInput]:
        fields = [FieldInput(value=value, name=key, label=key) for key, value in data.items()]
        for key, aliases in profile.field_aliases.items():
            if key not in data:
                continue
            fields.extend(FieldInput(value=data[key], label=alias) for alias in aliases)
        return fields

    def _blocking_protection(self, result: AutomationResult) -> list[str]:
        """Anti-bot groups that still apply; a solved CAPTCHA no longer blocks."""
        return [
            protection
            for protection in result.anti_bot_protection.protection_types
            if not (protection == "captcha" and result.captcha_status.solved)
        ]

    async def _auto_submit(
        self,
        page: Page,
        website: str,
        request: AutomationRequest,
        profile: SiteProfile,
        result: AutomationResult,
        analysis: FormAnalysisResult,
    ) -> SubmissionResult:
        blocking = self._blocking_protection(result)
        if blocking:
            return SubmissionResult(
                success=False,
                message=f"Anti-bot protection detected ({', '.join(blocking)}); submission refused",
            )

        recheck = await self.captcha_detector.detect_captcha(page)
        if recheck.is_captcha:
            solved = await self.captcha_solver.solve(page)
            if not solved.success:
                return SubmissionResult(
                    success=False,
                    message=f"CAPTCHA unsolved: {solved.error or recheck.captcha_type}",
                )

        form = analysis.best_contact_form
        if form is None:
            return SubmissionResult(success=False, message="No contact form found")

        data = build_contact_data(request.business_name, website, profile, request.custom_form_data)
        engine = FormFillingEngine(
            page,
            self.form_detector,
            field_timeout=self.field_timeout,
            fill_delay=self.fill_delay,
            submit_delay=self.submit_delay,
            max_retries=self.max_retries,
        )
        mapped = engine.map_fields_to_form(
            self._field_inputs(data, profile),
            form,
            passthrough=bool(request.custom_form_data),
        )
        if not mapped:
            return SubmissionResult(
                success=False, message="No form fields matched the contact data", form_selector=form.selector
            )

        fill = await engine.fill_form(form.selector, mapped)
        if not fill.success:
            return SubmissionResult(
                success=False,
                message="Failed to fill form fields",
                form_selector=form.selector,
                fill_result=fill,
            )

        form_url = page.url
        if not await engine.submit_form(form.selector):
            return SubmissionResult(
                success=False,
                message="Form submission failed",
                form_selector=form.selector,
                fill_result=fill,
            )

        if self.post_submit_wait > 0:
            await asyncio.sleep(self.post_submit_wait)
        check = await check_submission_success(page, form_url, self.success_phrases, self.error_phrases)
        message = (
            "Form submitted successfully"
            if check.success
            else f"Submission not confirmed: {'; '.join(check.reasons)}"
        )
        return SubmissionResult(
            success=check.success,
            message=message,
            form_selector=form.selector,
            fill_result=fill,
            check=check,
        )

    async def _capture_evidence(self, page: Page) -> Optional[str]:
        if self.screenshots is None:
            return None
        try:
            capture = await self.screenshots.take_screenshot(page, ScreenshotOptions(full_page=True))
            return await self.screenshots.save_screenshot(capture.screenshot, capture.metadata)
        except Exception as exc:
            logger.warning("Evidence screenshot failed: %s", exc)
            return None
