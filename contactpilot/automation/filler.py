"""Form filling and submission on a single page."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional, Union

from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..analyzer.forms import FormDetector
from ..analyzer.models import DetectedField, DetectedForm
from ..analyzer.rules import SUBMIT_SELECTORS
from .models import FieldFillResult, FieldInput, FormDetectionResult, FormFillResult

logger = logging.getLogger(__name__)

TRUTHY_VALUES = ("true", "1", "on", "yes", "checked")
NAVIGATION_WAIT = 10.0

FieldSpec = Union[FieldInput, dict]

SUBMIT_FALLBACK_SCRIPT = """
(form) => {
    if (typeof form.requestSubmit === 'function') form.requestSubmit();
    else form.submit();
    return true;
}
"""


def _as_field_input(spec: FieldSpec) -> FieldInput:
    if isinstance(spec, FieldInput):
        return spec
    return FieldInput.from_dict(spec)


class FormFillingEngine:
    """Fills and submits forms on one page with human-paced input."""

    def __init__(
        self,
        page: Page,
        form_detector: FormDetector | None = None,
        field_timeout: float = 5.0,
        fill_delay: float = 0.1,
        submit_delay: float = 2.0,
        max_retries: int = 3,
    ):
        self.page = page
        self.form_detector = form_detector or FormDetector()
        self.field_timeout = field_timeout
        self.fill_delay = fill_delay
        self.submit_delay = submit_delay
        self.max_retries = max_retries

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_configuration(self) -> dict[str, Any]:
        return {
            "fill_delay": self.fill_delay,
            "submit_delay": self.submit_delay,
            "max_retries": self.max_retries,
            "field_timeout": self.field_timeout,
        }

    def update_configuration(self, **changes: Any) -> dict[str, Any]:
        for key, value in changes.items():
            if key not in ("fill_delay", "submit_delay", "max_retries", "field_timeout"):
                raise ValueError(f"Unknown form filling setting: {key}")
            setattr(self, key, value)
        return self.get_configuration()

    # ------------------------------------------------------------------
    # Detection & mapping
    # ------------------------------------------------------------------

    async def detect_forms(self) -> FormDetectionResult:
        try:
            analysis = await self.form_detector.analyze_forms(self.page)
        except Exception as exc:  # pragma: no cover - analyze_forms does not raise
            return FormDetectionResult(success=False, error=str(exc))
        return FormDetectionResult(success=True, forms=analysis.forms)

    @staticmethod
    def map_fields_to_form(
        fields: Iterable[FieldSpec],
        form: DetectedForm,
        passthrough: bool = True,
    ) -> list[FieldInput]:
        """
        Resolve caller field descriptors onto detected fields.

        Priority: exact selector, name attribute, label substring, placeholder
        substring. Unmatched descriptors are passed through verbatim (or dropped
        when ``passthrough`` is False).
        """
        by_selector = {f.selector: f for f in form.fields}
        used: set[str] = set()
        mapped: list[FieldInput] = []

        def claim(target: DetectedField, spec: FieldInput) -> None:
            used.add(target.selector)
            mapped.append(
                FieldInput(
                    value=spec.value,
                    selector=target.selector,
                    name=target.name or spec.name,
                    label=target.label or spec.label,
                    placeholder=target.placeholder or spec.placeholder,
                )
            )

        for raw in fields:
            spec = _as_field_input(raw)
            if spec.selector and spec.selector in by_selector:
                claim(by_selector[spec.selector], spec)
                continue

            available = [f for f in form.fields if f.selector not in used]
            target: Optional[DetectedField] = None
            if spec.name:
                wanted = spec.name.lower()
                target = next((f for f in available if f.name and f.name.lower() == wanted), None)
            if target is None:
                hint = (spec.label or spec.name or "").lower()
                if hint:
                    target = next((f for f in available if f.label and hint in f.label.lower()), None)
            if target is None:
                hint = (spec.placeholder or spec.label or spec.name or "").lower()
                if hint:
                    target = next(
                        (f for f in available if f.placeholder and hint in f.placeholder.lower()), None
                    )

            if target is not None:
                claim(target, spec)
            elif passthrough:
                if not spec.selector and spec.name:
                    escaped = spec.name.replace('"', '\\"')
                    spec = FieldInput(
                        value=spec.value,
                        selector=f'[name="{escaped}"]',
                        name=spec.name,
                        label=spec.label,
                        placeholder=spec.placeholder,
                    )
                mapped.append(spec)
        return mapped

    # ------------------------------------------------------------------
    # Filling
    # ------------------------------------------------------------------

    async def fill_form(self, form_selector: str | None, fields: Iterable[FieldSpec]) -> FormFillResult:
        """Fill each field independently; one failure never aborts the rest."""
        specs = [_as_field_input(f) for f in fields]
        result = FormFillResult(success=False, total_fields=len(specs))

        if form_selector:
            try:
                await self.page.wait_for_selector(
                    form_selector, state="attached", timeout=self.field_timeout * 1000
                )
            except (PlaywrightTimeoutError, PlaywrightError) as exc:
                error = f"Form {form_selector} not found: {exc}"
                result.per_field_results = [
                    FieldFillResult(selector=s.selector or "", value=s.value, success=False, error=error)
                    for s in specs
                ]
                return result

        for spec in specs:
            field_result = await self._fill_field(spec)
            result.per_field_results.append(field_result)
            if field_result.success:
                result.filled_fields += 1

        result.success = result.filled_fields > 0
        logger.info("Filled %s/%s field(s)", result.filled_fields, result.total_fields)
        return result

    async def _fill_field(self, spec: FieldInput) -> FieldFillResult:
        selector = spec.selector or ""
        if not selector:
            return FieldFillResult(selector="", value=spec.value, success=False, error="No selector")
        try:
            handle = await self.page.wait_for_selector(
                selector, state="visible", timeout=self.field_timeout * 1000
            )
            if handle is None:
                raise PlaywrightError(f"Field {selector} not visible")
            await self._set_value(handle, spec.value)
            return FieldFillResult(selector=selector, value=spec.value, success=True)
        except (PlaywrightTimeoutError, PlaywrightError, ValueError) as exc:
            logger.debug("Failed to fill %s: %s", selector, exc)
            return FieldFillResult(selector=selector, value=spec.value, success=False, error=str(exc))

    async def _set_value(self, handle: ElementHandle, value: str) -> None:
        tag = str(await handle.evaluate("el => el.tagName.toLowerCase()"))
        input_type = (await handle.get_attribute("type") or "").lower()

        if tag == "select":
            selected = await handle.select_option(value=value)
            if not selected:
                raise ValueError(f"No option with value {value!r}")
            return

        if input_type in ("checkbox", "radio"):
            element_value = await handle.get_attribute("value") or ""
            desired = value.strip().lower() in TRUTHY_VALUES or (
                input_type == "radio" and bool(value) and value == element_value
            )
            if await handle.is_checked() != desired:
                if input_type == "radio" and not desired:
                    # A radio cannot be unchecked directly; choosing another option does that.
                    return
                await handle.click()
            return

        await handle.fill("")
        await handle.type(value, delay=self.fill_delay * 1000)

    async def auto_fill_form(self, fields: Iterable[FieldSpec], form_index: int = 0) -> FormFillResult:
        specs = [_as_field_input(f) for f in fields]
        detection = await self.detect_forms()
        if not detection.success or not detection.forms:
            return FormFillResult(success=False, total_fields=len(specs))
        if not 0 <= form_index < len(detection.forms):
            logger.warning("Form index %s out of range (%s forms)", form_index, len(detection.forms))
            return FormFillResult(success=False, total_fields=len(specs))
        form = detection.forms[form_index]
        return await self.fill_form(form.selector, self.map_fields_to_form(specs, form))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _find_submit_control(self, form_selector: str) -> Optional[ElementHandle]:
        for selector in SUBMIT_SELECTORS:
            handle = await self.page.query_selector(f"{form_selector} >> {selector}")
            if handle is not None:
                return handle
        return None

    async def submit_form(self, form_selector: str) -> bool:
        """Activate the submit control, falling back to a direct form submit."""
        await asyncio.sleep(self.submit_delay)
        try:
            control = await self._find_submit_control(form_selector)
            if control is not None:
                await control.click()
            else:
                logger.debug("No submit control in %s; submitting directly", form_selector)
                await self.page.eval_on_selector(form_selector, SUBMIT_FALLBACK_SCRIPT)
        except PlaywrightError as exc:
            logger.warning("Form submission failed for %s: %s", form_selector, exc)
            return False

        try:
            await self.page.wait_for_load_state("load", timeout=NAVIGATION_WAIT * 1000)
        except PlaywrightTimeoutError:
            logger.debug("No navigation after submitting %s", form_selector)
        return True
