"""Post-submission success heuristic.

A submission only counts as sent when every signal agrees; any missing or
contradicting signal resolves to failure.
"""

from __future__ import annotations

import logging
from typing import Iterable

from playwright.async_api import Page

from ..analyzer.rules import ERROR_PHRASES, SUCCESS_PHRASES, matching_keywords
from ..utils.domains import comparable_url
from .models import SubmissionCheck

logger = logging.getLogger(__name__)

SUBMISSION_STATE_SCRIPT = """
() => {
    const visible = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        return el.getClientRects().length > 0;
    };
    const count = (selector) => Array.from(document.querySelectorAll(selector)).filter(visible).length;
    const emptyRequired = Array.from(document.querySelectorAll('[required]'))
        .filter((el) => visible(el) && !String(el.value || '').trim()).length;
    return {
        url: window.location.href,
        title: document.title || '',
        text: ((document.body && document.body.innerText) || '').slice(0, 100000),
        validationErrors: count('.error, .invalid, [class*="error"], [class*="invalid"]'),
        emptyRequired,
        formsVisible: count('form'),
        submitVisible: count('input[type="submit"], button[type="submit"]'),
    };
}
"""


def evaluate_submission(
    form_url: str,
    state: dict,
    success_phrases: Iterable[str] = SUCCESS_PHRASES,
    error_phrases: Iterable[str] = ERROR_PHRASES,
) -> SubmissionCheck:
    """Apply the conjunctive success rule to a page-state snapshot."""
    text = f"{state.get('text') or ''} {state.get('title') or ''}".lower()
    current_url = str(state.get("url") or "")

    url_changed = bool(current_url) and comparable_url(current_url) != comparable_url(form_url)
    successes = matching_keywords(text, success_phrases)
    errors = matching_keywords(text, error_phrases)
    check = SubmissionCheck(
        success=False,
        url_changed=url_changed,
        success_phrase=successes[0] if successes else None,
        error_phrase=errors[0] if errors else None,
        validation_errors=int(state.get("validationErrors") or 0),
        empty_required_fields=int(state.get("emptyRequired") or 0),
        forms_visible=int(state.get("formsVisible") or 0),
        submit_controls_visible=int(state.get("submitVisible") or 0),
    )

    if not check.url_changed:
        check.reasons.append("URL did not change after submission")
    if check.success_phrase is None:
        check.reasons.append("No success message found")
    if check.error_phrase is not None:
        check.reasons.append(f"Error text present: {check.error_phrase!r}")
    if check.validation_errors:
        check.reasons.append(f"{check.validation_errors} validation error element(s) visible")
    if check.empty_required_fields:
        check.reasons.append(f"{check.empty_required_fields} required field(s) empty")
    if check.forms_visible or check.submit_controls_visible:
        check.reasons.append("Form or submit control still visible")

    check.success = not check.reasons
    return check


async def check_submission_success(
    page: Page,
    form_url: str,
    success_phrases: Iterable[str] = SUCCESS_PHRASES,
    error_phrases: Iterable[str] = ERROR_PHRASES,
) -> SubmissionCheck:
    try:
        state = await page.evaluate(SUBMISSION_STATE_SCRIPT)
    except Exception as exc:
        logger.warning("Submission state check failed: %s", exc)
        return SubmissionCheck(success=False, reasons=[f"Page state unavailable: {exc}"])
    if not isinstance(state, dict):
        return SubmissionCheck(success=False, reasons=["Page state unavailable"])
    check = evaluate_submission(form_url, state, success_phrases, error_phrases)
    if not check.success:
        logger.info("Submission not confirmed: %s", "; ".join(check.reasons))
    return check
