"""Contact form detection and confidence scoring."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Optional

from playwright.async_api import Page

from .models import DetectedField, DetectedForm, FormAnalysisResult
from .rules import (
    FIELD_KEYWORDS,
    FORM_CONTACT_KEYWORDS,
    FORM_SCORE_WEIGHTS,
    clamp_confidence,
    contains_any,
)

logger = logging.getLogger(__name__)

# Raw DOM extraction only; all classification happens in Python.
FORMS_SCRIPT = """
() => {
    const labelFor = (el) => {
        try {
            if (el.id) {
                const byFor = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
                if (byFor) return byFor.textContent.trim();
            }
            const parent = el.closest('label');
            if (parent) return parent.textContent.trim();
            const prev = el.previousElementSibling;
            if (prev && prev.tagName === 'LABEL') return prev.textContent.trim();
        } catch (e) {}
        return '';
    };
    const cls = (el) => (typeof el.className === 'string' ? el.className : '');
    return Array.from(document.querySelectorAll('form')).map((form, index) => {
        const fields = [];
        form.querySelectorAll('input, textarea, select').forEach((el) => {
            try {
                const tag = el.tagName.toLowerCase();
                const type = tag === 'input' ? (el.getAttribute('type') || 'text').toLowerCase() : tag;
                if (['hidden', 'submit', 'button', 'image', 'reset'].includes(type)) return;
                fields.push({
                    tag,
                    type,
                    name: el.getAttribute('name') || '',
                    id: el.id || '',
                    className: cls(el),
                    placeholder: el.getAttribute('placeholder') || '',
                    required: Boolean(el.required) || el.getAttribute('aria-required') === 'true',
                    label: labelFor(el),
                    options: tag === 'select' ? Array.from(el.options).map((o) => o.value) : null,
                });
            } catch (e) {}
        });
        const submit = form.querySelector('input[type="submit"], button[type="submit"], button:not([type])');
        return {
            index,
            id: form.id || '',
            name: form.getAttribute('name') || '',
            className: cls(form),
            action: form.getAttribute('action') || '',
            method: (form.getAttribute('method') || 'get').toLowerCase(),
            submit: submit ? {
                tag: submit.tagName.toLowerCase(),
                id: submit.id || '',
                className: cls(submit),
                type: submit.getAttribute('type') || '',
                text: (submit.textContent || submit.value || '').trim(),
            } : null,
            fields,
        };
    });
}
"""

_CSS_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


def _attr(value: Any) -> str:
    return str(value or "").strip()


def element_selector(tag: str, element_id: str = "", class_name: str = "", name: str = "") -> str:
    """
    Build a CSS selector for an element.

    Preference: ``#id``, then ``tag[name="..."]``, then ``tag.class1.class2``,
    then the bare tag.
    """
    tag = (tag or "*").lower()
    if element_id:
        if _CSS_IDENT.match(element_id):
            return f"#{element_id}"
        return f'[id="{element_id}"]'
    if name:
        escaped = name.replace('"', '\\"')
        return f'{tag}[name="{escaped}"]'
    classes = [c for c in (class_name or "").split() if _CSS_IDENT.match(c)]
    if classes:
        return tag + "".join(f".{c}" for c in classes)
    return tag


def form_selector(raw: dict) -> str:
    form_id = _attr(raw.get("id"))
    if form_id:
        return element_selector("form", element_id=form_id)
    form_name = _attr(raw.get("name"))
    if form_name:
        return element_selector("form", name=form_name)
    return f"form >> nth={int(raw.get('index') or 0)}"


class FormDetector:
    """Finds forms on a page and classifies which ones accept visitor inquiries."""

    def __init__(
        self,
        contact_keywords: Iterable[str] | None = None,
        field_keywords: dict[str, tuple[str, ...]] | None = None,
        score_weights: dict[str, int] | None = None,
    ):
        self.contact_keywords = list(contact_keywords or FORM_CONTACT_KEYWORDS)
        self.field_keywords = dict(field_keywords or FIELD_KEYWORDS)
        self.score_weights = {**FORM_SCORE_WEIGHTS, **(score_weights or {})}

    async def extract_raw_forms(self, page: Page) -> list[dict]:
        try:
            raw = await page.evaluate(FORMS_SCRIPT)
        except Exception as exc:
            logger.error("Error extracting forms: %s", exc)
            return []
        return raw if isinstance(raw, list) else []

    async def analyze_forms(self, page: Page) -> FormAnalysisResult:
        """Analyze every form on the page. Never raises."""
        return self.classify_forms(await self.extract_raw_forms(page))

    def classify_forms(self, raw_forms: list[Any]) -> FormAnalysisResult:
        forms: list[DetectedForm] = []
        for raw in raw_forms:
            if not isinstance(raw, dict):
                continue
            forms.append(self._build_form(raw))

        contact_forms = [f for f in forms if f.is_contact_form]
        best: Optional[DetectedForm] = None
        for form in contact_forms:
            # strict comparison keeps the first form on ties
            if best is None or form.confidence > best.confidence:
                best = form

        return FormAnalysisResult(
            total_forms=len(forms),
            contact_forms_count=len(contact_forms),
            forms=forms,
            best_contact_form=best,
        )

    def _build_form(self, raw: dict) -> DetectedForm:
        selector = form_selector(raw)
        fields: list[DetectedField] = []
        for raw_field in raw.get("fields") or []:
            detected = self._build_field(raw_field, selector)
            if detected is not None:
                fields.append(detected)

        submit_button = None
        submit_text = ""
        submit = raw.get("submit")
        if isinstance(submit, dict):
            submit_text = _attr(submit.get("text"))
            button = element_selector(
                _attr(submit.get("tag")) or "button",
                element_id=_attr(submit.get("id")),
                class_name=_attr(submit.get("className")),
            )
            submit_button = button if button.startswith(("#", "[id=")) else f"{selector} >> {button}"

        form = DetectedForm(
            selector=selector,
            action=_attr(raw.get("action")),
            method=_attr(raw.get("method")).lower() or "get",
            fields=fields,
            submit_button=submit_button,
        )
        form.is_contact_form = self.is_contact_form(form, raw, submit_text)
        form.confidence = self.score_form(form) if form.is_contact_form else 0
        return form

    @staticmethod
    def _build_field(raw_field: Any, scope: str) -> Optional[DetectedField]:
        if not isinstance(raw_field, dict):
            return None
        try:
            tag = _attr(raw_field.get("tag")).lower() or "input"
            element_id = _attr(raw_field.get("id"))
            name = _attr(raw_field.get("name"))
            selector = element_selector(
                tag, element_id=element_id, class_name=_attr(raw_field.get("className")), name=name
            )
            if not element_id:
                selector = f"{scope} >> {selector}"
            options = raw_field.get("options")
            return DetectedField(
                selector=selector,
                type=_attr(raw_field.get("type")).lower() or tag,
                label=_attr(raw_field.get("label")),
                placeholder=_attr(raw_field.get("placeholder")),
                required=bool(raw_field.get("required")),
                name=name,
                options=[str(o) for o in options] if isinstance(options, list) else None,
            )
        except (TypeError, ValueError) as exc:
            logger.debug("Skipping unreadable form field: %s", exc)
            return None

    @staticmethod
    def field_text(detected: DetectedField) -> str:
        # Scoped selectors always contain "name=" and the form selector, so only ids count.
        element_id = detected.selector[1:] if detected.selector.startswith("#") else ""
        return " ".join(
            part for part in (detected.name, element_id, detected.label, detected.placeholder) if part
        ).lower()

    def has_field(self, form: DetectedForm, kind: str) -> bool:
        keywords = self.field_keywords.get(kind, ())
        for detected in form.fields:
            if kind == "email" and detected.type == "email":
                return True
            if kind == "message" and detected.type == "textarea":
                return True
            if contains_any(self.field_text(detected), keywords):
                return True
        return False

    def is_contact_form(self, form: DetectedForm, raw: dict | None = None, submit_text: str = "") -> bool:
        raw = raw or {}
        form_text = " ".join(
            [
                form.action,
                _attr(raw.get("id")),
                _attr(raw.get("name")),
                _attr(raw.get("className")),
                submit_text,
                *(self.field_text(f) for f in form.fields),
            ]
        )
        if contains_any(form_text, self.contact_keywords):
            return True
        if self.has_field(form, "name") and self.has_field(form, "email"):
            return True
        return self.has_field(form, "message")

    def score_form(self, form: DetectedForm) -> int:
        weights = self.score_weights
        score = weights["base"]
        if contains_any(form.action, self.contact_keywords):
            score += weights["action_keyword"]
        if self.has_field(form, "name"):
            score += weights["name_field"]
        if self.has_field(form, "email"):
            score += weights["email_field"]
        if self.has_field(form, "message"):
            score += weights["message_field"]
        if any(f.required for f in form.fields):
            score += weights["required_field"]
        return clamp_confidence(score)
