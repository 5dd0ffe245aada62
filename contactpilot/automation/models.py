"""Automation request/result models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..analyzer.models import AntiBotResult, DetectedForm
from ..errors import StructuredError


class AutomationStage(str, Enum):
    """Steps of one automation attempt, in order."""

    INIT = "init"
    BROWSER_ACQUIRED = "browser_acquired"
    NAVIGATED = "navigated"
    CAPTCHA_CHECKED = "captcha_checked"
    CAPTCHA_SOLVING = "captcha_solving"
    FORMS_ANALYZED = "forms_analyzed"
    DATA_SCRAPED = "data_scraped"
    CONTACT_PAGE_RESOLVED = "contact_page_resolved"
    FORM_SUBMITTED = "form_submitted"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FieldInput:
    """Caller-supplied value plus the hints used to locate its field."""

    value: str
    selector: Optional[str] = None
    name: Optional[str] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "FieldInput":
        return cls(
            value=str(raw.get("value", "")),
            selector=raw.get("selector") or None,
            name=raw.get("name") or None,
            label=raw.get("label") or None,
            placeholder=raw.get("placeholder") or None,
        )


@dataclass
class FieldFillResult:
    selector: str
    value: str
    success: bool
    error: Optional[str] = None


@dataclass
class FormFillResult:
    success: bool
    filled_fields: int = 0
    total_fields: int = 0
    per_field_results: list[FieldFillResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FormDetectionResult:
    success: bool
    forms: list[DetectedForm] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SubmissionCheck:
    """Outcome of the conjunctive post-submission success heuristic."""

    success: bool
    url_changed: bool = False
    success_phrase: Optional[str] = None
    error_phrase: Optional[str] = None
    validation_errors: int = 0
    empty_required_fields: int = 0
    forms_visible: int = 0
    submit_controls_visible: int = 0
    reasons: list[str] = field(default_factory=list)


@dataclass
class CaptchaStatus:
    detected: bool = False
    solved: bool = False
    captcha_type: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SubmissionResult:
    success: bool
    message: str
    form_selector: Optional[str] = None
    fill_result: Optional[FormFillResult] = None
    check: Optional[SubmissionCheck] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DataExtracted:
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    contact_links: list[str] = field(default_factory=list)
    forms_count: int = 0
    contact_forms_count: int = 0


@dataclass
class AutomationRequest:
    website: str
    business_name: str = ""
    enable_auto_submit: bool = False
    custom_form_data: Optional[dict[str, str]] = None
    timeout: Optional[float] = None
    require_captcha_solved: bool = False

    @classmethod
    def from_dict(cls, raw: dict) -> "AutomationRequest":
        """
        Build a request from the JSON API payload.

        ``timeout`` is given in milliseconds on the wire and stored in seconds.
        Raises ValueError for flags or timeouts that do not parse.
        """
        custom = raw.get("custom_form_data")
        timeout_ms = raw.get("timeout")
        if timeout_ms is not None:
            if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
                raise ValueError("timeout must be a positive number of milliseconds")
        return cls(
            website=str(raw.get("website") or "").strip(),
            business_name=str(raw.get("business_name") or "").strip(),
            enable_auto_submit=_parse_flag(raw.get("enable_auto_submit"), "enable_auto_submit"),
            custom_form_data={str(k): str(v) for k, v in custom.items()} if isinstance(custom, dict) else None,
            timeout=timeout_ms / 1000 if timeout_ms is not None else None,
            require_captcha_solved=_parse_flag(raw.get("require_captcha_solved"), "require_captcha_solved"),
        )


_TRUE_WORDS = ("true", "1", "yes")
_FALSE_WORDS = ("false", "0", "no", "")


def _parse_flag(value: Any, name: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    raise ValueError(f"{name} must be a boolean")


@dataclass
class AutomationResult:
    """Terminal record of one orchestration run."""

    success: bool
    contact_page_url: Optional[str] = None
    forms_found: Optional[list[DetectedForm]] = None
    data_extracted: DataExtracted = field(default_factory=DataExtracted)
    captcha_status: CaptchaStatus = field(default_factory=CaptchaStatus)
    anti_bot_protection: AntiBotResult = field(default_factory=AntiBotResult)
    submission_result: Optional[SubmissionResult] = None
    error: Optional[StructuredError] = None
    screenshot_id: Optional[str] = None
    stage: AutomationStage = AutomationStage.INIT
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "contact_page_url": self.contact_page_url,
            "forms_found": [f.to_dict() for f in self.forms_found] if self.forms_found is not None else None,
            "data_extracted": asdict(self.data_extracted),
            "captcha_status": self.captcha_status.to_dict(),
            "anti_bot_protection": self.anti_bot_protection.to_dict(),
            "submission_result": self.submission_result.to_dict() if self.submission_result else None,
            "error": self.error.to_dict() if self.error else None,
            "screenshot_id": self.screenshot_id,
            "stage": self.stage.value,
            "timestamp": self.timestamp.isoformat(),
        }
