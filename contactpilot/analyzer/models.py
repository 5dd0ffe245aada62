"""Analyzer data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class DetectedField:
    selector: str
    type: str
    label: str = ""
    placeholder: str = ""
    required: bool = False
    name: str = ""
    options: Optional[list[str]] = None


@dataclass
class DetectedForm:
    selector: str
    action: str = ""
    method: str = "get"
    fields: list[DetectedField] = field(default_factory=list)
    submit_button: Optional[str] = None
    is_contact_form: bool = False
    confidence: int = 0

    def __post_init__(self):
        self.confidence = int(max(0, min(100, self.confidence)))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FormAnalysisResult:
    total_forms: int = 0
    contact_forms_count: int = 0
    forms: list[DetectedForm] = field(default_factory=list)
    best_contact_form: Optional[DetectedForm] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_forms": self.total_forms,
            "contact_forms_count": self.contact_forms_count,
            "forms": [f.to_dict() for f in self.forms],
            "best_contact_form": self.best_contact_form.to_dict() if self.best_contact_form else None,
        }


@dataclass
class CaptchaDetectionResult:
    is_captcha: bool = False
    captcha_type: Optional[str] = None  # recaptcha | hcaptcha | cloudflare | other
    confidence: int = 0
    matched_markers: list[str] = field(default_factory=list)


@dataclass
class AntiBotResult:
    has_protection: bool = False
    protection_types: list[str] = field(default_factory=list)
    confidence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CaptchaSolveResult:
    success: bool
    method: str
    error: Optional[str] = None


@dataclass(frozen=True)
class DetectedContactPage:
    url: str
    title: str
    confidence: int
    detection_method: str  # heuristic | hybrid
    has_contact_form: bool
    has_contact_info: bool
    page_type: str  # contact | about | support | inquiry | other
    content_summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContactPageDetectionResult:
    pages: list[DetectedContactPage] = field(default_factory=list)
    best_page: Optional[DetectedContactPage] = None
    overall_confidence: int = 0
    error: Optional[str] = None


@dataclass
class ScrapedData:
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    contact_links: list[str] = field(default_factory=list)
    forms: list[dict] = field(default_factory=list)
    tables: list[dict] = field(default_factory=list)
    links: list[dict] = field(default_factory=list)
    title: str = ""
    description: str = ""
    keywords: list[str] = field(default_factory=list)
    structured_data: list[dict] = field(default_factory=list)


@dataclass
class ScrapeResult:
    success: bool
    data: ScrapedData = field(default_factory=ScrapedData)
    error: Optional[str] = None
