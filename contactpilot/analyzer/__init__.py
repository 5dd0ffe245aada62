"""Page analyzers: forms, CAPTCHAs, contact pages and scraped contact data."""

from .captcha import CaptchaDetector
from .captcha_solver import CaptchaSolver
from .discovery import ContactPageDiscoverer
from .forms import FormDetector
from .scraper import WebScraper

__all__ = [
    "CaptchaDetector",
    "CaptchaSolver",
    "ContactPageDiscoverer",
    "FormDetector",
    "WebScraper",
]
