"""In-memory stand-ins for Playwright browsers, contexts and pages."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from contactpilot.analyzer.captcha import MARKERS_SCRIPT, RESPONSE_TOKEN_SCRIPT
from contactpilot.analyzer.discovery import LINKS_SCRIPT
from contactpilot.analyzer.forms import FORMS_SCRIPT
from contactpilot.analyzer.scraper import PAGE_DATA_SCRIPT
from contactpilot.automation.success import SUBMISSION_STATE_SCRIPT


def png_bytes(width: int = 40, height: int = 30, color: str = "white") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeElement:
    def __init__(
        self,
        tag: str = "input",
        input_type: str = "text",
        value: str = "",
        checked: bool = False,
        options: Optional[list[str]] = None,
        on_click: Optional[Callable[[], Any]] = None,
        visible: bool = True,
    ):
        self.tag = tag
        self.input_type = input_type
        self.value = value
        self.checked = checked
        self.options = options or []
        self.on_click = on_click
        self.visible = visible
        self.clicks = 0
        self.typed: list[tuple[str, float]] = []

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return self.tag

    async def get_attribute(self, name: str) -> Optional[str]:
        if name == "type":
            return self.input_type if self.tag == "input" else None
        if name == "value":
            return self.value
        return None

    async def select_option(self, value: str) -> list[str]:
        if value in self.options:
            self.value = value
            return [value]
        return []

    async def is_checked(self) -> bool:
        return self.checked

    async def click(self) -> None:
        self.clicks += 1
        if self.input_type == "checkbox":
            self.checked = not self.checked
        elif self.input_type == "radio":
            self.checked = True
        if self.on_click is not None:
            self.on_click()

    async def fill(self, value: str) -> None:
        self.value = value

    async def type(self, value: str, delay: float = 0) -> None:
        self.value += value
        self.typed.append((value, delay))


@dataclass
class FakeDocument:
    """What the page "shows" for one URL, in the shapes the extraction scripts return."""

    title: str = ""
    text: str = ""
    links: list[dict] = field(default_factory=list)
    forms: list[dict] = field(default_factory=list)
    matched: list[str] = field(default_factory=list)
    iframes: list[str] = field(default_factory=list)
    token: str = ""
    validation_errors: int = 0
    empty_required: int = 0
    elements: dict[str, FakeElement] = field(default_factory=dict)
    json_ld: list[str] = field(default_factory=list)

    @property
    def forms_visible(self) -> int:
        return len(self.forms)

    @property
    def submit_visible(self) -> int:
        return sum(1 for f in self.forms if f.get("submit"))


class FakeFrame:
    def __init__(self, url: str, elements: dict[str, FakeElement] | None = None):
        self.url = url
        self.elements = elements or {}

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self.elements.get(selector)


class FakePage:
    """
    Serves ``FakeDocument``s keyed by URL and answers the extraction scripts.

    ``goto`` to an unknown URL raises like a DNS failure; ``networkidle_fails``
    makes the first wait condition time out so the relaxed retry is exercised.
    """

    def __init__(self, site: dict[str, FakeDocument] | None = None, networkidle_fails: bool = False):
        self.site = site if site is not None else {}
        self.networkidle_fails = networkidle_fails
        self.url = "about:blank"
        self.document = FakeDocument()
        self.frames: list[FakeFrame] = []
        self.visits: list[tuple[str, Optional[str]]] = []
        self.closed = False
        self.evaluate_error: Optional[Exception] = None

    def show(self, url: str, document: FakeDocument) -> None:
        """Switch to ``document`` as if the page navigated client-side."""
        self.url = url
        self.document = document

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.visits.append((url, wait_until))
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")
        if wait_until == "networkidle" and self.networkidle_fails:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for networkidle")
        document = self.site.get(url)
        if document is None:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.show(url, document)
        return None

    async def title(self) -> str:
        return self.document.title

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if self.evaluate_error is not None:
            raise self.evaluate_error
        doc = self.document
        if script == FORMS_SCRIPT:
            return [dict(f) for f in doc.forms]
        if script == LINKS_SCRIPT:
            return {"title": doc.title, "text": doc.text, "links": list(doc.links)}
        if script == MARKERS_SCRIPT:
            wanted = set(arg or [])
            return {
                "matched": [s for s in doc.matched if s in wanted],
                "iframes": list(doc.iframes),
                "text": doc.text.lower(),
                "title": doc.title,
            }
        if script == RESPONSE_TOKEN_SCRIPT:
            return doc.token
        if script == PAGE_DATA_SCRIPT:
            return {
                "title": doc.title,
                "description": "",
                "keywords": "",
                "text": doc.text,
                "links": list(doc.links),
                "forms": [],
                "tables": [],
                "jsonLd": list(doc.json_ld),
                "microdata": [],
                "rdfa": [],
            }
        if script == SUBMISSION_STATE_SCRIPT:
            return {
                "url": self.url,
                "title": doc.title,
                "text": doc.text,
                "validationErrors": doc.validation_errors,
                "emptyRequired": doc.empty_required,
                "formsVisible": doc.forms_visible,
                "submitVisible": doc.submit_visible,
            }
        raise AssertionError(f"Unexpected script: {script[:60]!r}")

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: Optional[float] = None):
        element = self.document.elements.get(selector)
        if element is None or (state == "visible" and not element.visible):
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return element

    async def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self.document.elements.get(selector)

    async def eval_on_selector(self, selector: str, script: str, arg: Any = None) -> Any:
        element = self.document.elements.get(selector)
        if element is None:
            raise PlaywrightError(f"No element for {selector}")
        if element.on_click is not None:
            element.on_click()
        return True

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        return None

    async def screenshot(self, **kwargs: Any) -> bytes:
        self.last_screenshot_kwargs = kwargs
        return png_bytes()

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, page_factory: Callable[[], FakePage]):
        self._page_factory = page_factory
        self.pages: list[FakePage] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = self._page_factory()
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, page_factory: Callable[[], FakePage] | None = None):
        self._page_factory = page_factory or FakePage
        self.connected = True
        self.context_kwargs: list[dict] = []
        self.contexts: list[FakeContext] = []
        self._handlers: dict[str, list[Callable]] = {}

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **kwargs: Any) -> FakeContext:
        self.context_kwargs.append(kwargs)
        context = FakeContext(self._page_factory)
        self.contexts.append(context)
        return context

    def disconnect(self) -> None:
        self.connected = False
        for handler in self._handlers.get("disconnected", []):
            handler(self)

    async def close(self) -> None:
        self.connected = False


class FakeLauncher:
    """Async callable matching ``BrowserInstanceManager``'s launcher hook."""

    def __init__(self, page_factory: Callable[[], FakePage] | None = None, failures: int = 0):
        self.page_factory = page_factory
        self.failures = failures
        self.calls: list[bool] = []
        self.browsers: list[FakeBrowser] = []

    async def __call__(self, headless: bool) -> FakeBrowser:
        self.calls.append(headless)
        if self.failures > 0:
            self.failures -= 1
            raise PlaywrightError("Executable doesn't exist")
        browser = FakeBrowser(self.page_factory)
        self.browsers.append(browser)
        return browser


def contact_form(
    form_id: str = "contact-form",
    action: str = "/contact/send",
    fields: Optional[list[dict]] = None,
    submit_text: str = "Send",
) -> dict:
    """Raw form payload as returned by the forms extraction script."""
    if fields is None:
        fields = [
            {"tag": "input", "type": "text", "name": "name", "id": "", "label": "Your name", "required": True},
            {"tag": "input", "type": "email", "name": "email", "id": "", "label": "Email", "required": True},
            {"tag": "textarea", "type": "textarea", "name": "message", "id": "", "label": "Message"},
        ]
    return {
        "index": 0,
        "id": form_id,
        "name": "",
        "className": "",
        "action": action,
        "method": "post",
        "submit": {"tag": "button", "id": "", "className": "", "type": "submit", "text": submit_text},
        "fields": fields,
    }
