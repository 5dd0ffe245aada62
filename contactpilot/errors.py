"""Error taxonomy for contact automation.

Expected failures (an unsolved CAPTCHA, a field that never became visible, an
unreachable candidate URL) are folded into result objects. The exceptions below
are reserved for conditions that invalidate a whole attempt or a caller request;
the orchestrator and the remote-control server convert them into a
``StructuredError`` before anything leaves the subsystem.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """What kind of failure happened, independent of the exception type."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    CAPTCHA = "captcha"
    FORM_SUBMISSION = "form_submission"
    DESKTOP_APP = "desktop_app"
    REMOTE_CONTROL = "remote_control"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    BROWSER = "browser"
    INTERNAL = "internal"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RETRYABLE_CATEGORIES: frozenset[ErrorCategory] = frozenset(
    {
        ErrorCategory.NETWORK,
        ErrorCategory.TIMEOUT,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.CAPTCHA,
        ErrorCategory.FORM_SUBMISSION,
    }
)

_DEFAULT_SEVERITY: dict[ErrorCategory, ErrorSeverity] = {
    ErrorCategory.NETWORK: ErrorSeverity.MEDIUM,
    ErrorCategory.TIMEOUT: ErrorSeverity.MEDIUM,
    ErrorCategory.CAPTCHA: ErrorSeverity.LOW,
    ErrorCategory.FORM_SUBMISSION: ErrorSeverity.MEDIUM,
    ErrorCategory.DESKTOP_APP: ErrorSeverity.HIGH,
    ErrorCategory.REMOTE_CONTROL: ErrorSeverity.MEDIUM,
    ErrorCategory.RESOURCE_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCategory.RATE_LIMIT: ErrorSeverity.LOW,
    ErrorCategory.VALIDATION: ErrorSeverity.LOW,
    ErrorCategory.AUTHENTICATION: ErrorSeverity.MEDIUM,
    ErrorCategory.BROWSER: ErrorSeverity.HIGH,
    ErrorCategory.INTERNAL: ErrorSeverity.CRITICAL,
}

_USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "The website could not be reached.",
    ErrorCategory.TIMEOUT: "The website took too long to respond.",
    ErrorCategory.CAPTCHA: "The website requires a CAPTCHA that could not be solved automatically.",
    ErrorCategory.FORM_SUBMISSION: "The contact form could not be submitted.",
    ErrorCategory.DESKTOP_APP: "The desktop companion is not responding.",
    ErrorCategory.REMOTE_CONTROL: "The remote-control command failed.",
    ErrorCategory.RESOURCE_NOT_FOUND: "The requested resource was not found.",
    ErrorCategory.RATE_LIMIT: "Too many requests for this website. Please wait and try again.",
    ErrorCategory.VALIDATION: "The request was invalid.",
    ErrorCategory.AUTHENTICATION: "The session token is missing or invalid.",
    ErrorCategory.BROWSER: "The browser could not be started.",
    ErrorCategory.INTERNAL: "An unexpected error occurred.",
}


@dataclass(frozen=True)
class StructuredError:
    """Serializable error record handed to callers instead of an exception."""

    code: str
    category: ErrorCategory
    message: str
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    user_message: str = ""
    retryable: bool = False
    retry_after: Optional[float] = None

    @classmethod
    def create(
        cls,
        category: ErrorCategory,
        message: str,
        *,
        code: str | None = None,
        retry_after: float | None = None,
        severity: ErrorSeverity | None = None,
    ) -> "StructuredError":
        return cls(
            code=code or category.value.upper(),
            category=category,
            message=message,
            severity=severity or _DEFAULT_SEVERITY[category],
            user_message=_USER_MESSAGES[category],
            retryable=category in RETRYABLE_CATEGORIES,
            retry_after=retry_after,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


class AutomationError(Exception):
    """Base exception for contact automation errors."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    code: str = "AUTOMATION_ERROR"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_structured(self) -> StructuredError:
        return StructuredError.create(self.category, self.message, code=self.code)


class BrowserLaunchError(AutomationError):
    """Browser process could not be launched."""

    category = ErrorCategory.BROWSER
    code = "BROWSER_LAUNCH_FAILED"


class BrowserDisconnectedError(AutomationError):
    """Browser instance went away mid-attempt."""

    category = ErrorCategory.BROWSER
    code = "BROWSER_DISCONNECTED"


class InstanceLimitError(AutomationError):
    category = ErrorCategory.BROWSER
    code = "INSTANCE_LIMIT_REACHED"


class TabLimitError(AutomationError):
    category = ErrorCategory.BROWSER
    code = "TAB_LIMIT_REACHED"


class ResourceNotFoundError(AutomationError):
    category = ErrorCategory.RESOURCE_NOT_FOUND
    code = "NOT_FOUND"


class InstanceNotFoundError(ResourceNotFoundError):
    code = "INSTANCE_NOT_FOUND"


class TabNotFoundError(ResourceNotFoundError):
    code = "TAB_NOT_FOUND"


class NavigationError(AutomationError):
    """Navigation failed even after the relaxed retry."""

    category = ErrorCategory.NETWORK
    code = "NAVIGATION_FAILED"


class AutomationTimeoutError(AutomationError):
    category = ErrorCategory.TIMEOUT
    code = "TIMEOUT"


class CaptchaError(AutomationError):
    """CAPTCHA detected and the caller required it solved."""

    category = ErrorCategory.CAPTCHA
    code = "CAPTCHA_UNSOLVED"


class RateLimitError(AutomationError):
    """Per-domain request window exhausted."""

    category = ErrorCategory.RATE_LIMIT
    code = "RATE_LIMITED"

    def __init__(self, domain: str, retry_after: float, message: str = "Rate limit exceeded"):
        self.domain = domain
        self.retry_after = retry_after
        super().__init__(f"{message} for {domain}. Retry after {retry_after:.0f} seconds.")

    def to_structured(self) -> StructuredError:
        return StructuredError.create(
            self.category, self.message, code=self.code, retry_after=self.retry_after
        )


class ValidationError(AutomationError):
    category = ErrorCategory.VALIDATION
    code = "INVALID_REQUEST"


class AuthenticationError(AutomationError):
    category = ErrorCategory.AUTHENTICATION
    code = "INVALID_TOKEN"


class AutomationCancelled(AutomationError):
    """Attempt was closed through the remote-control channel."""

    category = ErrorCategory.REMOTE_CONTROL
    code = "CANCELLED"


def structured_error_from_exception(exc: BaseException) -> StructuredError:
    """Map any exception raised inside an attempt onto the error taxonomy."""
    if isinstance(exc, AutomationError):
        return exc.to_structured()
    if isinstance(exc, (asyncio.TimeoutError, PlaywrightTimeoutError)):
        return StructuredError.create(ErrorCategory.TIMEOUT, str(exc) or "Operation timed out")
    if isinstance(exc, PlaywrightError):
        message = str(exc)
        lowered = message.lower()
        if "target closed" in lowered or "browser has been closed" in lowered:
            return BrowserDisconnectedError(message).to_structured()
        return StructuredError.create(ErrorCategory.NETWORK, message)
    if isinstance(exc, (ConnectionError, OSError)):
        return StructuredError.create(ErrorCategory.NETWORK, str(exc))
    logger.exception("Unexpected automation error", exc_info=exc)
    return StructuredError.create(ErrorCategory.INTERNAL, str(exc) or exc.__class__.__name__)
