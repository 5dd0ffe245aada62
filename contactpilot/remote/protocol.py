"""JSON command protocol spoken by the desktop companion."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import ErrorCategory, ValidationError
from ..utils.domains import is_valid_http_url


class CommandType(str, Enum):
    OPEN = "OPEN"
    FILL = "FILL"
    SCREENSHOT = "SCREENSHOT"
    CLOSE = "CLOSE"
    PAUSE = "PAUSE"
    RESUME = "RESUME"


@dataclass
class RemoteCommand:
    type: CommandType
    data: dict[str, Any] = field(default_factory=dict)
    token: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> "RemoteCommand":
        """Validate and build a command; raises ValidationError with every problem found."""
        errors = validate_command(raw)
        if errors:
            raise ValidationError("; ".join(errors))
        return cls(
            type=CommandType(raw["type"]),
            data=dict(raw.get("data") or {}),
            token=raw.get("token"),
        )


@dataclass
class RemoteResponse:
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    screenshot: Optional[str] = None  # base64
    execution_time: float = 0.0  # milliseconds
    error_category: Optional[ErrorCategory] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "execution_time": round(self.execution_time, 1),
        }
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.error_category is not None:
            payload["error_category"] = self.error_category.value
        if self.screenshot is not None:
            payload["screenshot"] = self.screenshot
        return payload


def validate_command(raw: Any) -> list[str]:
    """Return a list of validation problems (empty when the command is well-formed)."""
    if not isinstance(raw, dict):
        return ["Command must be a JSON object"]

    errors: list[str] = []
    command_type = raw.get("type")
    valid_types = [t.value for t in CommandType]
    if command_type not in valid_types:
        errors.append(f"Invalid command type: {command_type!r} (expected one of {', '.join(valid_types)})")

    token = raw.get("token")
    if token is not None and not isinstance(token, str):
        errors.append("token must be a string")

    data = raw.get("data")
    if data is not None and not isinstance(data, dict):
        errors.append("data must be an object")
        return errors
    data = data or {}

    if command_type == CommandType.OPEN.value:
        if not is_valid_http_url(data.get("url")):
            errors.append("OPEN requires data.url to be a valid http(s) URL")
    elif command_type == CommandType.FILL.value:
        fields = data.get("fields")
        if not isinstance(fields, list) or not fields:
            errors.append("FILL requires a non-empty data.fields list")
        else:
            for index, item in enumerate(fields):
                if not isinstance(item, dict):
                    errors.append(f"fields[{index}] must be an object")
                    continue
                if not isinstance(item.get("selector"), str) or not item["selector"].strip():
                    errors.append(f"fields[{index}].selector must be a non-empty string")
                if not isinstance(item.get("value"), (str, int, float, bool)):
                    errors.append(f"fields[{index}].value must be a string")
    return errors
