"""Screenshot capture and bounded on-disk storage."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import secrets
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Union

from PIL import Image
from playwright.async_api import Page

from ..errors import ValidationError

logger = logging.getLogger(__name__)

FORMATS = ("png", "jpeg", "webp")
MIME_TYPES = {"png": "image/png", "jpeg": "image/jpeg", "webp": "image/webp"}
SIZE_EVICTION_TARGET = 0.8


@dataclass
class ScreenshotOptions:
    format: str = "png"
    quality: Optional[int] = None  # jpeg/webp only
    full_page: bool = False
    clip: Optional[dict[str, float]] = None  # {x, y, width, height}
    encoding: str = "base64"  # base64 | binary

    def __post_init__(self):
        self.format = (self.format or "png").lower()
        if self.format == "jpg":
            self.format = "jpeg"
        if self.format not in FORMATS:
            raise ValueError(f"Unsupported screenshot format: {self.format}")
        if self.encoding not in ("base64", "binary"):
            raise ValueError(f"Unsupported screenshot encoding: {self.encoding}")


@dataclass
class ScreenshotMetadata:
    width: int
    height: int
    size: int
    format: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    url: str = ""
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class ScreenshotCapture:
    screenshot: Union[str, bytes]
    metadata: ScreenshotMetadata


@dataclass
class ScreenshotRecord:
    id: str
    filename: str
    path: Path
    metadata: ScreenshotMetadata
    created_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "path": str(self.path),
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class StorageStats:
    total_screenshots: int = 0
    total_size: int = 0
    average_size: float = 0.0
    oldest_screenshot: Optional[datetime] = None
    newest_screenshot: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_screenshots": self.total_screenshots,
            "total_size": self.total_size,
            "average_size": self.average_size,
            "oldest_screenshot": self.oldest_screenshot.isoformat() if self.oldest_screenshot else None,
            "newest_screenshot": self.newest_screenshot.isoformat() if self.newest_screenshot else None,
        }


def _image_size(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except Exception as exc:
        logger.debug("Could not read screenshot dimensions: %s", exc)
        return 0, 0


def _convert(data: bytes, fmt: str, quality: int, optimize: bool) -> bytes:
    """Re-encode a PNG capture with Pillow (webp conversion, png optimisation)."""
    with Image.open(io.BytesIO(data)) as img:
        out = io.BytesIO()
        if fmt == "webp":
            img.save(out, format="WEBP", quality=quality)
        elif fmt == "jpeg":
            img.convert("RGB").save(out, format="JPEG", quality=quality, optimize=optimize)
        else:
            img.save(out, format="PNG", optimize=optimize)
        return out.getvalue()


class ScreenshotManager:
    """
    Sole owner of the screenshot registry and its backing directory.

    A file on disk without a registry entry is treated as absent. Eviction runs
    after every save: count ceiling, then size ceiling, then expiry.
    """

    def __init__(
        self,
        storage_dir: Path,
        max_screenshots: int = 1000,
        max_storage_bytes: int = 100 * 1024 * 1024,
        compression: bool = True,
        quality: int = 80,
        default_expiry: Optional[float] = None,
    ):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.max_screenshots = max_screenshots
        self.max_storage_bytes = max_storage_bytes
        self.compression = compression
        self.quality = quality
        self.default_expiry = default_expiry
        # Insertion order is creation order.
        self._records: dict[str, ScreenshotRecord] = {}
        self._lock = asyncio.Lock()

    async def take_screenshot(self, page: Page, options: ScreenshotOptions | None = None) -> ScreenshotCapture:
        """Capture the page; raises Playwright errors to the caller."""
        options = options or ScreenshotOptions()
        quality = options.quality or self.quality
        kwargs: dict[str, Any] = {"full_page": options.full_page}
        if options.clip:
            kwargs["clip"] = options.clip
            kwargs["full_page"] = False
        if options.format == "jpeg":
            kwargs.update(type="jpeg", quality=quality)
        else:
            kwargs["type"] = "png"

        data = await page.screenshot(**kwargs)
        if options.format == "webp" or (options.format == "png" and self.compression):
            data = await asyncio.to_thread(_convert, data, options.format, quality, self.compression)

        width, height = _image_size(data)
        try:
            title = await page.title()
        except Exception:
            title = ""
        metadata = ScreenshotMetadata(
            width=width,
            height=height,
            size=len(data),
            format=options.format,
            url=page.url,
            title=title,
        )
        if options.encoding == "base64":
            return ScreenshotCapture(screenshot=base64.b64encode(data).decode("ascii"), metadata=metadata)
        return ScreenshotCapture(screenshot=data, metadata=metadata)

    async def save_screenshot(
        self,
        screenshot: Union[str, bytes],
        metadata: ScreenshotMetadata,
        expires_in: Optional[float] = None,
    ) -> str:
        """
        Persist a capture and return its storage id.

        Raises ValidationError for a capture that would not survive the size
        eviction on its own. ``metadata`` is copied, not modified.
        """
        data = base64.b64decode(screenshot) if isinstance(screenshot, str) else bytes(screenshot)
        if len(data) > self.max_storage_bytes * SIZE_EVICTION_TARGET:
            logger.warning("Refusing %s-byte screenshot over the storage ceiling", len(data))
            raise ValidationError(
                f"Screenshot of {len(data)} bytes exceeds the storage limit of {self.max_storage_bytes} bytes"
            )
        screenshot_id = f"screenshot_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
        extension = "jpg" if metadata.format == "jpeg" else metadata.format
        filename = f"{screenshot_id}.{extension}"
        path = self.storage_dir / filename
        await asyncio.to_thread(path.write_bytes, data)

        now = datetime.now(timezone.utc)
        ttl = expires_in if expires_in is not None else self.default_expiry
        record = ScreenshotRecord(
            id=screenshot_id,
            filename=filename,
            path=path,
            metadata=replace(metadata, size=len(data)),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl) if ttl else None,
        )
        async with self._lock:
            self._records[screenshot_id] = record
        logger.debug("Saved screenshot %s (%s bytes)", screenshot_id, len(data))

        await self._enforce_limits()
        return screenshot_id

    async def _enforce_limits(self) -> None:
        async with self._lock:
            evicted: list[ScreenshotRecord] = []

            excess = len(self._records) - self.max_screenshots
            if excess > 0:
                for screenshot_id in list(self._records)[:excess]:
                    evicted.append(self._records.pop(screenshot_id))
                logger.info("Evicted %s screenshot(s) over the count limit", excess)

            total = sum(r.metadata.size for r in self._records.values())
            if total > self.max_storage_bytes:
                target = self.max_storage_bytes * SIZE_EVICTION_TARGET
                removed = 0
                for screenshot_id in list(self._records):
                    if total <= target:
                        break
                    record = self._records.pop(screenshot_id)
                    total -= record.metadata.size
                    evicted.append(record)
                    removed += 1
                logger.info("Evicted %s screenshot(s) over the size limit", removed)

            now = datetime.now(timezone.utc)
            for screenshot_id, record in list(self._records.items()):
                if record.is_expired(now):
                    evicted.append(self._records.pop(screenshot_id))

        for record in evicted:
            await self._unlink(record.path)

    @staticmethod
    async def _unlink(path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to delete screenshot file %s: %s", path, exc)

    async def get_screenshot(self, screenshot_id: str) -> Optional[str]:
        """Return the screenshot as a data URL, or None if unknown or expired."""
        record = self._records.get(screenshot_id)
        if record is None:
            return None
        if record.is_expired():
            await self.delete_screenshot(screenshot_id)
            return None
        try:
            data = await asyncio.to_thread(record.path.read_bytes)
        except FileNotFoundError:
            logger.warning("Screenshot file missing for %s", screenshot_id)
            async with self._lock:
                self._records.pop(screenshot_id, None)
            return None
        mime = MIME_TYPES.get(record.metadata.format, "image/png")
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    def get_record(self, screenshot_id: str) -> Optional[ScreenshotRecord]:
        return self._records.get(screenshot_id)

    async def delete_screenshot(self, screenshot_id: str) -> bool:
        async with self._lock:
            record = self._records.pop(screenshot_id, None)
        if record is None:
            return False
        await self._unlink(record.path)
        return True

    def get_screenshot_list(self, limit: int = 50) -> list[ScreenshotRecord]:
        """Newest first."""
        records = list(self._records.values())
        records.reverse()
        return records[: max(0, limit)]

    def get_storage_stats(self) -> StorageStats:
        records = list(self._records.values())
        if not records:
            return StorageStats()
        total = sum(r.metadata.size for r in records)
        return StorageStats(
            total_screenshots=len(records),
            total_size=total,
            average_size=total / len(records),
            oldest_screenshot=min(r.created_at for r in records),
            newest_screenshot=max(r.created_at for r in records),
        )

    async def cleanup_expired(self) -> int:
        now = datetime.now(timezone.utc)
        async with self._lock:
            expired = [self._records.pop(i) for i, r in list(self._records.items()) if r.is_expired(now)]
        for record in expired:
            await self._unlink(record.path)
        return len(expired)

    async def cleanup(self) -> int:
        """Delete every stored screenshot."""
        async with self._lock:
            records = list(self._records.values())
            self._records.clear()
        for record in records:
            await self._unlink(record.path)
        logger.info("Removed %s screenshot(s)", len(records))
        return len(records)
