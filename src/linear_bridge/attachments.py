"""
Attachment download, caching and image downscaling.

``get_attachment`` serves an attachment URL as base64 content, as the bare
URL, or as metadata only. Base64 downloads are retried with exponential
backoff, authenticated when the URL points at Linear's private upload host,
capped at 100 MiB, and images above the 1 MiB inline limit are scaled down
until they fit. When nothing usable fits, the response degrades to the URL
with an explanation instead of raising.
"""

from __future__ import annotations

import base64
import hashlib
import io
import logging
import mimetypes
import os
import random
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import httpx
from PIL import Image, UnidentifiedImageError

from .auth import REAUTH_HINT, TokenProvider, format_auth_header
from .config import DEFAULT_ATTACHMENT_SWEEP_SECONDS, DEFAULT_ATTACHMENT_TTL_SECONDS
from .errors import (
    AuthenticationError,
    DownloadError,
    LinearAPIError,
    LinearBridgeError,
    ResourceTooLargeError,
    ValidationError,
)
from .models import Attachment
from .ttl_cache import TTLCache

logger = logging.getLogger(__name__)

MCP_SIZE_LIMIT = 1024 * 1024  # inline content ceiling of MCP clients
MAX_CONTENT_SIZE = 100 * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 30.0
UPLOAD_TIMEOUT_SECONDS = 60.0
PRIVATE_UPLOAD_HOST = "uploads.linear.app"
TEMP_FILE_PREFIX = "linear-img-"
JPEG_QUALITY = 85

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "application/pdf": ".pdf",
}

_MAGIC_NUMBERS = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
)

_TEXT_CONTROL_BYTES = frozenset(b"\t\n\x0c\r\x1b")

# DecompressionBombError derives from Exception, not OSError.
_IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)


class AttachmentFormat(str, Enum):
    BASE64 = "base64"
    URL = "url"
    METADATA = "metadata"

    @classmethod
    def parse(cls, value: str | AttachmentFormat | None) -> AttachmentFormat:
        if isinstance(value, AttachmentFormat):
            return value
        if not value:
            return cls.BASE64
        try:
            return cls(value.lower())
        except ValueError:
            raise ValidationError(
                "format", value, "must be one of: base64, url, metadata"
            ) from None


class AttachmentStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"  # served as URL, ``error`` says why
    FAILED = "failed"  # download failed, ``error`` carries the cause


@dataclass
class AttachmentResponse:
    format: AttachmentFormat
    url: str
    content: str = ""
    content_type: str = ""
    size: int = 0
    width: int = 0
    height: int = 0
    resized: bool = False
    error: str = ""
    status: AttachmentStatus = AttachmentStatus.OK

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "format": self.format.value,
            "status": self.status.value,
            "url": self.url,
        }
        optional = {
            "content": self.content,
            "contentType": self.content_type,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "resized": self.resized,
            "error": self.error,
        }
        payload.update({key: value for key, value in optional.items() if value})
        return payload


@dataclass(frozen=True)
class AttachmentCacheEntry:
    content: bytes
    content_type: str
    size: int
    width: int = 0
    height: int = 0
    resized: bool = False


class AttachmentCache:
    """Processed attachment bytes keyed by ``sha256(url:format)``."""

    def __init__(
        self,
        ttl: float = DEFAULT_ATTACHMENT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_ATTACHMENT_SWEEP_SECONDS,
        *,
        clock: Callable[[], float] | None = None,
        auto_start: bool = True,
    ):
        kwargs: dict[str, Any] = {"name": "attachment-cache", "auto_start": auto_start}
        if clock is not None:
            kwargs["clock"] = clock
        self._cache: TTLCache[AttachmentCacheEntry] = TTLCache(ttl, sweep_interval, **kwargs)

    @staticmethod
    def key_for(url: str, fmt: AttachmentFormat) -> str:
        return hashlib.sha256(f"{url}:{fmt.value}".encode()).hexdigest()

    def get(self, key: str) -> AttachmentCacheEntry | None:
        return self._cache.get(key)

    def set(self, key: str, entry: AttachmentCacheEntry) -> None:
        self._cache.set(key, entry)

    def remove_expired(self) -> int:
        return self._cache.remove_expired()

    def clear(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._cache.close()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        return self._cache.stats()


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with up to ``jitter`` extra delay as a fraction."""

    max_retries: int = 3
    base_delay: float = 0.2
    jitter: float = 0.25

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        delay = self.base_delay * (2**attempt)
        return delay + rng() * delay * self.jitter


@dataclass(frozen=True)
class DownloadedContent:
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


class ImageResizeError(LinearBridgeError):
    def __init__(self, message: str):
        super().__init__("resize_failed", message)


def is_private_upload_url(url: str) -> bool:
    """Exact host match; lookalikes such as ``uploads.linear.app.evil.com`` fail."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return False
    return (host or "").lower() == PRIVATE_UPLOAD_HOST


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, DownloadError) and exc.retryable


def is_image_content(content_type: str) -> bool:
    return content_type.lower().startswith("image/")


def sniff_content_type(content: bytes) -> str:
    for magic, content_type in _MAGIC_NUMBERS:
        if content.startswith(magic):
            return content_type
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    head = content[:512]
    if any(byte < 0x20 and byte not in _TEXT_CONTROL_BYTES for byte in head):
        return "application/octet-stream"
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut at the sample boundary is still text.
        if exc.reason != "unexpected end of data":
            return "application/octet-stream"
    return "text/plain; charset=utf-8"


def extension_from_content_type(content_type: str) -> str:
    base = content_type.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(base, ".bin")


def image_dimensions(content: bytes) -> tuple[int, int] | None:
    """Width and height from the image header, or None if it cannot be read."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            return img.size
    except _IMAGE_ERRORS as exc:
        logger.debug("Could not read image dimensions: %s", exc)
        return None


def _encode_image(img: Image.Image, image_format: str | None) -> bytes:
    buf = io.BytesIO()
    if image_format == "PNG":
        img.save(buf, format="PNG")
    else:
        # JPEG for JPEG input and for anything else (WebP, GIF, ...).
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    return buf.getvalue()


def resize_image_for_mcp(content: bytes, limit: int = MCP_SIZE_LIMIT) -> bytes:
    """Scale an image from 80% down in 10-point steps until it fits ``limit``."""
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except _IMAGE_ERRORS as exc:
        raise ImageResizeError(f"failed to decode image: {exc}") from exc

    image_format = img.format
    width, height = img.size
    for percent in range(80, 9, -10):
        new_size = (max(1, width * percent // 100), max(1, height * percent // 100))
        scaled = img.resize(new_size, Image.Resampling.BILINEAR)
        try:
            resized = _encode_image(scaled, image_format)
        except (OSError, ValueError) as exc:
            raise ImageResizeError(f"failed to encode resized image: {exc}") from exc
        if len(resized) <= limit:
            logger.debug("Resized image to %d%% (%d bytes)", percent, len(resized))
            return resized

    raise ImageResizeError(f"unable to resize image under {limit} bytes")


def _status_error(response: httpx.Response, url: str) -> DownloadError:
    status = response.status_code
    if status == 404:
        return DownloadError(
            "not_found", f"attachment not found (404) - URL may have expired: {url}", status_code=status
        )
    if status == 403:
        return DownloadError(
            "forbidden",
            f"access denied (403) - insufficient permissions for attachment: {url}",
            status_code=status,
        )
    if status == 401:
        return DownloadError(
            "unauthorized",
            f"authentication required (401) - Linear token may be invalid; {REAUTH_HINT}",
            status_code=status,
        )
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            message = f"rate limited (429) - retry after {retry_after} seconds"
        else:
            message = "rate limited (429) - too many requests"
        return DownloadError("rate_limited", message, status_code=status, retryable=True)
    if status >= 500:
        return DownloadError(
            "server",
            f"server error ({status}) - Linear service temporarily unavailable",
            status_code=status,
            retryable=True,
        )
    return DownloadError(
        "status",
        f"download failed with status {status}: {response.reason_phrase}",
        status_code=status,
    )


class AttachmentClient:
    """Fetches attachment content and manages attachment records."""

    def __init__(
        self,
        token_provider: TokenProvider,
        api: Any = None,
        *,
        http_client: httpx.Client | None = None,
        cache: AttachmentCache | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
        temp_dir: str | None = None,
    ):
        self._token_provider = token_provider
        self._api = api
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(
            timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True
        )
        self._cache = cache if cache is not None else AttachmentCache()
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self._temp_dir = temp_dir

    @property
    def cache(self) -> AttachmentCache:
        return self._cache

    def get_attachment(
        self, url: str, fmt: AttachmentFormat | str = AttachmentFormat.BASE64
    ) -> AttachmentResponse:
        if not url:
            raise ValidationError("url", url, "cannot be empty; list the issue's attachments first")
        fmt = AttachmentFormat.parse(fmt)
        response = AttachmentResponse(format=fmt, url=url)

        if fmt is AttachmentFormat.METADATA:
            return response
        if fmt is AttachmentFormat.URL:
            response.content = url
            return response

        cache_key = AttachmentCache.key_for(url, fmt)
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("Attachment cache hit for %s", url)
            response.content_type = cached.content_type
            response.size = cached.size
            response.width = cached.width
            response.height = cached.height
            response.resized = cached.resized
            response.content = base64.b64encode(cached.content).decode("ascii")
            return response

        try:
            downloaded = self._download(url)
        except LinearBridgeError as exc:
            # Not cached, so the next call goes back to the network.
            response.error = f"Failed to download attachment: {exc.message}"
            response.status = AttachmentStatus.FAILED
            return response

        content = downloaded.content
        response.content_type = downloaded.content_type
        response.size = downloaded.size

        if is_image_content(downloaded.content_type):
            dims = image_dimensions(content)
            if dims:
                response.width, response.height = dims

            if downloaded.size > MCP_SIZE_LIMIT:
                try:
                    content = resize_image_for_mcp(content)
                except ImageResizeError as exc:
                    logger.warning("Image %s too large and resize failed: %s", url, exc.message)
                    return self._degrade(
                        response,
                        f"Image too large ({downloaded.size} bytes) and resize failed: {exc.message}",
                    )
                response.size = len(content)
                response.resized = True
                dims = image_dimensions(content)
                if dims:
                    response.width, response.height = dims
        elif downloaded.size > MCP_SIZE_LIMIT:
            return self._degrade(
                response,
                f"File too large ({downloaded.size} bytes) for MCP transfer, returning URL instead",
            )

        self._cache.set(
            cache_key,
            AttachmentCacheEntry(
                content=content,
                content_type=response.content_type,
                size=response.size,
                width=response.width,
                height=response.height,
                resized=response.resized,
            ),
        )
        response.content = base64.b64encode(content).decode("ascii")
        return response

    @staticmethod
    def _degrade(response: AttachmentResponse, reason: str) -> AttachmentResponse:
        response.format = AttachmentFormat.URL
        response.content = response.url
        response.error = reason
        response.status = AttachmentStatus.DEGRADED
        return response

    def download_to_temp_file(self, url: str) -> str:
        """Save an attachment under the temp dir at a path derived from the URL.

        The same URL always maps to the same file, which is overwritten.
        """
        if not url:
            raise ValidationError("url", url, "cannot be empty")

        downloaded = self._download(url)
        digest = hashlib.sha256(url.encode()).hexdigest()[:16]
        ext = extension_from_content_type(downloaded.content_type)
        directory = self._temp_dir or tempfile.gettempdir()
        path = os.path.join(directory, f"{TEMP_FILE_PREFIX}{digest}{ext}")

        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(downloaded.content)
            os.chmod(path, 0o600)
        except OSError as exc:
            raise LinearBridgeError("io_error", f"failed to write temp file: {exc}") from exc
        return path

    def _download(self, url: str) -> DownloadedContent:
        attempts = self._retry.max_retries + 1
        for attempt in range(attempts):
            try:
                return self._attempt_download(url)
            except LinearBridgeError as exc:
                if not is_retryable(exc):
                    raise
                if attempt + 1 >= attempts:
                    raise DownloadError(
                        getattr(exc, "kind", "failed"),
                        f"download failed after {attempts} attempts: {exc.message}",
                        status_code=getattr(exc, "status_code", None),
                    ) from exc
                delay = self._retry.delay(attempt, self._rng)
                logger.warning(
                    "Attachment download attempt %d failed (%s); retrying in %.2fs",
                    attempt + 1,
                    exc.message,
                    delay,
                )
                self._sleep(delay)
        raise DownloadError("failed", f"no download attempts configured for {url}")

    def _attempt_download(self, url: str) -> DownloadedContent:
        headers: dict[str, str] = {}
        if is_private_upload_url(url):
            try:
                token = self._token_provider.get_token()
            except LinearBridgeError as exc:
                raise AuthenticationError(
                    f"failed to get Linear auth token for private upload URL ({REAUTH_HINT}): {exc.message}"
                ) from exc
            headers["Authorization"] = format_auth_header(token)

        deadline = time.monotonic() + DOWNLOAD_TIMEOUT_SECONDS
        try:
            with self._http.stream(
                "GET", url, headers=headers, timeout=DOWNLOAD_TIMEOUT_SECONDS
            ) as response:
                if response.status_code != 200:
                    raise _status_error(response, url)

                chunks: list[bytes] = []
                total = 0
                for chunk in response.iter_bytes():
                    total += len(chunk)
                    if total > MAX_CONTENT_SIZE:
                        raise ResourceTooLargeError(
                            f"content too large (over {MAX_CONTENT_SIZE} bytes) - "
                            "use URL format for large files",
                            size=total,
                            limit=MAX_CONTENT_SIZE,
                        )
                    if time.monotonic() > deadline:
                        raise DownloadError(
                            "timeout",
                            f"download timeout after {DOWNLOAD_TIMEOUT_SECONDS:.0f}s",
                            retryable=True,
                        )
                    chunks.append(chunk)
                content_type = response.headers.get("Content-Type", "")
        except httpx.TimeoutException as exc:
            raise DownloadError(
                "timeout",
                f"download timeout after {DOWNLOAD_TIMEOUT_SECONDS:.0f}s: {exc}",
                retryable=True,
            ) from exc
        except httpx.UnsupportedProtocol as exc:
            raise DownloadError("invalid_url", f"unsupported URL {url}: {exc}") from exc
        except httpx.TransportError as exc:
            raise DownloadError(
                "network", f"network error during download: {exc}", retryable=True
            ) from exc
        except httpx.InvalidURL as exc:
            raise DownloadError("invalid_url", f"invalid URL {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            # Undecodable bodies and redirect loops do not improve on retry.
            raise DownloadError("network", f"download failed: {exc}") from exc

        content = b"".join(chunks)
        if not content_type:
            content_type = sniff_content_type(content)
        return DownloadedContent(content=content, content_type=content_type)

    # Attachment records

    def _require_api(self) -> Any:
        if self._api is None:
            raise LinearBridgeError("no_api_client", "attachment records need a Linear API client")
        return self._api

    def list_attachments(self, issue_id: str) -> list[Attachment]:
        if not issue_id:
            raise ValidationError("issueId", issue_id, "cannot be empty")
        return self._require_api().list_attachments(issue_id)

    def create_attachment(
        self, issue_id: str, url: str, title: str, subtitle: str | None = None
    ) -> Attachment:
        for field_name, value in (("issueId", issue_id), ("url", url), ("title", title)):
            if not value:
                raise ValidationError(field_name, value, "cannot be empty")
        return self._require_api().create_attachment(issue_id, url, title, subtitle)

    def update_attachment(
        self, attachment_id: str, title: str, subtitle: str | None = None
    ) -> Attachment:
        if not attachment_id:
            raise ValidationError("id", attachment_id, "cannot be empty")
        if not title:
            raise ValidationError("title", title, "cannot be empty")
        return self._require_api().update_attachment(attachment_id, title, subtitle)

    def delete_attachment(self, attachment_id: str) -> None:
        if not attachment_id:
            raise ValidationError("id", attachment_id, "cannot be empty")
        self._require_api().delete_attachment(attachment_id)

    # Uploads

    def upload_file(self, filename: str, content: bytes, content_type: str | None = None) -> str:
        """Upload bytes to Linear storage and return the asset URL for markdown."""
        if not filename:
            raise ValidationError("filename", filename, "cannot be empty")
        if not content:
            raise ValidationError("content", "", "cannot be empty")
        content_type = content_type or sniff_content_type(content)

        target = self._require_api().request_file_upload(len(content), filename, content_type)
        headers = {"Content-Type": content_type, **target.headers}
        try:
            response = self._http.put(
                target.upload_url, content=content, headers=headers, timeout=UPLOAD_TIMEOUT_SECONDS
            )
        except httpx.HTTPError as exc:
            raise LinearAPIError(f"upload request failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise LinearAPIError(
                f"upload failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return target.asset_url

    def upload_file_from_path(self, path: str) -> str:
        try:
            size = os.path.getsize(path)
            if size > MAX_CONTENT_SIZE:
                raise ResourceTooLargeError(
                    f"file too large: {size} bytes (max {MAX_CONTENT_SIZE})",
                    size=size,
                    limit=MAX_CONTENT_SIZE,
                )
            with open(path, "rb") as f:
                content = f.read()
        except OSError as exc:
            raise LinearBridgeError("io_error", f"failed to read file: {exc}") from exc

        content_type = sniff_content_type(content)
        if content_type in ("application/octet-stream", "text/plain; charset=utf-8"):
            guessed, _ = mimetypes.guess_type(path)
            content_type = guessed or content_type
        return self.upload_file(os.path.basename(path), content, content_type)

    def close(self) -> None:
        self._cache.close()
        if self._owns_http_client:
            self._http.close()
