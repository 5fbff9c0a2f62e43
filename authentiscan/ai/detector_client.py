"""
DetectorClient — Async wrapper around the external deepfake-detection provider.

One HTTP request per media item. The provider answers synchronously with an
overall status + score and a per-model breakdown; normalize_response() turns
that into a DetectorResult regardless of small shape differences between
provider versions.

Supports two runtime modes (set via DETECTOR_MOCK_MODE env var):
  - MOCK mode (default): returns deterministic canned responses.
    Use for tests and local dev without API keys.
  - REAL mode: uploads media to the provider. Requires DETECTOR_API_KEY.

Failure modes, each a distinct DetectorError subclass:
  MalformedMedia      — bad base64, empty/oversized media, provider rejected the file
  MediaUnreachable    — remote URL could not be downloaded
  ProviderTimeout     — no answer within detector_timeout_seconds
  ProviderUnavailable — transport error, 5xx, or an unparseable response

No retries here; a failure is reported back to the caller as-is.
"""

import asyncio
import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from authentiscan.core.config import settings
from authentiscan.core.errors import (
    MalformedMedia,
    MediaUnreachable,
    ProviderTimeout,
    ProviderUnavailable,
)
from authentiscan.models.scan import FileType, ModelResult, ProviderStatus

logger = logging.getLogger(__name__)


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass
class MediaItem:
    """
    One item to verify: inline bytes, still-encoded base64, or a remote URL.

    Base64 is decoded lazily by load() so a malformed item fails on its own
    instead of failing the request that carried it.
    """
    file_type: FileType
    file_name: str
    data: Optional[bytes] = None
    encoded: Optional[str] = None
    url: Optional[str] = None

    def load(self, max_bytes: int) -> Optional[bytes]:
        """Return inline bytes (decoding once), or None for URL items."""
        if self.data is None and self.encoded is not None:
            self.data = decode_media(self.encoded, max_bytes)
            self.encoded = None
        if self.data is not None:
            if not self.data:
                raise MalformedMedia("Media is empty")
            if len(self.data) > max_bytes:
                raise MalformedMedia(f"Media exceeds {max_bytes} bytes")
        return self.data


@dataclass
class DetectorResult:
    status: ProviderStatus
    score: float                        # 0.0 – 1.0, higher = more likely manipulated
    models: list[ModelResult] = field(default_factory=list)
    request_id: Optional[str] = None    # provider-side id, kept for audit


# ── MIME type helper ──────────────────────────────────────────────────────────

_MIME_MAP = {
    ".jpg":  "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png":  "image/png",
    ".webp": "image/webp",
    ".gif":  "image/gif",
    ".mp3":  "audio/mpeg",
    ".wav":  "audio/wav",
    ".ogg":  "audio/ogg",
    ".m4a":  "audio/mp4",
    ".mp4":  "video/mp4",
    ".webm": "video/webm",
    ".mov":  "video/quicktime",
    ".avi":  "video/x-msvideo",
}

_DEFAULT_MIME = {
    FileType.IMAGE: "image/jpeg",
    FileType.VIDEO: "video/mp4",
    FileType.AUDIO: "audio/mpeg",
}


def mime_for(file_name: str, file_type: FileType) -> str:
    """Derive a MIME type from the file extension, falling back to the declared type."""
    ext = "." + file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return _MIME_MAP.get(ext, _DEFAULT_MIME[file_type])


# ── Inline media decoding ─────────────────────────────────────────────────────

_DATA_URL_PREFIX = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)


def decode_media(b64: str, max_bytes: int | None = None) -> bytes:
    """Decode base64 (optionally a data: URL) into raw bytes or raise MalformedMedia."""
    limit = max_bytes if max_bytes is not None else settings.max_media_bytes
    stripped = _DATA_URL_PREFIX.sub("", b64.strip())
    try:
        data = base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedMedia("Media is not valid base64") from exc
    if not data:
        raise MalformedMedia("Media is empty")
    if len(data) > limit:
        raise MalformedMedia(f"Media exceeds {limit} bytes")
    return data


# ── Response normalisation ────────────────────────────────────────────────────

_STATUS_ALIASES = {
    "AUTHENTIC": ProviderStatus.AUTHENTIC,
    "REAL": ProviderStatus.AUTHENTIC,
    "MANIPULATED": ProviderStatus.MANIPULATED,
    "FAKE": ProviderStatus.MANIPULATED,
}


def _clamp(v: Any) -> float:
    try:
        return max(0.0, min(1.0, float(v)))
    except (TypeError, ValueError):
        return 0.0


def normalize_status(raw: Any) -> ProviderStatus:
    return _STATUS_ALIASES.get(str(raw or "").strip().upper(), ProviderStatus.UNKNOWN)


def normalize_response(data: Any) -> DetectorResult:
    """
    Convert a provider JSON body into a DetectorResult.

    Missing scores count as 0.0; unknown statuses map to UNKNOWN. A body that
    is not an object, or has no status at all, is a provider fault.
    """
    if not isinstance(data, dict) or "status" not in data:
        raise ProviderUnavailable("Unexpected response from detection provider")

    models = []
    for m in data.get("models") or []:
        if not isinstance(m, dict):
            continue
        models.append(
            ModelResult(
                name=str(m.get("name") or "unknown"),
                status=str(m.get("status") or ProviderStatus.UNKNOWN.value),
                score=_clamp(m.get("score")),
            )
        )

    return DetectorResult(
        status=normalize_status(data.get("status")),
        score=_clamp(data.get("score")),
        models=models,
        request_id=data.get("request_id"),
    )


# Canned provider bodies for mock mode, keyed by file type.
_MOCK_RESPONSES: dict[str, dict[str, Any]] = {
    "image": {
        "request_id": "mock-image",
        "status": "AUTHENTIC",
        "score": 0.12,
        "models": [
            {"name": "rd-context-img", "status": "AUTHENTIC", "score": 0.08},
            {"name": "rd-pine-img", "status": "AUTHENTIC", "score": 0.15},
        ],
    },
    "video": {
        "request_id": "mock-video",
        "status": "AUTHENTIC",
        "score": 0.21,
        "models": [
            {"name": "rd-face-vid", "status": "AUTHENTIC", "score": 0.19},
            {"name": "rd-temporal-vid", "status": "AUTHENTIC", "score": 0.23},
        ],
    },
    "audio": {
        "request_id": "mock-audio",
        "status": "AUTHENTIC",
        "score": 0.17,
        "models": [
            {"name": "rd-voice-aud", "status": "AUTHENTIC", "score": 0.17},
        ],
    },
}


class DetectorClient:
    """
    Central interface to the detection provider.

    Constructed once by the application's composition root (see main.py)
    and shared by all requests.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout: float = 60.0,
        mock_mode: bool = True,
        max_media_bytes: int = 50 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_media_bytes = max_media_bytes
        self.mock_mode = mock_mode
        self._transport = transport

        if not self.mock_mode and not self.api_key:
            logger.warning(
                "DETECTOR_API_KEY not set — falling back to mock mode. "
                "Set DETECTOR_MOCK_MODE=true to silence this warning."
            )
            self.mock_mode = True

        if self.mock_mode:
            logger.info("DetectorClient initialised in MOCK mode")
        else:
            logger.info("DetectorClient initialised in REAL mode (%s)", self.api_url)

    @classmethod
    def from_settings(cls) -> "DetectorClient":
        return cls(
            api_url=settings.detector_api_url,
            api_key=settings.detector_api_key,
            timeout=settings.detector_timeout_seconds,
            mock_mode=settings.detector_mock_mode,
            max_media_bytes=settings.max_media_bytes,
        )

    async def verify(self, item: MediaItem) -> DetectorResult:
        """
        Verify one media item.

        The whole call (download + upload + analysis) is bounded by
        self.timeout; when it elapses the call is abandoned with ProviderTimeout.
        """
        if item.load(self.max_media_bytes) is None and not item.url:
            raise MalformedMedia("No media provided")

        if self.mock_mode:
            return normalize_response(_MOCK_RESPONSES[item.file_type.value])

        try:
            return await asyncio.wait_for(self._verify_remote(item), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Detector timed out after %.1fs (file=%s)", self.timeout, item.file_name)
            raise ProviderTimeout() from exc

    async def _verify_remote(self, item: MediaItem) -> DetectorResult:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            data = item.data if item.data is not None else await self._download(client, item.url)
            try:
                response = await client.post(
                    f"{self.api_url}/analyze",
                    headers={"X-API-KEY": self.api_key},
                    data={"media_type": item.file_type.value, "file_name": item.file_name},
                    files={"file": (item.file_name, data, mime_for(item.file_name, item.file_type))},
                )
                response.raise_for_status()
                body = response.json()
            except httpx.TimeoutException as exc:
                raise ProviderTimeout() from exc
            except httpx.HTTPStatusError as exc:
                code = exc.response.status_code
                logger.error("Detector API error: %s — %s", code, exc.response.text[:200])
                if code in (400, 413, 415, 422):
                    raise MalformedMedia("Provider rejected the media") from exc
                raise ProviderUnavailable(f"Detector returned HTTP {code}") from exc
            except httpx.RequestError as exc:
                logger.error("Detector request failed: %s", exc)
                raise ProviderUnavailable() from exc
            except ValueError as exc:
                raise ProviderUnavailable("Detector returned invalid JSON") from exc

        return normalize_response(body)

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        """Fetch remote media so it can be uploaded to the provider."""
        try:
            response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MediaUnreachable(
                f"Media URL returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise MediaUnreachable() from exc

        data = response.content
        if not data:
            raise MalformedMedia("Downloaded media is empty")
        if len(data) > self.max_media_bytes:
            raise MalformedMedia(f"Media exceeds {self.max_media_bytes} bytes")
        return data
