"""
scan.py — Pydantic models for media verification (scans and results).

Separation of concerns:
  MediaItemIn / ScanCreateRequest — what the client submits
  ProviderPayload                 — versioned provider result persisted for audit/detail views
  ScanOut / ScanSummary           — what the API returns
  ItemOutcome / BatchScanResponse — per-item outcome of a batch submission
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator


class FileType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class Classification(str, Enum):
    AUTHENTIC = "AUTHENTIC"
    SUSPICIOUS = "SUSPICIOUS"
    DEEPFAKE = "DEEPFAKE"


class ProviderStatus(str, Enum):
    """Coarse status reported by the detector for a whole item."""

    AUTHENTIC = "AUTHENTIC"
    MANIPULATED = "MANIPULATED"
    UNKNOWN = "UNKNOWN"


# ── Provider payload ───────────────────────────────────────────────────────────

PROVIDER_PAYLOAD_VERSION = 1


class ModelResult(BaseModel):
    """One sub-model verdict inside a detector response."""

    name: str
    status: str
    score: float = Field(ge=0.0, le=1.0)


class ProviderPayload(BaseModel):
    """Detector result as stored on a scan. Decode with parse_provider_payload()."""

    schema_version: Literal[1] = PROVIDER_PAYLOAD_VERSION
    provider: str = "detector"
    request_id: Optional[str] = None
    status: ProviderStatus
    score: float = Field(ge=0.0, le=1.0)
    models: list[ModelResult] = Field(default_factory=list)


def parse_provider_payload(raw: dict) -> ProviderPayload:
    """
    Decode a stored provider payload.

    Raises ValueError for unknown schema versions or a payload whose shape
    no longer matches, instead of returning a partially-filled object.
    """
    if not isinstance(raw, dict):
        raise ValueError("provider payload must be an object")
    version = raw.get("schema_version")
    if version != PROVIDER_PAYLOAD_VERSION:
        raise ValueError(f"unsupported provider payload version: {version!r}")
    try:
        return ProviderPayload.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"invalid provider payload: {exc.error_count()} error(s)") from exc


# ── Request models ─────────────────────────────────────────────────────────────

class MediaItemIn(BaseModel):
    """One media item: inline base64 (optionally a data: URL) or a remote URL."""

    base64: Optional[str] = Field(default=None, description="Base64 data or data: URL")
    url: Optional[str] = Field(default=None, description="Publicly reachable media URL")
    file_type: FileType = FileType.IMAGE
    file_name: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _one_source(self) -> "MediaItemIn":
        if not self.base64 and not self.url:
            raise ValueError("either base64 or url is required")
        return self


class ScanCreateRequest(BaseModel):
    """
    POST /api/scans body: {"files": [...]} for a batch, or a single item's
    fields at the top level.
    """

    files: Optional[list[MediaItemIn]] = None
    base64: Optional[str] = None
    url: Optional[str] = None
    file_type: FileType = FileType.IMAGE
    file_name: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _has_media(self) -> "ScanCreateRequest":
        if self.files is not None:
            if not self.files:
                raise ValueError("files must not be empty")
        elif not self.base64 and not self.url:
            raise ValueError("no media provided")
        return self

    def items(self) -> list[MediaItemIn]:
        if self.files is not None:
            return list(self.files)
        return [
            MediaItemIn(
                base64=self.base64,
                url=self.url,
                file_type=self.file_type,
                file_name=self.file_name,
            )
        ]


# ── Response models ────────────────────────────────────────────────────────────

class ScanSummary(BaseModel):
    """List-view projection of a scan."""

    scan_id: str
    file_name: str
    file_type: FileType
    status: Classification
    confidence_score: int
    media_ref: Optional[str] = None  # remote URL or "sha256:<hex>" for uploads
    created_at: datetime


class ScanOut(ScanSummary):
    """Full scan record, including per-model detail."""

    models: list[ModelResult] = Field(default_factory=list)
    models_used: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    provider_payload: Optional[ProviderPayload] = None


class ItemOutcome(BaseModel):
    """Outcome for one submitted item; exactly one of scan / error is set."""

    index: int
    file_name: str
    ok: bool
    scan: Optional[ScanOut] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class BatchScanResponse(BaseModel):
    results: list[ItemOutcome]
    charged: int
    credits: int


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next_page: bool
    has_prev_page: bool


class ResultsPage(BaseModel):
    success: bool = True
    data: list[ScanOut]
    pagination: Pagination
