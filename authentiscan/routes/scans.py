"""
scans.py — Media verification endpoints.

Routes:
  POST /api/scans — verify one item or a batch of items, charge one credit
                    per saved result
  GET  /api/scans — the caller's most recent scan summaries

Request body is either a batch:
  {"files": [{"base64": "...", "file_type": "image", "file_name": "a.jpg"},
             {"url": "https://example.com/clip.mp4", "file_type": "video"}]}
or a single item at the top level:
  {"base64": "data:image/png;base64,iVBOR...", "file_type": "image"}

The response lists one outcome per submitted item, in submission order.
Failed items (bad media, provider errors) carry an error code and cost
nothing; the request as a whole still succeeds.

TESTING
───────
  pytest tests/test_scans.py -v

  curl -X POST http://localhost:8000/api/scans \\
    -H "Authorization: Bearer $TOKEN" -H 'Content-Type: application/json' \\
    -d '{"url": "https://example.com/photo.jpg", "file_type": "image"}'
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request

from authentiscan.core.config import settings
from authentiscan.core.database import get_db, require_db
from authentiscan.core.rate_limit import limiter
from authentiscan.core.security import CurrentUserId
from authentiscan.models.scan import BatchScanResponse, ScanCreateRequest, ScanSummary
from authentiscan.services.batch_scheduler import BatchScheduler
from authentiscan.services.credit_ledger import CreditLedger
from authentiscan.services.scan_service import ScanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scans", tags=["scans"])


def get_scan_service(request: Request, db=Depends(get_db)) -> ScanService:
    """FastAPI dependency — ScanService bound to the shared detector and cache."""
    db = require_db(db)
    return ScanService(
        db,
        scheduler=BatchScheduler(request.app.state.detector, workers=settings.batch_workers),
        ledger=CreditLedger(db),
        cache=request.app.state.cache,
    )


ScanServiceDep = Annotated[ScanService, Depends(get_scan_service)]


@router.post("", response_model=BatchScanResponse, status_code=201)
@limiter.limit("30/minute")
async def create_scans(
    request: Request,
    payload: ScanCreateRequest,
    user_id: CurrentUserId,
    service: ScanServiceDep,
):
    """Verify the submitted media and persist one scan per usable result."""
    items = payload.items()
    if len(items) > settings.max_batch_items:
        raise HTTPException(
            status_code=422,
            detail=f"At most {settings.max_batch_items} files per request",
        )
    return await service.submit(user_id, items)


@router.get("", response_model=list[ScanSummary])
async def list_scans(user_id: CurrentUserId, service: ScanServiceDep):
    """Most recent scans first."""
    return await service.recent(user_id)
