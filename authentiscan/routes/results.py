"""
results.py — Saved verification results.

Routes:
  GET    /api/results?page=1&limit=20  — paginated full records, newest first
  GET    /api/results/{scan_id}        — one record with its provider payload
  DELETE /api/results/{scan_id}        — delete one of the caller's records

Records are only ever visible to their owner; another user's scan_id is a 404.
"""

from fastapi import APIRouter, Query

from authentiscan.core.security import CurrentUserId
from authentiscan.models.scan import ResultsPage, ScanOut
from authentiscan.routes.scans import ScanServiceDep

router = APIRouter(prefix="/api/results", tags=["results"])


@router.get("", response_model=ResultsPage)
async def list_results(
    user_id: CurrentUserId,
    service: ScanServiceDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
):
    return await service.page(user_id, page, limit)


@router.get("/{scan_id}", response_model=ScanOut)
async def get_result(scan_id: str, user_id: CurrentUserId, service: ScanServiceDep):
    return await service.get(user_id, scan_id)


@router.delete("/{scan_id}")
async def delete_result(scan_id: str, user_id: CurrentUserId, service: ScanServiceDep):
    await service.delete(user_id, scan_id)
    return {"success": True, "scan_id": scan_id}
