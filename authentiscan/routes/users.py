"""
users.py — Local account routes.

Routes:
  POST /api/users/sync       — create/refresh the caller's record after login
  GET  /api/users/me         — the caller's record
  GET  /api/users/dashboard  — credit balance + a page of recent scans
  POST /api/users/trial      — top the balance up to the trial allowance

All routes require a valid identity-provider Bearer token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from authentiscan.core.config import settings
from authentiscan.core.database import get_db, require_db
from authentiscan.core.rate_limit import limiter
from authentiscan.core.security import CurrentUserId
from authentiscan.models.user import DashboardOut, TrialOut, UserOut, UserSyncRequest
from authentiscan.routes.scans import ScanServiceDep
from authentiscan.services.user_service import DASHBOARD_PAGE_SIZE, UserService

router = APIRouter(prefix="/api/users", tags=["users"])


def get_user_service(request: Request, db=Depends(get_db)) -> UserService:
    return UserService(require_db(db), request.app.state.cache)


UserServiceDep = Annotated[UserService, Depends(get_user_service)]


@router.post("/sync", response_model=UserOut)
@limiter.limit("20/minute")
async def sync_user(
    request: Request,
    payload: UserSyncRequest,
    user_id: CurrentUserId,
    users: UserServiceDep,
):
    """Upsert the caller's profile. The first sync opens the account with the default balance."""
    return await users.sync(user_id, payload, default_credits=settings.default_credits)


@router.get("/me", response_model=UserOut)
async def get_me(user_id: CurrentUserId, users: UserServiceDep):
    return await users.get(user_id)


@router.get("/dashboard", response_model=DashboardOut)
async def get_dashboard(
    user_id: CurrentUserId,
    users: UserServiceDep,
    scans: ScanServiceDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DASHBOARD_PAGE_SIZE, ge=1, le=100),
):
    return await users.dashboard(user_id, scans, page=page, limit=limit)


@router.post("/trial", response_model=TrialOut)
@limiter.limit("5/minute")
async def start_trial(
    request: Request,
    user_id: CurrentUserId,
    users: UserServiceDep,
    scans: ScanServiceDep,
):
    return await users.grant_trial(user_id, scans.ledger, settings.trial_credits)
