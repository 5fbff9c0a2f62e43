"""
user_service.py — Local user records keyed by the identity provider's id.

The identity provider owns sign-up and login; we keep a user document so the
credit balance, plan and scan history have an owner. sync() is an upsert:
the first call creates the record with the default balance, later calls only
refresh profile fields and never touch credits.
"""

import logging
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from authentiscan.core.database import USERS
from authentiscan.core.errors import EmailInUse, UserNotFound
from authentiscan.models.user import DashboardOut, Plan, TrialOut, UserOut, UserSyncRequest
from authentiscan.services import response_cache as rc
from authentiscan.services.credit_ledger import CreditLedger
from authentiscan.services.scan_service import MAX_PAGE_SIZE, ScanService

logger = logging.getLogger(__name__)

# Internal bookkeeping never leaves the service.
_PUBLIC_FIELDS = {"_id": 0, "settled_references": 0}

DASHBOARD_PAGE_SIZE = 10


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class UserService:
    def __init__(self, db: AsyncIOMotorDatabase, cache: rc.ResponseCache) -> None:
        self.users = db[USERS]
        self.cache = cache

    async def sync(self, user_id: str, payload: UserSyncRequest, default_credits: int) -> UserOut:
        now = _now()
        try:
            doc = await self.users.find_one_and_update(
                {"external_id": user_id},
                {
                    "$set": {
                        "email": payload.email.lower(),
                        "full_name": payload.full_name,
                        "image_url": payload.image_url,
                        "updated_at": now,
                    },
                    "$setOnInsert": {
                        "external_id": user_id,
                        "credits": default_credits,
                        "plan": Plan.TRIAL.value,
                        "settled_references": [],
                        "created_at": now,
                    },
                },
                projection=_PUBLIC_FIELDS,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            logger.info("Sync refused for %s: email already registered", user_id)
            raise EmailInUse() from exc

        self.cache.invalidate_user(user_id, namespaces=(rc.DASHBOARD,))
        return UserOut(**doc)

    async def get(self, user_id: str) -> UserOut:
        doc = await self.users.find_one({"external_id": user_id}, _PUBLIC_FIELDS)
        if doc is None:
            raise UserNotFound()
        return UserOut(**doc)

    async def dashboard(
        self, user_id: str, scans: ScanService, page: int = 1, limit: int = DASHBOARD_PAGE_SIZE
    ) -> DashboardOut:
        """Credits plus one page of recent scans, cached briefly per user."""
        page = max(1, page)
        limit = max(1, min(MAX_PAGE_SIZE, limit))

        cached = self.cache.get(rc.DASHBOARD, user_id, page, limit)
        if cached is not None:
            return cached

        credits = await scans.ledger.balance(user_id)
        recent = await scans.summaries(user_id, skip=(page - 1) * limit, limit=limit)
        dashboard = DashboardOut(credits=credits, scans=recent, page=page, limit=limit)
        self.cache.set(rc.DASHBOARD, user_id, page, limit, value=dashboard)
        return dashboard

    async def grant_trial(self, user_id: str, ledger: CreditLedger, trial_credits: int) -> TrialOut:
        credits = await ledger.grant_trial(user_id, trial_credits)
        self.cache.invalidate_user(user_id, namespaces=(rc.DASHBOARD,))
        logger.info("Trial granted to %s (balance %d)", user_id, credits)
        return TrialOut(credits=credits)
