"""
scan_service.py — Submission and retrieval of verification results.

submit() is the whole verification path for one request:

  1. Pre-flight: the caller must hold at least one credit per submitted
     item, otherwise InsufficientCredits before any detector call.
  2. Batch Scheduler verifies the items (bounded concurrency, per-item
     failure isolation).
  3. Ledger debit, once, for the items that produced a usable result. If a
     concurrent request spent credits meanwhile, only the items that can
     still be paid for (in input order) are kept.
  4. Persist one scan per charged item; a failed insert is refunded.
  5. Invalidate the caller's list caches.

Reads go through the ResponseCache (namespaces in response_cache.py).
"""

import asyncio
import hashlib
import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from authentiscan.ai.detector_client import MediaItem
from authentiscan.core.database import SCANS
from authentiscan.core.errors import InsufficientCredits, InternalError, ResultNotFound
from authentiscan.models.scan import (
    BatchScanResponse,
    ItemOutcome,
    MediaItemIn,
    Pagination,
    ProviderPayload,
    ResultsPage,
    ScanOut,
    ScanSummary,
    parse_provider_payload,
)
from authentiscan.services import response_cache as rc
from authentiscan.services.batch_scheduler import BatchOutcome, BatchScheduler
from authentiscan.services.credit_ledger import CreditLedger
from authentiscan.services.verdict import classify, confidence_score, feature_strings

logger = logging.getLogger(__name__)

RECENT_SCANS_LIMIT = 100
MAX_PAGE_SIZE = 100

_SUMMARY_FIELDS = {
    "_id": 0,
    "scan_id": 1,
    "file_name": 1,
    "file_type": 1,
    "status": 1,
    "confidence_score": 1,
    "media_ref": 1,
    "created_at": 1,
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _display_name(item: MediaItemIn, index: int) -> str:
    if item.file_name:
        return item.file_name
    if item.url:
        tail = item.url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        if tail:
            return tail
    return f"{item.file_type.value}-{index + 1}"


def to_media_item(item: MediaItemIn, index: int) -> MediaItem:
    return MediaItem(
        file_type=item.file_type,
        file_name=_display_name(item, index),
        encoded=item.base64,
        url=None if item.base64 else item.url,
    )


def _media_ref(item: MediaItem) -> Optional[str]:
    if item.url:
        return item.url
    if item.data is not None:
        return "sha256:" + hashlib.sha256(item.data).hexdigest()
    return None


def build_scan_document(user_id: str, outcome: BatchOutcome) -> dict:
    """Scan document for one successful batch item."""
    result = outcome.result
    payload = ProviderPayload(
        request_id=result.request_id,
        status=result.status,
        score=result.score,
        models=result.models,
    )
    return {
        "user_id": user_id,
        "scan_id": f"scan-{uuid.uuid4().hex[:16]}",
        "file_name": outcome.item.file_name,
        "file_type": outcome.item.file_type.value,
        "status": classify(result.status, result.score).value,
        "confidence_score": confidence_score(result.score),
        "models": [m.model_dump() for m in result.models],
        "models_used": [m.name for m in result.models],
        "features": feature_strings(result.models),
        "media_ref": _media_ref(outcome.item),
        "provider_payload": payload.model_dump(mode="json"),
        "created_at": _now(),
    }


def scan_from_document(doc: dict) -> ScanOut:
    payload = None
    raw = doc.get("provider_payload")
    if raw is not None:
        try:
            payload = parse_provider_payload(raw)
        except ValueError as exc:
            logger.warning("Scan %s has unreadable provider payload: %s", doc.get("scan_id"), exc)
    fields = {k: v for k, v in doc.items() if k not in ("_id", "provider_payload")}
    return ScanOut(**fields, provider_payload=payload)


class ScanService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        scheduler: BatchScheduler,
        ledger: CreditLedger,
        cache: rc.ResponseCache,
    ) -> None:
        self.scans = db[SCANS]
        self.scheduler = scheduler
        self.ledger = ledger
        self.cache = cache

    # ── Submission ─────────────────────────────────────────────────────────────

    async def submit(self, user_id: str, items: list[MediaItemIn]) -> BatchScanResponse:
        planned = len(items)
        balance = await self.ledger.balance(user_id)
        if balance < planned:
            raise InsufficientCredits(
                f"Insufficient credits: {planned} required, {balance} available"
            )

        outcomes = await self.scheduler.run(
            [to_media_item(item, i) for i, item in enumerate(items)]
        )
        usable = [o for o in outcomes if o.ok]

        charged, balance = await self.ledger.debit_up_to(user_id, len(usable))
        if charged < len(usable):
            logger.warning(
                "Balance of %s dropped during batch: charging %d of %d result(s)",
                user_id, charged, len(usable),
            )

        saved: dict[int, ScanOut] = {}
        failures: dict[int, tuple[str, str]] = {}
        for outcome in usable[:charged]:
            doc = build_scan_document(user_id, outcome)
            try:
                await self.scans.insert_one(doc)
            except PyMongoError:
                logger.exception("Failed to persist scan for item %d", outcome.index)
                failures[outcome.index] = (InternalError.code, InternalError.default_message)
                continue
            saved[outcome.index] = scan_from_document(doc)
        for outcome in usable[charged:]:
            failures[outcome.index] = (InsufficientCredits.code, InsufficientCredits.default_message)

        refund = charged - len(saved)
        if refund:
            balance = await self.ledger.credit(user_id, refund)
            charged -= refund

        self.cache.invalidate_user(user_id)

        results = []
        for outcome in outcomes:
            if outcome.index in saved:
                results.append(
                    ItemOutcome(
                        index=outcome.index,
                        file_name=outcome.item.file_name,
                        ok=True,
                        scan=saved[outcome.index],
                    )
                )
                continue
            if outcome.error is not None:
                code, message = outcome.error.code, outcome.error.message
            else:
                code, message = failures[outcome.index]
            results.append(
                ItemOutcome(
                    index=outcome.index,
                    file_name=outcome.item.file_name,
                    ok=False,
                    error_code=code,
                    error=message,
                )
            )

        logger.info(
            "Scan batch for %s: %d submitted, %d saved, %d charged, balance %d",
            user_id, planned, len(saved), charged, balance,
        )
        return BatchScanResponse(results=results, charged=charged, credits=balance)

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def recent(self, user_id: str) -> list[ScanSummary]:
        """The caller's most recent scans (summary fields only)."""
        cached = self.cache.get(rc.SCANS_LIST, user_id)
        if cached is not None:
            return cached

        summaries = await self.summaries(user_id, skip=0, limit=RECENT_SCANS_LIMIT)
        self.cache.set(rc.SCANS_LIST, user_id, value=summaries)
        return summaries

    async def summaries(self, user_id: str, skip: int, limit: int) -> list[ScanSummary]:
        cursor = (
            self.scans.find({"user_id": user_id}, _SUMMARY_FIELDS)
            .sort("created_at", DESCENDING)
            .skip(skip)
            .limit(limit)
        )
        return [ScanSummary(**doc) async for doc in cursor]

    async def page(self, user_id: str, page: int, limit: int) -> ResultsPage:
        page = max(1, page)
        limit = max(1, min(MAX_PAGE_SIZE, limit))

        cached = self.cache.get(rc.RESULTS_LIST, user_id, page, limit)
        if cached is not None:
            return cached

        async def _fetch() -> list[ScanOut]:
            cursor = (
                self.scans.find({"user_id": user_id})
                .sort("created_at", DESCENDING)
                .skip((page - 1) * limit)
                .limit(limit)
            )
            return [scan_from_document(doc) async for doc in cursor]

        data, total = await asyncio.gather(
            _fetch(), self.scans.count_documents({"user_id": user_id})
        )
        pages = math.ceil(total / limit) if total > 0 else 0
        response = ResultsPage(
            data=data,
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=pages,
                has_next_page=page < pages,
                has_prev_page=page > 1,
            ),
        )
        self.cache.set(rc.RESULTS_LIST, user_id, page, limit, value=response)
        return response

    async def get(self, user_id: str, scan_id: str) -> ScanOut:
        cached = self.cache.get(rc.RESULT_ITEM, user_id, scan_id)
        if cached is not None:
            return cached

        doc = await self.scans.find_one({"user_id": user_id, "scan_id": scan_id})
        if doc is None:
            raise ResultNotFound()
        scan = scan_from_document(doc)
        self.cache.set(rc.RESULT_ITEM, user_id, scan_id, value=scan)
        return scan

    async def delete(self, user_id: str, scan_id: str) -> None:
        doc = await self.scans.find_one_and_delete({"user_id": user_id, "scan_id": scan_id})
        if doc is None:
            raise ResultNotFound()
        self.cache.invalidate(rc.RESULT_ITEM, user_id, scan_id)
        self.cache.invalidate_user(user_id)
        logger.info("Scan %s deleted by %s", scan_id, user_id)
