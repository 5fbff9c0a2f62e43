"""
batch_scheduler.py — Bounded-concurrency fan-out of media items to the detector.

At most `workers` detector calls are in flight per batch; the rest wait on a
semaphore. Each item's failure is captured in its own BatchOutcome so one bad
file never aborts or blocks its siblings. The returned list is in input
order, whatever order the items finished in.

Once dispatched, items run to completion even if the awaiting request is
cancelled (the gather is shielded), so provider-side work is never
abandoned half-way.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from authentiscan.ai.detector_client import DetectorResult, MediaItem
from authentiscan.core.errors import DetectorError, ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 3


class Detector(Protocol):
    async def verify(self, item: MediaItem) -> DetectorResult: ...


@dataclass
class BatchOutcome:
    index: int
    item: MediaItem
    result: Optional[DetectorResult] = None
    error: Optional[DetectorError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class BatchScheduler:
    def __init__(self, detector: Detector, workers: int = DEFAULT_WORKERS) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.detector = detector
        self.workers = workers

    async def run(self, items: list[MediaItem]) -> list[BatchOutcome]:
        """Verify every item; returns one outcome per item, in input order."""
        if not items:
            return []

        semaphore = asyncio.Semaphore(self.workers)

        async def _verify_one(index: int, item: MediaItem) -> BatchOutcome:
            async with semaphore:
                try:
                    result = await self.detector.verify(item)
                except DetectorError as exc:
                    logger.warning(
                        "Item %d (%s) failed: %s [%s]", index, item.file_name, exc.message, exc.code
                    )
                    return BatchOutcome(index=index, item=item, error=exc)
                except Exception as exc:
                    logger.exception("Item %d (%s) failed unexpectedly", index, item.file_name)
                    return BatchOutcome(
                        index=index, item=item, error=ProviderUnavailable(str(exc) or None)
                    )
            return BatchOutcome(index=index, item=item, result=result)

        logger.info("Dispatching batch of %d item(s) with %d worker(s)", len(items), self.workers)
        tasks = [asyncio.create_task(_verify_one(i, item)) for i, item in enumerate(items)]
        outcomes = await asyncio.shield(asyncio.gather(*tasks))

        ok = sum(1 for o in outcomes if o.ok)
        logger.info("Batch complete: %d succeeded, %d failed", ok, len(outcomes) - ok)
        return list(outcomes)
