"""
Readiness scheduler.

Two triggers hand quiet submissions to the processor:

- deferred_check(): armed after each inbound fragment, sleeps for the
  quiet period plus a margin and processes the sender's submission if it
  is still ready. Pure latency optimization; it may never fire if the
  worker is recycled.
- sweep(): externally triggered (cron), processes every ready submission
  system-wide. This is the durable backstop.

Both can race on the same record; mark_processing() decides the winner.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional
import structlog
from fastapi.concurrency import run_in_threadpool

from config import settings
from models.sweep import ProcessResult, SweepSummary
from services.pending_message_service import PendingMessageService, get_pending_message_service
from services.message_processor_service import MessageProcessorService, get_message_processor_service
from utils.text_utils import mask_phone

logger = structlog.get_logger(__name__)

# Concurrent submissions per sweep; each one holds a model call
SWEEP_MAX_WORKERS = 4


class ReadinessScheduler:
    """
    Finds quiet submissions and dispatches them for processing.
    """

    def __init__(
        self,
        pending_service: Optional[PendingMessageService] = None,
        processor: Optional[MessageProcessorService] = None,
    ):
        self.pending = pending_service or get_pending_message_service()
        self.processor = processor or get_message_processor_service()

    @property
    def deferred_delay_seconds(self) -> float:
        return float(settings.quiet_period_seconds + settings.deferred_check_margin_seconds)

    async def deferred_check(
        self,
        sender_number: str,
        market_id: str,
        delay_seconds: Optional[float] = None
    ) -> Optional[ProcessResult]:
        """
        Wait out the quiet period, then process the submission if ready.

        A later fragment resets the clock, in which case this check finds
        nothing and returns None. Errors are logged, never raised: nothing
        awaits this task.

        Args:
            sender_number: Sender of the fragment that armed the check
            market_id: Market of that fragment
            delay_seconds: Override for the wait (defaults to quiet period + margin)

        Returns:
            ProcessResult if a submission was processed, else None
        """
        delay = self.deferred_delay_seconds if delay_seconds is None else delay_seconds
        await asyncio.sleep(delay)

        try:
            ready = await run_in_threadpool(
                self.pending.get_ready, sender_number, market_id
            )
            if not ready:
                logger.debug(
                    "deferred_check_not_ready",
                    sender=mask_phone(sender_number),
                    market_id=market_id
                )
                return None

            return await run_in_threadpool(self.processor.process, ready[0])

        except Exception as e:
            logger.error(
                "deferred_check_failed",
                sender=mask_phone(sender_number),
                market_id=market_id,
                error=str(e),
                error_type=type(e).__name__
            )
            return None

    def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Process all ready submissions.

        Idempotent: records already claimed by a concurrent sweep or
        deferred check are skipped and not counted.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            SweepSummary with processed/succeeded/failed counts

        Raises:
            DatabaseError: If the ready query fails
        """
        now = now or datetime.now(timezone.utc)

        logger.info("sweep_started")

        ready = self.pending.get_ready(now=now)

        if not ready:
            logger.info("sweep_nothing_ready")
            return SweepSummary(timestamp=now)

        with ThreadPoolExecutor(max_workers=min(SWEEP_MAX_WORKERS, len(ready))) as pool:
            results = list(pool.map(self.processor.process, ready))

        attempted = [r for r in results if not r.skipped]
        succeeded = sum(1 for r in attempted if r.success)

        summary = SweepSummary(
            processed=len(attempted),
            succeeded=succeeded,
            failed=len(attempted) - succeeded,
            timestamp=now,
        )

        logger.info(
            "sweep_completed",
            found=len(ready),
            processed=summary.processed,
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=len(results) - len(attempted)
        )

        return summary


# Singleton instance
_readiness_scheduler: Optional[ReadinessScheduler] = None


def get_readiness_scheduler() -> ReadinessScheduler:
    """Get or create ReadinessScheduler instance."""
    global _readiness_scheduler
    if _readiness_scheduler is None:
        _readiness_scheduler = ReadinessScheduler()
    return _readiness_scheduler
