"""
Fire-and-continue report refresh queue.

Ledger and justification writes enqueue the report keys they affect after their
own commit; a worker drains the queue in its own sessions. Recalculation is
idempotent, so a failed run is retried with exponential backoff and, once the
attempts are exhausted, the report is flagged stale instead of left silently wrong.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker
from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from attendance_engine.core.app_logger import get_logger
from attendance_engine.core.config import settings
from attendance_engine.core.exceptions import NotFoundError
from attendance_engine.db.session import AsyncSessionLocal

logger = get_logger("aggregation")


@dataclass(frozen=True)
class ReportKey:
    enrollment_id: UUID
    bimester_id: UUID
    course_id: Optional[UUID] = None


class ReportRefreshQueue:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory
        # Insertion-ordered set: a key queued twice before the worker reaches it is refreshed once.
        self._pending: Dict[ReportKey, None] = {}
        self._wakeup: Optional[asyncio.Event] = None
        self._worker: Optional[asyncio.Task] = None

    def bind(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    @property
    def pending(self) -> int:
        return len(self._pending)

    def enqueue(self, key: ReportKey) -> bool:
        """Queue a refresh. Returns False when the key was already waiting."""
        if key in self._pending:
            return False
        self._pending[key] = None
        if self._wakeup is not None:
            self._wakeup.set()
        return True

    def enqueue_many(self, keys: Iterable[ReportKey]) -> int:
        return sum(1 for key in keys if self.enqueue(key))

    async def process_pending(self) -> int:
        """Drain everything queued so far. Returns the number of keys processed."""
        processed = 0
        while self._pending:
            key = next(iter(self._pending))
            del self._pending[key]
            await self._refresh(key)
            processed += 1
        return processed

    async def _recalculate_once(self, key: ReportKey) -> None:
        from attendance_engine.api.v1.reports import service as report_service

        async with self._session_factory() as db:
            await report_service.recalculate(db, key.enrollment_id, key.bimester_id, key.course_id)

    async def _refresh(self, key: ReportKey) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.aggregation_max_attempts),
            wait=wait_exponential(
                min=settings.aggregation_backoff_min_seconds,
                max=settings.aggregation_backoff_max_seconds,
            ),
            retry=retry_if_not_exception_type(NotFoundError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "Retrying report refresh %s (attempt %d)", key, attempt.retry_state.attempt_number
                        )
                    await self._recalculate_once(key)
        except NotFoundError as exc:
            logger.warning("Report refresh skipped for %s: %s", key, exc.message)
        except Exception:
            logger.exception("Report refresh failed after %d attempts; marking stale: %s",
                             settings.aggregation_max_attempts, key)
            await self._mark_stale(key)

    async def _mark_stale(self, key: ReportKey) -> None:
        from attendance_engine.api.v1.reports import service as report_service

        try:
            async with self._session_factory() as db:
                await report_service.mark_stale(db, key.enrollment_id, key.bimester_id, key.course_id)
        except Exception:
            logger.exception("Could not flag report %s as stale", key)

    async def _run(self) -> None:
        assert self._wakeup is not None
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.process_pending()

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._wakeup = asyncio.Event()
        if self._pending:
            self._wakeup.set()
        self._worker = asyncio.get_running_loop().create_task(self._run())
        logger.info("Report refresh worker started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._wakeup = None
        # Whatever is still queued gets processed inline so no refresh is lost on shutdown.
        await self.process_pending()
        logger.info("Report refresh worker stopped")


report_queue = ReportRefreshQueue(AsyncSessionLocal)
