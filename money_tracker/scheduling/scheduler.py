"""
Background Work and the Due-Transaction Sweep

Two pieces:

- BackgroundTasks keeps strong references to fire-and-forget asyncio tasks
  (instance generation, reminder scheduling) and logs their failures so
  nothing is lost silently. `drain()` waits for everything queued so far.
- TransactionScheduler periodically asks the ledger to process pending
  scheduled transactions whose date has come.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from money_tracker.services.storage.interface import StorageError

if TYPE_CHECKING:
    from money_tracker.audit.logger import AuditLogger
    from money_tracker.orchestrator import LedgerService

logger = structlog.get_logger(__name__)


class DueProcessingResult(BaseModel):
    """Outcome of one sweep over due scheduled transactions."""
    executed_ids: list[UUID] = Field(
        default_factory=list,
        description="Automatic transactions that were executed"
    )
    notified_ids: list[UUID] = Field(
        default_factory=list,
        description="Manual transactions the user was reminded about"
    )

    @property
    def automatic_count(self) -> int:
        return len(self.executed_ids)

    @property
    def manual_count(self) -> int:
        return len(self.notified_ids)


class BackgroundTasks:
    """Owner of the ledger's background asyncio tasks."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self.failures: list[BaseException] = []

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        """Schedule `coro` on the running loop without waiting for it."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failures.append(exc)
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error_type=type(exc).__name__,
                error=str(exc),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every task, including ones spawned while waiting, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


class TransactionScheduler:
    """
    Periodic due-transaction sweep.

    Automatic transactions are executed, manual ones produce a "due"
    reminder. A failing sweep is logged and retried on the next tick.
    """

    def __init__(
        self,
        ledger: "LedgerService",
        interval_seconds: float = 300,
        clock: Callable[[], datetime] = datetime.now,
        audit_logger: Optional["AuditLogger"] = None,
    ):
        self._ledger = ledger
        self._interval = interval_seconds
        self._clock = clock
        self._audit_logger = audit_logger
        self._stop = asyncio.Event()

    async def run_once(self) -> DueProcessingResult:
        """Process due transactions, then top up every recurring series."""
        result = await self._ledger.process_due_transactions(self._clock())
        await self._ledger.extend_recurring_series()
        return result

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Sweep every `interval_seconds` until `stop()` is called.

        Args:
            max_ticks: Stop after this many sweeps (None = run forever)
        """
        self._stop.clear()
        ticks = 0
        logger.info("scheduler_started", interval_seconds=self._interval)

        while not self._stop.is_set():
            try:
                await self.run_once()
            except StorageError as e:
                logger.error("scheduler_sweep_failed", error=str(e))
                if self._audit_logger is not None:
                    await self._audit_logger.log_error(
                        error_type="scheduler_sweep_failed",
                        error_message=str(e),
                        details={"tick": ticks},
                    )

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

        logger.info("scheduler_stopped", ticks=ticks)

    def stop(self) -> None:
        self._stop.set()
