"""
Batch Scheduler
===============

Splits a document into contiguous page batches and runs them with bounded
concurrency. Each batch is independent: a failure is recorded on that batch
and never aborts its siblings.

Per batch:
    extract (rate limited, retried with backoff) -> process (once) -> result

Batches are dispatched in page order; completion order is unconstrained.
Setting the cancel event stops dispatching; batches not yet started are
marked CANCELLED while in-flight ones finish or fail on their own.

Usage:
    scheduler = BatchScheduler(max_concurrency=3, retry_config=RetryConfig())
    batches = BatchScheduler.create_batches(page_count=120, pages_per_batch=15)
    results = await scheduler.run(batches, extract, process, on_progress=print)
    status = overall_status(results)
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from contextrag.shared.enums import BatchStatus, DocumentStatus
from contextrag.shared.exceptions import RateLimitError
from contextrag.shared.models import Batch, BatchProgress, BatchResult, ProgressCallback
from contextrag.utils.rate_limiter import AdaptiveRateLimiter
from contextrag.utils.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

ExtractFn = Callable[[Batch], Awaitable[Any]]
ProcessFn = Callable[[Batch, Any], Awaitable[int]]
BatchUpdateFn = Callable[[Batch], Awaitable[Any]]


def overall_status(results: Sequence[BatchResult]) -> DocumentStatus:
    """
    Document status from batch outcomes.

    COMPLETED when no batch failed, FAILED when none succeeded, PARTIAL
    otherwise. Cancelled batches count as not succeeded.
    """
    succeeded = sum(1 for r in results if r.succeeded)
    if succeeded == len(results):
        return DocumentStatus.COMPLETED
    if succeeded == 0:
        return DocumentStatus.FAILED
    return DocumentStatus.PARTIAL


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class BatchScheduler:
    """
    Bounded-concurrency batch runner.

    Attributes:
        max_concurrency: Maximum batches in flight at once
        retry_config: Backoff policy applied to each batch's extract step
        rate_limiter: Optional shared limiter consulted before every attempt
    """

    def __init__(
        self,
        max_concurrency: int = 3,
        retry_config: RetryConfig = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        on_batch_update: Optional[BatchUpdateFn] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.retry_config = retry_config or RetryConfig()
        self.rate_limiter = rate_limiter
        self.on_batch_update = on_batch_update
        self._sleep = sleep

    # =========================================================================
    # Planning
    # =========================================================================

    @staticmethod
    def create_batches(page_count: int, pages_per_batch: int) -> List[Batch]:
        """
        Split pages 1..page_count into contiguous batches.

        The last batch may be short. Zero pages yields no batches.

        Raises:
            ValueError: If pages_per_batch < 1 or page_count < 0
        """
        if pages_per_batch < 1:
            raise ValueError(f"pages_per_batch must be >= 1, got {pages_per_batch}")
        if page_count < 0:
            raise ValueError(f"page_count must be >= 0, got {page_count}")

        batches = []
        for index, start in enumerate(range(1, page_count + 1, pages_per_batch)):
            batches.append(Batch(
                index=index,
                page_start=start,
                page_end=min(start + pages_per_batch - 1, page_count),
            ))
        return batches

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(
        self,
        batches: Sequence[Batch],
        extract: ExtractFn,
        process: ProcessFn,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[BatchResult]:
        """
        Run every batch and return results in batch order.

        Args:
            batches: Batches from `create_batches`
            extract: Model call for one batch; retried on retryable errors.
                If the returned object has a `usage` attribute it is added
                to the batch's token usage.
            process: Parse, enrich, embed and persist the extract output;
                runs once and returns the number of chunks written
            on_progress: Called with a BatchProgress at every state change
            cancel_event: When set, undispatched batches are cancelled

        Raises:
            ValueError: If a batch has already settled; settled batches are
                immutable and never run again
        """
        total = len(batches)
        if total == 0:
            return []
        settled = [b.index for b in batches if b.status.is_terminal]
        if settled:
            raise ValueError(f"Batches {settled} have already settled and cannot run again")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        started = time.perf_counter()

        for batch in batches:
            batch.status = BatchStatus.QUEUED
            await self._emit(on_progress, batch, total)

        async def run_one(batch: Batch) -> BatchResult:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return await self._cancel(batch, total, on_progress)
                return await self._execute(batch, total, extract, process, on_progress)

        # Tasks are created in page order and the semaphore wakes waiters FIFO
        tasks = [asyncio.create_task(run_one(batch)) for batch in batches]
        try:
            results = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        succeeded = sum(1 for r in results if r.succeeded)
        logger.info(
            f"Processed {total} batches in {time.perf_counter() - started:.1f}s: "
            f"{succeeded} completed, {total - succeeded} not completed"
        )
        return list(results)

    async def _execute(
        self,
        batch: Batch,
        total: int,
        extract: ExtractFn,
        process: ProcessFn,
        on_progress: Optional[ProgressCallback]
    ) -> BatchResult:
        batch.status = BatchStatus.PROCESSING
        batch.started_at = datetime.now(timezone.utc)
        await self._record(batch)
        await self._emit(on_progress, batch, total)

        async def attempt() -> Any:
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            try:
                output = await extract(batch)
            except RateLimitError:
                if self.rate_limiter is not None:
                    self.rate_limiter.report_rate_limit_error()
                raise
            if self.rate_limiter is not None:
                self.rate_limiter.report_success()
            return output

        async def on_retry(attempt_number: int, error: Exception, delay: float) -> None:
            batch.retry_count = attempt_number
            batch.status = BatchStatus.RETRYING
            batch.error = f"{type(error).__name__}: {error}"
            logger.warning(
                f"Batch {batch.index} (pages {batch.page_range}) retry "
                f"{attempt_number}/{self.retry_config.max_retries} in {delay:.1f}s: {error}"
            )
            await self._record(batch)
            await self._emit(on_progress, batch, total)

        try:
            output = await with_retry(attempt, self.retry_config, on_retry, self._sleep)
            batch.token_usage.add(getattr(output, "usage", None))
            batch.chunk_count = await process(batch, output)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            batch.status = BatchStatus.FAILED
            batch.error = f"{type(e).__name__}: {e}"
            batch.completed_at = datetime.now(timezone.utc)
            logger.error(f"Batch {batch.index} (pages {batch.page_range}) failed: {batch.error}")
            await self._record(batch)
            await self._emit(on_progress, batch, total)
            return self._result(batch)

        batch.status = BatchStatus.COMPLETED
        batch.error = None
        batch.completed_at = datetime.now(timezone.utc)
        logger.debug(
            f"Batch {batch.index} (pages {batch.page_range}) completed: "
            f"{batch.chunk_count} chunks, {batch.retry_count} retries"
        )
        await self._record(batch)
        await self._emit(on_progress, batch, total)
        return self._result(batch)

    async def _cancel(
        self,
        batch: Batch,
        total: int,
        on_progress: Optional[ProgressCallback]
    ) -> BatchResult:
        batch.status = BatchStatus.CANCELLED
        batch.error = "Cancelled before dispatch"
        batch.completed_at = datetime.now(timezone.utc)
        await self._record(batch)
        await self._emit(on_progress, batch, total)
        return self._result(batch)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    @staticmethod
    def _result(batch: Batch) -> BatchResult:
        return BatchResult(
            batch_index=batch.index,
            page_start=batch.page_start,
            page_end=batch.page_end,
            status=batch.status,
            chunk_count=batch.chunk_count,
            retry_count=batch.retry_count,
            error=batch.error,
            token_usage=batch.token_usage,
        )

    async def _record(self, batch: Batch) -> None:
        """Persist the batch's state; bookkeeping failures do not fail the batch."""
        if self.on_batch_update is None:
            return
        try:
            await self.on_batch_update(batch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to record status {batch.status.value} for batch {batch.index}: {e}")

    async def _emit(
        self,
        on_progress: Optional[ProgressCallback],
        batch: Batch,
        total: int
    ) -> None:
        if on_progress is None:
            return
        event = BatchProgress(
            batch_index=batch.index,
            current=batch.index + 1,
            total=total,
            page_start=batch.page_start,
            page_end=batch.page_end,
            status=batch.status,
            retry_count=batch.retry_count,
            error=batch.error,
        )
        try:
            await _maybe_await(on_progress(event))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Progress callback raised for batch {batch.index}: {e}")
