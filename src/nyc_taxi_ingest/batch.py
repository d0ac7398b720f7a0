"""Batch accumulation and throttled progress reporting.

Callbacks handed to these helpers may be plain functions or coroutine
functions; :func:`invoke` awaits the result when needed so the caller always
suspends until the callback is done.
"""
import inspect
import time
from typing import Any, Callable, Optional

from loguru import logger

from .stats import ErrorEntry, ParseStatistics, ProgressSnapshot, progress_snapshot


async def invoke(callback: Optional[Callable], *args: Any) -> Any:
    """Call ``callback`` (sync or async) and return its result."""
    if callback is None:
        return None
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class BatchAccumulator:
    """Group records into batches of ``batch_size`` for the batch sink.

    Batches are numbered from 1 in the order they are flushed. A failing
    sink is logged and recorded in ``stats.errors``; accumulation goes on
    with the next batch and already delivered batches are left as they are.

    Parameters
    ----------
    batch_size
        Number of records per full batch.
    on_batch
        ``on_batch(batch, batch_number)`` sink.
    on_error
        Receives the exception of a failing sink.
    stats
        Statistics object the failures and flush counts are written to.
    """

    def __init__(
        self,
        batch_size: int,
        on_batch: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
        stats: Optional[ParseStatistics] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self.on_batch = on_batch
        self.on_error = on_error
        self.stats = stats if stats is not None else ParseStatistics()
        self.batch_number = 0
        self._buffer: list = []

    def __len__(self) -> int:
        return len(self._buffer)

    async def add(self, record: Any) -> None:
        self._buffer.append(record)
        if len(self._buffer) >= self.batch_size:
            await self._deliver()

    async def flush(self) -> None:
        """Deliver the remaining partial batch, if any."""
        if self._buffer:
            await self._deliver()

    async def _deliver(self) -> None:
        batch, self._buffer = self._buffer, []
        self.batch_number += 1
        number = self.batch_number
        try:
            await invoke(self.on_batch, batch, number)
        except Exception as e:
            logger.error(f"Error processing batch {number}: {e!r}")
            self.stats.errors.append(ErrorEntry(kind="batch", message=str(e), batch_number=number))
            await invoke(self.on_error, e)
        self.stats.batches_flushed += 1


class ProgressReporter:
    """Emit a :class:`~.stats.ProgressSnapshot` at most once per ``interval`` seconds."""

    def __init__(
        self,
        on_progress: Optional[Callable],
        file_size: int,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_progress = on_progress
        self.file_size = file_size
        self.interval = interval
        self._clock = clock
        self._last = clock()

    async def maybe_report(self, stats: ParseStatistics) -> Optional[ProgressSnapshot]:
        if self.on_progress is None:
            return None
        now = self._clock()
        if now - self._last < self.interval:
            return None
        self._last = now
        snapshot = progress_snapshot(stats, self.file_size)
        await invoke(self.on_progress, snapshot)
        return snapshot
