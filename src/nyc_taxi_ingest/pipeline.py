"""Streaming ingestion pipeline: file -> tokenizer -> record hook -> batches.

The pipeline runs two cooperating tasks joined by a bounded
:class:`asyncio.Queue`:

- the *producer* reads the file chunk by chunk (off the event loop), feeds
  the tokenizer and puts rows and line errors on the queue, blocking when
  the queue is full;
- the *consumer* takes events in order, runs ``on_record``, accumulates
  batches for ``on_batch`` and emits throttled progress.

Records therefore reach the batch sink in file order and batches are
numbered monotonically. A fatal error (error tolerance exceeded, unreadable
file) stops both tasks; batches delivered before that are not rolled back.

Examples
--------
>>> validator = InclusiveValidator()
>>> stats = parse_file_sync(
...     "train.csv",
...     ParserConfig(batch_size=5000),
...     on_record=validator,
...     on_batch=clickhouse_sink("nyc.trips", ch_kwargs),
... )
>>> stats.valid_records
1458644
"""
import asyncio
import contextlib
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .batch import BatchAccumulator, ProgressReporter, invoke
from .config import ParserConfig
from .exceptions import IngestError, LineError
from .parse import ChunkReader, CSVTokenizer
from .stats import ErrorEntry, ParseStatistics

_MB = 1024 * 1024


class _EndOfStream:
    pass


_END = _EndOfStream()


class IngestionPipeline:
    """Single-file ingestion run over one :class:`~.parse.CSVTokenizer`.

    An instance parses one file at a time. Call :meth:`reset` before
    running it on another file.
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.tokenizer = CSVTokenizer(self.config)
        self._running = False

    @property
    def stats(self) -> ParseStatistics:
        return self.tokenizer.stats

    def snapshot(self) -> ParseStatistics:
        """Copy of the running statistics."""
        return self.tokenizer.snapshot()

    def reset(self) -> None:
        if self._running:
            raise RuntimeError("Cannot reset a running pipeline")
        self.tokenizer.reset()

    async def run(
        self,
        path: str | Path,
        *,
        on_record: Optional[Callable] = None,
        on_batch: Optional[Callable] = None,
        on_progress: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
        on_complete: Optional[Callable] = None,
    ) -> ParseStatistics:
        """Parse ``path`` and drive the callbacks.

        Parameters
        ----------
        path
            CSV file to ingest.
        on_record
            ``on_record(raw) -> record | None``. ``None`` counts the row as
            invalid; an exception counts it as invalid and is reported to
            ``on_error``. Without a hook the raw rows are batched.
        on_batch
            ``on_batch(batch, batch_number)`` storage sink.
        on_progress
            Receives a :class:`~.stats.ProgressSnapshot` at most once per
            ``config.progress_interval`` seconds.
        on_error
            Receives every recoverable error (line errors, record and batch
            failures).
        on_complete
            Receives the final statistics.

        Returns
        -------
        ParseStatistics
            Final statistics snapshot.

        Raises
        ------
        ErrorToleranceExceeded
            Too many malformed lines; ``.statistics`` holds the counters.
        SourceUnreadableError
            The file cannot be opened, read or decoded.
        """
        if self._running:
            raise RuntimeError("Pipeline is already running")
        if self.tokenizer.state.line_number or self.tokenizer.state.bytes_processed:
            raise RuntimeError("Pipeline has already consumed a stream; call reset() first")

        self._running = True
        stats = self.tokenizer.stats
        stats.start()
        logger.info(f"Starting CSV parsing: {path}")
        try:
            try:
                reader = ChunkReader(path, self.config)
            except IngestError as e:
                self._abort(e)
                raise
            logger.info(f"File size: {reader.size / _MB:.2f} MB")

            with reader:
                await self._pump(reader, on_record, on_batch, on_progress, on_error)

            stats.finish()
            logger.info(f"CSV parsing completed: {stats.as_dict()}")
            final = stats.snapshot()
            await invoke(on_complete, final)
            return final
        finally:
            self._running = False

    async def _pump(self, reader, on_record, on_batch, on_progress, on_error) -> None:
        stats = self.tokenizer.stats
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        accumulator = BatchAccumulator(self.config.batch_size, on_batch, on_error, stats)
        progress = ProgressReporter(on_progress, reader.size, self.config.progress_interval)

        producer = asyncio.create_task(self._produce(reader, queue))
        try:
            await self._consume(queue, on_record, on_error, accumulator, progress)
            await producer
        except IngestError as e:
            self._abort(e)
            raise
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await producer

        await accumulator.flush()

    async def _produce(self, reader: ChunkReader, queue: asyncio.Queue) -> None:
        try:
            while (chunk := await asyncio.to_thread(reader.read)) is not None:
                for event in self.tokenizer.feed(*chunk):
                    await queue.put(event)
            for event in self.tokenizer.close():
                await queue.put(event)
        except Exception:
            await queue.put(_END)
            raise
        await queue.put(_END)

    async def _consume(self, queue, on_record, on_error, accumulator, progress) -> None:
        stats = self.tokenizer.stats
        while True:
            event = await queue.get()
            if event is _END:
                return

            if isinstance(event, LineError):
                await invoke(on_error, event)
                continue

            try:
                record = event if on_record is None else await invoke(on_record, event)
            except Exception as e:
                logger.error(f"Error processing record: {e!r}")
                stats.invalid_records += 1
                stats.errors.append(ErrorEntry(kind="record", message=str(e)))
                await invoke(on_error, e)
                continue

            if record is None:
                stats.invalid_records += 1
            else:
                stats.valid_records += 1
                await accumulator.add(record)

            await progress.maybe_report(stats)

    def _abort(self, error: IngestError) -> None:
        stats = self.tokenizer.stats
        stats.finish()
        stats.errors.append(ErrorEntry(kind="fatal", message=error.message))
        error.statistics = stats.snapshot()
        logger.error(f"CSV parsing failed: {error.message}")


async def parse_file(path: str | Path, config: Optional[ParserConfig] = None, **callbacks) -> ParseStatistics:
    """Run a fresh :class:`IngestionPipeline` over ``path``."""
    return await IngestionPipeline(config).run(path, **callbacks)


def parse_file_sync(path: str | Path, config: Optional[ParserConfig] = None, **callbacks) -> ParseStatistics:
    """Blocking wrapper around :func:`parse_file` for non-async callers."""
    return asyncio.run(parse_file(path, config, **callbacks))
