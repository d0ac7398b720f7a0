"""Running counters for a parse and the throttled progress snapshot."""
import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

_MB = 1024 * 1024


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ErrorEntry:
    """One recoverable (or the final fatal) error seen during a parse."""

    kind: str
    message: str
    line_number: Optional[int] = None
    record_number: Optional[int] = None
    batch_number: Optional[int] = None
    timestamp: str = field(default_factory=_utcnow)


@dataclass(slots=True)
class ParseStatistics:
    """Aggregate counters, created at parse start and mutated throughout.

    ``total_lines`` counts every physical line including the header and blank
    lines; ``total_records`` counts data rows produced by the tokenizer;
    ``invalid_records`` counts malformed lines plus rows rejected (or failed)
    in the record stage.
    """

    total_lines: int = 0
    total_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    malformed_lines: int = 0
    empty_lines: int = 0
    bytes_processed: int = 0
    batches_flushed: int = 0
    errors: list[ErrorEntry] = field(default_factory=list)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    def start(self) -> None:
        self.started_at = time.monotonic()

    def finish(self) -> None:
        self.finished_at = time.monotonic()

    @property
    def processing_time(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def records_per_second(self) -> float:
        elapsed = self.processing_time
        return self.total_records / elapsed if elapsed > 0 else 0.0

    @property
    def error_rate(self) -> float:
        return self.malformed_lines / self.total_lines if self.total_lines else 0.0

    def snapshot(self) -> "ParseStatistics":
        return copy.deepcopy(self)

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalLines": self.total_lines,
            "totalRecords": self.total_records,
            "validRecords": self.valid_records,
            "invalidRecords": self.invalid_records,
            "malformedLines": self.malformed_lines,
            "emptyLines": self.empty_lines,
            "bytesProcessed": self.bytes_processed,
            "batchesFlushed": self.batches_flushed,
            "processingTime": round(self.processing_time, 2),
            "recordsPerSecond": round(self.records_per_second, 2),
            "errors": len(self.errors),
        }


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    bytes_processed: int
    records_processed: int
    valid_records: int
    invalid_records: int
    percentage: float
    records_per_second: float
    mb_per_second: float
    elapsed_seconds: float


def progress_snapshot(stats: ParseStatistics, file_size: int) -> ProgressSnapshot:
    """Build a :class:`ProgressSnapshot` from the current counters."""
    elapsed = stats.processing_time
    if elapsed > 0:
        rps = stats.total_records / elapsed
        mbps = stats.bytes_processed / _MB / elapsed
    else:
        rps = mbps = 0.0
    percentage = stats.bytes_processed / file_size * 100 if file_size else 0.0
    return ProgressSnapshot(
        bytes_processed=stats.bytes_processed,
        records_processed=stats.total_records,
        valid_records=stats.valid_records,
        invalid_records=stats.invalid_records,
        percentage=round(percentage, 2),
        records_per_second=round(rps, 2),
        mb_per_second=round(mbps, 2),
        elapsed_seconds=round(elapsed, 2),
    )
