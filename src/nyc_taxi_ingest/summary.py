"""Import summary for inclusive loads: category and flag tallies plus samples.

An :class:`ImportSummary` is fed every delivered batch (it is itself a valid
``on_batch`` sink) and keeps only bounded state: counters, a batch log, one
example record per category and the first ``sample_limit`` records.
"""
import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger
from pydantic import BaseModel

from .models import DataCategory


def _category_of(record: BaseModel) -> str:
    category = getattr(record, "data_category", DataCategory.VALID_COMPLETE)
    return category.value if isinstance(category, DataCategory) else str(category)


def _format_count(name: str, count: int, total: int, width: int) -> str:
    pct = f"{count / total * 100:.2f}" if total else "0.00"
    return f"  {name:<{width}} {count:>10,} ({pct}%)"


class ImportSummary:
    """Aggregate view of the records delivered to the batch sink.

    Parameters
    ----------
    sample_limit
        Number of leading records kept for :meth:`export_sample`.

    Examples
    --------
    >>> summary = ImportSummary()
    >>> parse_file_sync("train.csv", on_record=InclusiveValidator(), on_batch=summary)
    >>> print("\\n".join(summary.report()))
    """

    def __init__(self, sample_limit: int = 1000):
        self.sample_limit = sample_limit
        self.total_records = 0
        self.by_category: Counter = Counter()
        self.by_flag: Counter = Counter()
        self.batches: list[dict] = []
        self.examples: dict[str, BaseModel] = {}
        self.samples: list[BaseModel] = []
        self.started_at = datetime.now(timezone.utc)

    def __call__(self, batch: List[BaseModel], batch_number: int) -> None:
        self.add_batch(batch, batch_number)

    def add_batch(self, batch: Iterable[BaseModel], batch_number: int) -> None:
        count = 0
        for record in batch:
            self.track(record)
            count += 1
        self.batches.append({
            "batchNumber": batch_number,
            "recordCount": count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        logger.debug(f"Summarized batch {batch_number}: {count} records")

    def track(self, record: BaseModel) -> None:
        category = _category_of(record)
        self.total_records += 1
        self.by_category[category] += 1
        for flag in getattr(record, "data_flags", ()):
            self.by_flag[flag] += 1
        self.examples.setdefault(category, record)
        if len(self.samples) < self.sample_limit:
            self.samples.append(record)

    def report(self) -> list[str]:
        """Human-readable summary lines, most frequent categories and flags first."""
        lines = [f"Records summarized: {self.total_records:,} in {len(self.batches)} batches"]
        if self.by_category:
            lines.append("Records by category:")
            lines.extend(
                _format_count(name, count, self.total_records, 25)
                for name, count in self.by_category.most_common()
            )
        if self.by_flag:
            lines.append("Records by flag:")
            lines.extend(
                _format_count(name, count, self.total_records, 30)
                for name, count in self.by_flag.most_common()
            )
        for category, record in self.examples.items():
            flags = ", ".join(getattr(record, "data_flags", ())) or "-"
            lines.append(
                f"Example {category}: id={getattr(record, 'id', None)} "
                f"score={record.data_quality_score} flags={flags}"
            )
        return lines

    def export_sample(self, path: str | Path, limit: Optional[int] = None) -> Path:
        """Write the leading records, grouped by category, to a JSON file.

        Parameters
        ----------
        path
            Output JSON file; parent directories are created.
        limit
            Number of records to export, at most ``sample_limit``.

        Returns
        -------
        Path
            The written file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        sample = self.samples if limit is None else self.samples[:limit]
        rows = [record.model_dump(mode="json") for record in sample]

        grouped: dict[str, list[dict]] = {}
        for record, row in zip(sample, rows):
            grouped.setdefault(_category_of(record), []).append(row)

        elapsed = (datetime.now(timezone.utc) - self.started_at).total_seconds()
        payload = {
            "metadata": {
                "exportDate": datetime.now(timezone.utc).isoformat(),
                "totalRecords": self.total_records,
                "sampleSize": len(rows),
                "processingTime": f"{elapsed:.2f}s",
                "categories": list(self.by_category),
            },
            "summary": {
                "byCategory": dict(self.by_category),
                "byFlag": dict(self.by_flag),
            },
            "sampleRecords": rows,
            "samplesByCategory": grouped,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info(f"Exported {len(rows)} sample records to {path}")
        return path
