"""Parquet batch sink for enriched trip records.

Each delivered batch becomes one row group of a single Parquet file, written
with an explicit Arrow schema so that empty or all-null batches keep stable
column types.
"""
from pathlib import Path
from typing import List, Optional, Type

import pyarrow as pa
import pyarrow.parquet as pq
from loguru import logger
from pydantic import BaseModel

from .models import CategorizedRecord, ValidatedRecord

_TRIP_COLUMNS = [
    pa.field("id", pa.string()),
    pa.field("vendor_id", pa.string()),
    pa.field("pickup_datetime", pa.timestamp("us")),
    pa.field("dropoff_datetime", pa.timestamp("us")),
    pa.field("passenger_count", pa.int64()),
    pa.field("pickup_longitude", pa.float64()),
    pa.field("pickup_latitude", pa.float64()),
    pa.field("dropoff_longitude", pa.float64()),
    pa.field("dropoff_latitude", pa.float64()),
    pa.field("store_and_fwd_flag", pa.string()),
    pa.field("trip_duration", pa.int64()),
    pa.field("distance_km", pa.float64()),
    pa.field("speed_kmh", pa.float64()),
    pa.field("pickup_hour", pa.int32()),
    pa.field("pickup_day_of_week", pa.int32()),
    pa.field("pickup_day_of_month", pa.int32()),
    pa.field("pickup_month", pa.int32()),
    pa.field("pickup_year", pa.int32()),
    pa.field("time_of_day", pa.string()),
    pa.field("day_type", pa.string()),
    pa.field("fare_estimate", pa.float64()),
    pa.field("fare_per_km", pa.float64()),
    pa.field("data_quality_score", pa.int32()),
]

VALIDATED_SCHEMA = pa.schema(_TRIP_COLUMNS + [pa.field("processed_at", pa.string())])

CATEGORIZED_SCHEMA = pa.schema(
    _TRIP_COLUMNS[:2]
    + [pa.field("vendor_name", pa.string())]
    + _TRIP_COLUMNS[2:]
    + [
        pa.field("data_category", pa.string()),
        pa.field("data_flags", pa.list_(pa.string())),
        pa.field("validation_issues", pa.list_(pa.string())),
        pa.field("is_valid_nyc_trip", pa.bool_()),
        pa.field("is_suburban_trip", pa.bool_()),
        pa.field("is_micro_trip", pa.bool_()),
        pa.field("is_extended_trip", pa.bool_()),
        pa.field("has_anomalies", pa.bool_()),
        pa.field("raw_data", pa.string()),
        pa.field("processed_at", pa.string()),
    ]
)

SCHEMAS = {
    ValidatedRecord: VALIDATED_SCHEMA,
    CategorizedRecord: CATEGORIZED_SCHEMA,
}


class ParquetBatchSink:
    """``on_batch`` sink appending every batch to one Parquet file.

    Parameters
    ----------
    path
        Output ``.parquet`` file; parent directories are created.
    record_type
        :class:`~.models.ValidatedRecord` or
        :class:`~.models.CategorizedRecord`; selects the Arrow schema.
    compression
        Parquet compression codec.

    Examples
    --------
    >>> with ParquetBatchSink("out/trips.parquet", CategorizedRecord) as sink:
    ...     parse_file_sync("train.csv", on_record=InclusiveValidator(), on_batch=sink)
    """

    def __init__(
        self,
        path: str | Path,
        record_type: Type[BaseModel] = CategorizedRecord,
        compression: str = "snappy",
    ):
        if record_type not in SCHEMAS:
            raise ValueError(f"No Arrow schema for {record_type.__name__}")
        self.path = Path(path)
        self.schema = SCHEMAS[record_type]
        self.compression = compression
        self.rows_written = 0
        self._writer: Optional[pq.ParquetWriter] = None

    def __call__(self, batch: List[BaseModel], batch_number: int) -> int:
        return self.write(batch, batch_number)

    def write(self, batch: List[BaseModel], batch_number: Optional[int] = None) -> int:
        """Append ``batch`` as a row group; returns the number of rows written."""
        if not batch:
            return 0
        rows = [record.to_row() for record in batch]
        table = pa.Table.from_pylist(rows, schema=self.schema)
        if self._writer is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = pq.ParquetWriter(str(self.path), self.schema, compression=self.compression)
        self._writer.write_table(table)
        self.rows_written += table.num_rows
        logger.debug(f"Wrote batch {batch_number} ({table.num_rows} rows) to {self.path}")
        del rows, table
        return len(batch)

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None
            logger.info(f"Closed {self.path}: {self.rows_written} rows")

    def __enter__(self) -> "ParquetBatchSink":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
