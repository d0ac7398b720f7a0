import json
from datetime import datetime

import pyarrow.parquet as pq
import pytest

from nyc_taxi_ingest.models import CategorizedRecord, ValidatedRecord
from nyc_taxi_ingest.pipeline import parse_file_sync
from nyc_taxi_ingest.sinks import ParquetBatchSink
from nyc_taxi_ingest.validators import InclusiveValidator, StrictValidator


def test_categorized_records_round_trip_through_parquet(tmp_path, trip_row):
    validator = InclusiveValidator()
    batch = [
        validator(trip_row(id="ok")),
        validator(trip_row(id="nocoords", pickup_longitude="")),
        validator(42),
    ]
    path = tmp_path / "out" / "trips.parquet"

    with ParquetBatchSink(path, CategorizedRecord) as sink:
        assert sink(batch[:2], 1) == 2
        sink(batch[2:], 2)

    table = pq.read_table(path)
    assert table.num_rows == 3
    assert table.column("data_category").to_pylist() == ["valid_complete", "valid_complete", "processing_error"]
    assert table.column("distance_km").to_pylist()[1] is None
    assert table.column("data_flags").to_pylist()[2] == ["processing_exception"]
    assert table.column("pickup_datetime").to_pylist()[0] == datetime(2016, 3, 14, 17, 24, 55)
    assert json.loads(table.column("raw_data").to_pylist()[0])["id"] == "ok"


def test_pipeline_writes_validated_records(write_csv, trip_row, tmp_path):
    csv_path = write_csv([trip_row(id="a"), trip_row(id="b", passenger_count="9"), trip_row(id="c")])
    out = tmp_path / "strict.parquet"

    with ParquetBatchSink(out, ValidatedRecord) as sink:
        parse_file_sync(csv_path, on_record=StrictValidator(), on_batch=sink)

    table = pq.read_table(out)
    assert table.column("id").to_pylist() == ["a", "c"]
    assert sink.rows_written == 2


def test_empty_batch_writes_nothing(tmp_path):
    sink = ParquetBatchSink(tmp_path / "none.parquet")

    assert sink([], 1) == 0
    sink.close()
    assert not (tmp_path / "none.parquet").exists()


def test_unknown_record_type(tmp_path):
    with pytest.raises(ValueError):
        ParquetBatchSink(tmp_path / "x.parquet", dict)
