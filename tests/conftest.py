import pytest

HEADER = (
    "id,vendor_id,pickup_datetime,dropoff_datetime,passenger_count,"
    "pickup_longitude,pickup_latitude,dropoff_longitude,dropoff_latitude,"
    "store_and_fwd_flag,trip_duration"
)
COLUMNS = HEADER.split(",")

# A real row from the Kaggle extract: Monday afternoon, 455 s, inside Manhattan.
VALID_ROW = {
    "id": "id2875421",
    "vendor_id": "2",
    "pickup_datetime": "2016-03-14 17:24:55",
    "dropoff_datetime": "2016-03-14 17:32:30",
    "passenger_count": "1",
    "pickup_longitude": "-73.982154846191406",
    "pickup_latitude": "40.767936706542969",
    "dropoff_longitude": "-73.964630126953125",
    "dropoff_latitude": "40.765602111816406",
    "store_and_fwd_flag": "N",
    "trip_duration": "455",
}


def to_line(row: dict) -> str:
    return ",".join(row[name] for name in COLUMNS)


@pytest.fixture
def trip_row():
    """Factory for a raw trip row, as produced by the tokenizer, with overrides."""
    def make(**overrides):
        row = dict(VALID_ROW)
        row.update(overrides)
        return row
    return make


@pytest.fixture
def write_csv(tmp_path):
    """Write a trip CSV with the standard header and return its path."""
    def write(rows, name="trips.csv", header=HEADER, newline="\n", extra_lines=()):
        lines = [header] + [to_line(r) if isinstance(r, dict) else r for r in rows] + list(extra_lines)
        path = tmp_path / name
        path.write_bytes((newline.join(lines) + newline).encode("utf-8"))
        return path
    return write
