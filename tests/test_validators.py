import json

import pytest

from nyc_taxi_ingest.models import CategorizedRecord, DataCategory, ValidatedRecord
from nyc_taxi_ingest.validators import InclusiveValidator, StrictValidator


@pytest.fixture
def strict():
    return StrictValidator()


@pytest.fixture
def inclusive():
    return InclusiveValidator()


# ---------- strict ----------

def test_strict_accepts_and_enriches_a_valid_trip(strict, trip_row):
    record = strict(trip_row())

    assert isinstance(record, ValidatedRecord)
    assert record.passenger_count == 1
    assert record.trip_duration == 455
    assert record.distance_km == pytest.approx(1.498, abs=0.01)
    assert record.speed_kmh == pytest.approx(11.85, abs=0.1)
    assert record.pickup_hour == 17
    assert record.pickup_day_of_week == 1
    assert record.time_of_day == "afternoon"
    assert record.day_type == "weekday"
    assert record.fare_estimate >= 8.0
    assert record.data_quality_score == 100
    assert strict.valid_records == 1


def test_strict_rejects_zero_passengers(strict, trip_row):
    assert strict(trip_row(passenger_count="0")) is None
    assert strict.validation_errors == {"invalid_passenger_count": 1}
    assert strict.invalid_records == 1


@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"id": ""}, "missing_required_fields"),
        ({"trip_duration": ""}, "missing_required_fields"),
        ({"pickup_datetime": "not a date"}, "invalid_datetime"),
        ({"pickup_latitude": "north"}, "invalid_numeric_value"),
        ({"vendor_id": "9"}, "invalid_vendor_id"),
        ({"store_and_fwd_flag": "maybe"}, "invalid_store_fwd_flag"),
        ({"passenger_count": "7"}, "invalid_passenger_count"),
        ({"pickup_latitude": "39.0"}, "invalid_pickup_coordinates"),
        ({"dropoff_longitude": "-75.0"}, "invalid_dropoff_coordinates"),
        ({"trip_duration": "460"}, "duration_mismatch"),
        ({"dropoff_datetime": "2016-03-14 17:24:55", "trip_duration": "60"}, "invalid_datetime_sequence"),
    ],
)
def test_strict_rejection_reasons(strict, trip_row, overrides, reason):
    assert strict(trip_row(**overrides)) is None
    assert strict.validation_errors == {reason: 1}


def test_strict_first_failure_wins(strict, trip_row):
    strict(trip_row(vendor_id="9", passenger_count="0"))

    assert strict.validation_errors == {"invalid_vendor_id": 1}


def test_strict_headerless_row_is_missing_fields(strict):
    assert strict(["id1", "2"]) is None
    assert strict.validation_errors == {"missing_required_fields": 1}


def test_strict_statistics(strict, trip_row):
    strict(trip_row())
    strict(trip_row(passenger_count="0"))
    stats = strict.statistics()

    assert stats["total_processed"] == 2
    assert stats["validation_rate"] == "50.00%"
    assert stats["invalidation_rate"] == "50.00%"

    strict.reset()
    assert strict.statistics()["validation_rate"] == "0%"


# ---------- inclusive ----------

def test_inclusive_valid_trip(inclusive, trip_row):
    record = inclusive(trip_row())

    assert isinstance(record, CategorizedRecord)
    assert record.data_category is DataCategory.VALID_COMPLETE
    assert record.is_valid_nyc_trip
    assert record.data_flags == []
    assert record.vendor_name == "VeriFone Inc."
    assert record.data_quality_score == 100


def test_inclusive_zero_passengers_is_an_anomaly(inclusive, trip_row):
    record = inclusive(trip_row(passenger_count="0"))

    assert record.data_category is DataCategory.DATA_ANOMALY
    assert record.data_flags == ["zero_passengers"]
    assert record.validation_issues == ["Zero passengers"]
    assert record.has_anomalies
    assert record.passenger_count == 0


def test_inclusive_dropoff_north_of_nyc_is_suburban(inclusive, trip_row):
    record = inclusive(trip_row(dropoff_latitude="41.5", dropoff_longitude="-73.5"))

    assert record.data_category is DataCategory.SUBURBAN_TRIP
    assert record.is_suburban_trip
    assert record.data_flags == ["dropoff_outside_nyc", "destination_north"]
    assert "Likely Westchester County or Connecticut" in record.validation_issues


def test_inclusive_missing_coordinates(inclusive, trip_row):
    record = inclusive(trip_row(pickup_longitude=""))

    assert record.data_quality_score == 20
    assert record.distance_km is None
    assert record.speed_kmh is None
    assert record.fare_estimate is None
    assert record.pickup_hour == 17


def test_inclusive_missing_identity_field(inclusive, trip_row):
    record = inclusive(trip_row(id=""))

    assert record.data_category is DataCategory.INCOMPLETE_DATA
    assert record.data_flags == ["missing_required_field"]
    assert "Missing id" in record.validation_issues
    assert record.has_anomalies


def test_inclusive_unparseable_value_is_described(inclusive, trip_row):
    record = inclusive(trip_row(passenger_count="many"))

    assert record.passenger_count is None
    assert "Unparseable passenger_count: 'many'" in record.validation_issues
    assert record.data_category is DataCategory.VALID_COMPLETE


def test_inclusive_unknown_vendor_name(inclusive, trip_row):
    record = inclusive(trip_row(vendor_id="4"))

    assert record.vendor_name == "Unknown Vendor"
    assert record.data_category is DataCategory.DATA_ANOMALY


def test_inclusive_never_raises(inclusive):
    record = inclusive(42)

    assert record.data_category is DataCategory.PROCESSING_ERROR
    assert record.data_flags == ["processing_exception"]
    assert record.data_quality_score == 0
    assert inclusive.categories == {"processing_error": 1}


def test_inclusive_statistics(inclusive, trip_row):
    inclusive(trip_row())
    inclusive(trip_row(passenger_count="0"))
    inclusive(trip_row(trip_duration="30", dropoff_datetime="2016-03-14 17:25:25"))
    stats = inclusive.statistics()

    assert stats["total_processed"] == 3
    assert stats["fully_valid"] == 1
    assert stats["with_flags"] == 2
    assert stats["categories"] == {"valid_complete": 1, "data_anomaly": 1, "micro_trip": 1}


def test_categorized_row_for_storage(inclusive, trip_row):
    row = inclusive(trip_row(passenger_count="0")).to_row()

    assert row["data_category"] == "data_anomaly"
    assert json.loads(row["raw_data"])["passenger_count"] == "0"
    assert row["data_flags"] == ["zero_passengers"]


# ---------- timestamps with offsets ----------

def test_strict_accepts_offset_pickup_with_naive_dropoff(strict, trip_row):
    record = strict(trip_row(pickup_datetime="2016-03-14T18:24:55+01:00"))

    assert isinstance(record, ValidatedRecord)
    assert record.pickup_datetime.tzinfo is None
    assert record.pickup_hour == 17
    assert strict.validation_errors == {}


def test_inclusive_keeps_fields_for_offset_pickup(inclusive, trip_row):
    record = inclusive(trip_row(pickup_datetime="2016-03-14T17:24:55+00:00"))

    assert record.data_category is DataCategory.VALID_COMPLETE
    assert record.id == "id2875421"
    assert record.passenger_count == 1
    assert record.pickup_latitude is not None
    assert inclusive.categories == {"valid_complete": 1}


# ---------- duration tolerance boundary ----------

def test_strict_accepts_duration_exactly_one_percent_off(strict, trip_row):
    record = strict(trip_row(
        pickup_datetime="2016-03-14 12:00:00",
        dropoff_datetime="2016-03-14 12:10:06",
        trip_duration="600",
    ))

    assert isinstance(record, ValidatedRecord)
    assert record.trip_duration == 600


def test_strict_rejects_duration_just_over_one_percent_off(strict, trip_row):
    record = strict(trip_row(
        pickup_datetime="2016-03-14 12:00:00",
        dropoff_datetime="2016-03-14 12:10:07",
        trip_duration="600",
    ))

    assert record is None
    assert strict.validation_errors == {"duration_mismatch": 1}
