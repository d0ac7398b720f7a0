from datetime import datetime

import pytest

from nyc_taxi_ingest.enrich import (
    CATEGORY_PRIORITY,
    NYC_BOUNDS,
    ParseProblem,
    assess,
    day_of_week,
    day_type,
    estimate_fare,
    haversine_km,
    infer_destination,
    missing_fields,
    parse_datetime,
    parse_float,
    parse_int,
    parse_trip,
    select_category,
    time_of_day,
)
from nyc_taxi_ingest.models import DataCategory


def flags_of(raw):
    trip, _ = parse_trip(raw)
    return [f.flag for f in assess(trip)]


def test_haversine_zero_and_symmetric():
    assert haversine_km(40.75, -73.98, 40.75, -73.98) == 0
    there = haversine_km(40.767, -73.982, 40.765, -73.964)
    back = haversine_km(40.765, -73.964, 40.767, -73.982)
    assert there == pytest.approx(back)


def test_haversine_one_degree_of_latitude():
    assert haversine_km(0, 0, 1, 0) == pytest.approx(111.195, abs=0.01)


@pytest.mark.parametrize(
    "hour, expected",
    [(0, "night"), (5, "night"), (6, "morning"), (11, "morning"), (12, "afternoon"),
     (17, "afternoon"), (18, "evening"), (21, "evening"), (22, "night"), (23, "night")],
)
def test_time_of_day_buckets(hour, expected):
    assert time_of_day(hour) == expected


def test_day_of_week_starts_on_sunday():
    assert day_of_week(datetime(2016, 3, 13)) == 0
    assert day_of_week(datetime(2016, 3, 14)) == 1
    assert day_of_week(datetime(2016, 3, 19)) == 6
    assert day_type(0) == day_type(6) == "weekend"
    assert day_type(3) == "weekday"


def test_fare_has_a_minimum():
    assert estimate_fare(0, 0) == 8.0
    assert estimate_fare(10, 600) == pytest.approx(2.5 + 15.6 + 5.0)


def test_parse_int_accepts_integral_floats():
    assert parse_int("2") == 2
    assert parse_int(" 2.0 ") == 2
    with pytest.raises(ValueError):
        parse_int("2.5")
    with pytest.raises(ValueError):
        parse_float("nan")


def test_parse_trip_reports_unparseable_values(trip_row):
    trip, problems = parse_trip(trip_row(passenger_count="abc", pickup_datetime="yesterday"))

    assert trip.passenger_count is None
    assert trip.pickup_datetime is None
    assert problems == [
        ParseProblem("pickup_datetime", "invalid_datetime", "yesterday"),
        ParseProblem("passenger_count", "invalid_numeric_value", "abc"),
    ]


def test_parse_trip_treats_blank_as_missing(trip_row):
    trip, problems = parse_trip(trip_row(pickup_longitude="  "))

    assert trip.pickup_longitude is None
    assert problems == []
    assert not trip.has_coordinates


def test_missing_fields(trip_row):
    assert missing_fields(trip_row()) == []
    assert missing_fields(trip_row(id="", trip_duration=" ")) == ["id", "trip_duration"]


def test_valid_trip_has_no_findings(trip_row):
    assert flags_of(trip_row()) == []


def test_duration_within_one_percent_is_accepted(trip_row):
    row = trip_row(
        pickup_datetime="2016-03-14 12:00:00",
        dropoff_datetime="2016-03-14 12:10:06",
        trip_duration="600",
    )
    assert "duration_mismatch" not in flags_of(row)


def test_duration_over_one_percent_is_flagged(trip_row):
    row = trip_row(
        pickup_datetime="2016-03-14 12:00:00",
        dropoff_datetime="2016-03-14 12:10:07",
        trip_duration="600",
    )
    assert "duration_mismatch" in flags_of(row)


def test_rules_run_in_order(trip_row):
    row = trip_row(vendor_id="3", store_and_fwd_flag="X", passenger_count="0", trip_duration="30",
                   dropoff_datetime="2016-03-14 17:25:25")

    assert flags_of(row) == ["non_standard_vendor", "non_standard_flag", "micro_trip", "zero_passengers"]


def test_dropoff_outside_nyc_adds_destination(trip_row):
    flags = flags_of(trip_row(dropoff_latitude="41.5", dropoff_longitude="-73.5"))

    assert flags == ["dropoff_outside_nyc", "destination_north"]


@pytest.mark.parametrize(
    "lat, lon, flag",
    [(41.0, -74.0, "destination_north"), (40.3, -74.0, "destination_south"),
     (40.7, -74.5, "destination_west"), (40.7, -73.5, "destination_east")],
)
def test_infer_destination(lat, lon, flag):
    assert not NYC_BOUNDS.contains(lat, lon)
    assert infer_destination(lat, lon)[0] == flag


def test_category_priority():
    assert select_category([]) is DataCategory.VALID_COMPLETE
    assert select_category(["destination_north"]) is DataCategory.VALID_COMPLETE
    assert select_category(["micro_trip", "dropoff_outside_nyc"]) is DataCategory.SUBURBAN_TRIP
    assert select_category(["dropoff_outside_nyc", "pickup_outside_nyc"]) is DataCategory.OUT_OF_BOUNDS
    assert select_category(["extended_trip", "zero_passengers"]) is DataCategory.DATA_ANOMALY
    assert select_category(
        ["zero_passengers", "missing_required_field", "micro_trip"]
    ) is DataCategory.INCOMPLETE_DATA


def test_every_category_but_fallbacks_is_reachable():
    reachable = {category for category, _ in CATEGORY_PRIORITY.values()}
    assert reachable == set(DataCategory) - {DataCategory.VALID_COMPLETE, DataCategory.PROCESSING_ERROR}


def test_parse_datetime_normalises_offsets_to_naive_utc():
    assert parse_datetime("2016-03-14 17:24:55") == datetime(2016, 3, 14, 17, 24, 55)
    assert parse_datetime("2016-03-14T17:24:55+00:00") == datetime(2016, 3, 14, 17, 24, 55)
    assert parse_datetime("2016-03-14T18:24:55+01:00") == datetime(2016, 3, 14, 17, 24, 55)
    assert parse_datetime("2016-03-14T17:24:55Z").tzinfo is None


def test_haversine_positive_for_distinct_points():
    assert haversine_km(40.75, -73.98, 40.75, -73.97) > 0
    assert haversine_km(40.75, -73.98, 40.76, -73.98) > 0
    assert haversine_km(0.0, 0.0, 0.0, 1e-6) > 0
