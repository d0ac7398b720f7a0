"""Data models for enriched NYC taxi trip records.

This module defines the Pydantic v2 models produced by the validators and
handed, in batches, to storage sinks.

Models
------
ValidatedRecord
    Trip that passed every business rule (strict path). All fields set.
CategorizedRecord
    Trip classified into a :class:`DataCategory` (inclusive path). Every
    parsed field is nullable; the original row is kept in ``raw_data``.
"""
import json
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

TimeOfDay = Literal["morning", "afternoon", "evening", "night"]
DayType = Literal["weekday", "weekend"]


class DataCategory(str, Enum):
    """Overall data-quality label of a categorized trip."""

    VALID_COMPLETE = "valid_complete"
    INCOMPLETE_DATA = "incomplete_data"
    DATA_ANOMALY = "data_anomaly"
    MICRO_TRIP = "micro_trip"
    EXTENDED_TRIP = "extended_trip"
    OUT_OF_BOUNDS = "out_of_bounds"
    SUBURBAN_TRIP = "suburban_trip"
    PROCESSING_ERROR = "processing_error"


class ValidatedRecord(BaseModel):
    """Trip record that passed strict validation, with derived features.

    Parameters
    ----------
    id
        Trip identifier from the source extract.
    vendor_id
        ``"1"`` or ``"2"``.
    pickup_datetime, dropoff_datetime
        Meter engaged / disengaged timestamps (kept as provided).
    passenger_count
        Number of passengers, 1 to 6.
    pickup_longitude, pickup_latitude, dropoff_longitude, dropoff_latitude
        WGS84 coordinates inside the NYC bounding box.
    store_and_fwd_flag
        ``"Y"`` if held in vehicle memory before sending, else ``"N"``.
    trip_duration
        Recorded duration in seconds.
    distance_km
        Haversine distance between pickup and dropoff (3 dp).
    speed_kmh
        Average speed (2 dp), 0 for a zero duration.
    pickup_hour, pickup_day_of_week, pickup_day_of_month, pickup_month, pickup_year
        Calendar features of the pickup; day of week is 0 = Sunday.
    time_of_day
        ``morning`` 6-12, ``afternoon`` 12-18, ``evening`` 18-22, else ``night``.
    day_type
        ``weekend`` on Saturday/Sunday, else ``weekday``.
    fare_estimate
        Simplified metered fare in dollars.
    fare_per_km
        ``fare_estimate / distance_km``, 0 for a zero distance.
    data_quality_score
        Heuristic 0-100 trust score.
    processed_at
        UTC ISO timestamp of enrichment.
    """

    id: str
    vendor_id: str
    pickup_datetime: datetime
    dropoff_datetime: datetime
    passenger_count: int
    pickup_longitude: float
    pickup_latitude: float
    dropoff_longitude: float
    dropoff_latitude: float
    store_and_fwd_flag: str
    trip_duration: int

    distance_km: float
    speed_kmh: float
    pickup_hour: int
    pickup_day_of_week: int
    pickup_day_of_month: int
    pickup_month: int
    pickup_year: int
    time_of_day: TimeOfDay
    day_type: DayType
    fare_estimate: float
    fare_per_km: float
    data_quality_score: int = Field(ge=0, le=100)
    processed_at: str

    def to_row(self) -> dict:
        """Flat mapping for storage sinks."""
        return self.model_dump()


class CategorizedRecord(BaseModel):
    """Trip record classified by the inclusive validator.

    Fields mirror :class:`ValidatedRecord` but each may be ``None`` when the
    source value is missing or unparseable.

    Parameters
    ----------
    vendor_name
        Company behind ``vendor_id`` (``Unknown Vendor`` otherwise).
    data_category
        Winning category (see ``enrich.CATEGORY_PRIORITY``).
    data_flags
        Every condition that was triggered, in rule order.
    validation_issues
        Human-readable description for each flag.
    is_valid_nyc_trip, is_suburban_trip, is_micro_trip, is_extended_trip
        Convenience booleans derived from ``data_category``.
    has_anomalies
        ``True`` for ``data_anomaly`` and ``incomplete_data``.
    raw_data
        The original field mapping, for traceability.
    """

    id: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    pickup_datetime: Optional[datetime] = None
    dropoff_datetime: Optional[datetime] = None
    passenger_count: Optional[int] = None
    pickup_longitude: Optional[float] = None
    pickup_latitude: Optional[float] = None
    dropoff_longitude: Optional[float] = None
    dropoff_latitude: Optional[float] = None
    store_and_fwd_flag: Optional[str] = None
    trip_duration: Optional[int] = None

    distance_km: Optional[float] = None
    speed_kmh: Optional[float] = None
    pickup_hour: Optional[int] = None
    pickup_day_of_week: Optional[int] = None
    pickup_day_of_month: Optional[int] = None
    pickup_month: Optional[int] = None
    pickup_year: Optional[int] = None
    time_of_day: Optional[TimeOfDay] = None
    day_type: Optional[DayType] = None
    fare_estimate: Optional[float] = None
    fare_per_km: Optional[float] = None
    data_quality_score: int = Field(ge=0, le=100)

    data_category: DataCategory
    data_flags: list[str] = Field(default_factory=list)
    validation_issues: list[str] = Field(default_factory=list)
    is_valid_nyc_trip: bool = False
    is_suburban_trip: bool = False
    is_micro_trip: bool = False
    is_extended_trip: bool = False
    has_anomalies: bool = False

    raw_data: dict[str, str] = Field(default_factory=dict)
    processed_at: str

    def to_row(self) -> dict:
        """Flat mapping for storage sinks; ``raw_data`` is JSON-encoded."""
        row = self.model_dump()
        row["data_category"] = self.data_category.value
        row["raw_data"] = json.dumps(self.raw_data)
        return row
