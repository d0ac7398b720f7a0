"""Parse, check and enrich one raw trip row.

Both validators run the same three steps and differ only in what they do
with the outcome:

1. :func:`parse_trip` – best-effort typing of the raw strings. Unparseable
   values become ``None`` and are reported as problems.
2. :func:`assess` – business rules, in a fixed order, each producing a
   :class:`Finding` (inclusive flag, strict rejection reason, message).
3. :func:`strict_features` / :func:`inclusive_features` – derived
   geospatial, temporal and fare features plus the quality score.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence, Union

from .models import DataCategory

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True, slots=True)
class BoundingBox:
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.lat_min <= lat <= self.lat_max and self.lon_min <= lon <= self.lon_max


NYC_BOUNDS = BoundingBox(lat_min=40.4774, lat_max=40.9176, lon_min=-74.2591, lon_max=-73.7004)

TRIP_DURATION_MIN = 60
TRIP_DURATION_MAX = 86400
PASSENGER_MIN = 1
PASSENGER_MAX = 6
VENDOR_IDS = ("1", "2")
STORE_FWD_FLAGS = ("Y", "N")
DURATION_TOLERANCE = 0.01

BASE_FARE = 2.50
FARE_PER_KM = 1.56
FARE_PER_MINUTE = 0.50
MIN_FARE = 8.00

VENDOR_NAMES = {
    "1": "Creative Mobile Technologies",
    "2": "VeriFone Inc.",
}
UNKNOWN_VENDOR = "Unknown Vendor"

REQUIRED_FIELDS = (
    "id",
    "vendor_id",
    "pickup_datetime",
    "dropoff_datetime",
    "passenger_count",
    "pickup_longitude",
    "pickup_latitude",
    "dropoff_longitude",
    "dropoff_latitude",
    "store_and_fwd_flag",
    "trip_duration",
)
IDENTITY_FIELDS = ("id", "vendor_id", "pickup_datetime", "dropoff_datetime")

# flag -> (category, priority). The highest-priority triggered flag decides
# the category; flags absent from the table are informational only.
CATEGORY_PRIORITY: dict[str, tuple[DataCategory, int]] = {
    "missing_required_field": (DataCategory.INCOMPLETE_DATA, 100),
    "invalid_datetime_sequence": (DataCategory.DATA_ANOMALY, 90),
    "non_standard_vendor": (DataCategory.DATA_ANOMALY, 80),
    "non_standard_flag": (DataCategory.DATA_ANOMALY, 80),
    "zero_passengers": (DataCategory.DATA_ANOMALY, 80),
    "excess_passengers": (DataCategory.DATA_ANOMALY, 80),
    "duration_mismatch": (DataCategory.DATA_ANOMALY, 80),
    "pickup_outside_nyc": (DataCategory.OUT_OF_BOUNDS, 70),
    "dropoff_outside_nyc": (DataCategory.SUBURBAN_TRIP, 60),
    "micro_trip": (DataCategory.MICRO_TRIP, 50),
    "extended_trip": (DataCategory.EXTENDED_TRIP, 40),
}

FLAG_PENALTIES = {
    "micro_trip": 10,
    "extended_trip": 5,
    "dropoff_outside_nyc": 5,
    "pickup_outside_nyc": 10,
    "duration_mismatch": 15,
    "invalid_datetime_sequence": 20,
}
MISSING_COORDINATES_SCORE = 20


@dataclass(slots=True)
class ParsedTrip:
    """Typed view of a raw row; any field may be ``None``."""

    id: Optional[str] = None
    vendor_id: Optional[str] = None
    pickup_datetime: Optional[datetime] = None
    dropoff_datetime: Optional[datetime] = None
    passenger_count: Optional[int] = None
    pickup_longitude: Optional[float] = None
    pickup_latitude: Optional[float] = None
    dropoff_longitude: Optional[float] = None
    dropoff_latitude: Optional[float] = None
    store_and_fwd_flag: Optional[str] = None
    trip_duration: Optional[int] = None
    raw_data: dict[str, str] = field(default_factory=dict)

    @property
    def has_coordinates(self) -> bool:
        return None not in (
            self.pickup_latitude,
            self.pickup_longitude,
            self.dropoff_latitude,
            self.dropoff_longitude,
        )


@dataclass(frozen=True, slots=True)
class ParseProblem:
    field: str
    reason: str
    value: str


@dataclass(frozen=True, slots=True)
class Finding:
    """Outcome of one business rule.

    ``flag`` is the inclusive data flag, ``reason`` the strict rejection
    code (``None`` for informational findings).
    """

    flag: str
    reason: Optional[str]
    message: str


def as_mapping(raw: Union[Mapping[str, str], Sequence[str]]) -> dict[str, str]:
    """Headerless rows are keyed by column position."""
    if isinstance(raw, Mapping):
        return dict(raw)
    return {str(i): value for i, value in enumerate(raw)}


def missing_fields(raw: Mapping[str, str], names: Sequence[str] = REQUIRED_FIELDS) -> list[str]:
    return [name for name in names if not (raw.get(name) or "").strip()]


def _text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_int(value: str) -> int:
    """Parse an integer, accepting integral float spellings such as ``"2.0"``."""
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        number = float(text)
        if not number.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(number)


def parse_float(value: str) -> float:
    number = float(value.strip())
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


def parse_datetime(value: str) -> datetime:
    """ISO timestamp; values with an offset are converted to naive UTC."""
    moment = datetime.fromisoformat(value.strip())
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


_PARSERS = (
    ("pickup_datetime", parse_datetime, "invalid_datetime"),
    ("dropoff_datetime", parse_datetime, "invalid_datetime"),
    ("passenger_count", parse_int, "invalid_numeric_value"),
    ("pickup_longitude", parse_float, "invalid_numeric_value"),
    ("pickup_latitude", parse_float, "invalid_numeric_value"),
    ("dropoff_longitude", parse_float, "invalid_numeric_value"),
    ("dropoff_latitude", parse_float, "invalid_numeric_value"),
    ("trip_duration", parse_int, "invalid_numeric_value"),
)


def parse_trip(raw: Mapping[str, str]) -> tuple[ParsedTrip, list[ParseProblem]]:
    """Type every known field of ``raw``; failures become ``None``.

    Returns
    -------
    tuple[ParsedTrip, list[ParseProblem]]
        The parsed trip and one problem per present-but-unparseable value.
        Empty values are simply ``None``.
    """
    trip = ParsedTrip(
        id=_text(raw.get("id")),
        vendor_id=_text(raw.get("vendor_id")),
        store_and_fwd_flag=_text(raw.get("store_and_fwd_flag")),
        raw_data=dict(raw),
    )
    problems: list[ParseProblem] = []
    for name, parser, reason in _PARSERS:
        value = _text(raw.get(name))
        if value is None:
            continue
        try:
            setattr(trip, name, parser(value))
        except (ValueError, OverflowError):
            problems.append(ParseProblem(name, reason, value))
    return trip, problems


def infer_destination(lat: float, lon: float) -> Optional[tuple[str, str]]:
    """Coarse direction of a dropoff outside the NYC box, as ``(flag, description)``."""
    if lat > NYC_BOUNDS.lat_max:
        return "destination_north", "Likely Westchester County or Connecticut"
    if lat < NYC_BOUNDS.lat_min:
        return "destination_south", "Likely New Jersey"
    if lon < NYC_BOUNDS.lon_min:
        return "destination_west", "Likely New Jersey (Newark area)"
    if lon > NYC_BOUNDS.lon_max:
        return "destination_east", "Likely Long Island"
    return None


def calculated_duration(trip: ParsedTrip) -> int:
    """Whole seconds between pickup and dropoff."""
    return math.floor((trip.dropoff_datetime - trip.pickup_datetime).total_seconds())


def assess(trip: ParsedTrip) -> list[Finding]:
    """Run the business rules in order and return every triggered finding.

    Rules whose inputs are ``None`` are skipped.
    """
    findings: list[Finding] = []

    if trip.vendor_id is not None and trip.vendor_id not in VENDOR_IDS:
        findings.append(Finding("non_standard_vendor", "invalid_vendor_id", f"Non-standard vendor_id: {trip.vendor_id}"))

    if trip.store_and_fwd_flag is not None and trip.store_and_fwd_flag not in STORE_FWD_FLAGS:
        findings.append(
            Finding(
                "non_standard_flag",
                "invalid_store_fwd_flag",
                f"Non-standard store_and_fwd_flag: {trip.store_and_fwd_flag}",
            )
        )

    duration = trip.trip_duration
    if duration is not None:
        if duration < TRIP_DURATION_MIN:
            findings.append(Finding("micro_trip", "invalid_trip_duration", f"Very short trip: {duration}s (< 60s)"))
        elif duration > TRIP_DURATION_MAX:
            findings.append(Finding("extended_trip", "invalid_trip_duration", f"Very long trip: {duration}s (> 24h)"))

    passengers = trip.passenger_count
    if passengers is not None:
        if passengers < PASSENGER_MIN:
            message = "Zero passengers" if passengers == 0 else f"Passenger count: {passengers} (< 1)"
            findings.append(Finding("zero_passengers", "invalid_passenger_count", message))
        elif passengers > PASSENGER_MAX:
            findings.append(
                Finding("excess_passengers", "invalid_passenger_count", f"Passenger count: {passengers} (> 6)")
            )

    if trip.pickup_latitude is not None and trip.pickup_longitude is not None:
        if not NYC_BOUNDS.contains(trip.pickup_latitude, trip.pickup_longitude):
            findings.append(
                Finding(
                    "pickup_outside_nyc",
                    "invalid_pickup_coordinates",
                    f"Pickup outside NYC: ({trip.pickup_latitude}, {trip.pickup_longitude})",
                )
            )

    if trip.dropoff_latitude is not None and trip.dropoff_longitude is not None:
        if not NYC_BOUNDS.contains(trip.dropoff_latitude, trip.dropoff_longitude):
            findings.append(
                Finding(
                    "dropoff_outside_nyc",
                    "invalid_dropoff_coordinates",
                    f"Dropoff outside NYC: ({trip.dropoff_latitude}, {trip.dropoff_longitude})",
                )
            )
            destination = infer_destination(trip.dropoff_latitude, trip.dropoff_longitude)
            if destination is not None:
                findings.append(Finding(destination[0], None, destination[1]))

    if trip.pickup_datetime is not None and trip.dropoff_datetime is not None:
        if trip.dropoff_datetime <= trip.pickup_datetime:
            findings.append(
                Finding("invalid_datetime_sequence", "invalid_datetime_sequence", "Dropoff before or equal to pickup")
            )
        if duration is not None:
            calculated = calculated_duration(trip)
            if abs(calculated - duration) > duration * DURATION_TOLERANCE:
                findings.append(
                    Finding(
                        "duration_mismatch",
                        "duration_mismatch",
                        f"Duration mismatch: recorded={duration}s, calculated={calculated}s",
                    )
                )

    return findings


def select_category(flags: Sequence[str]) -> DataCategory:
    """Category of the highest-priority flag, ``valid_complete`` if none apply."""
    best = DataCategory.VALID_COMPLETE
    best_priority = -1
    for flag in flags:
        entry = CATEGORY_PRIORITY.get(flag)
        if entry is not None and entry[1] > best_priority:
            best, best_priority = entry
    return best


# ---------- derived features ----------


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def time_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def day_of_week(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def day_type(dow: int) -> str:
    return "weekend" if dow in (0, 6) else "weekday"


def estimate_fare(distance_km: float, duration_s: float) -> float:
    fare = BASE_FARE + distance_km * FARE_PER_KM + (duration_s / 60) * FARE_PER_MINUTE
    return max(fare, MIN_FARE)


def temporal_features(pickup: datetime) -> dict:
    dow = day_of_week(pickup)
    return {
        "pickup_hour": pickup.hour,
        "pickup_day_of_week": dow,
        "pickup_day_of_month": pickup.day,
        "pickup_month": pickup.month,
        "pickup_year": pickup.year,
        "time_of_day": time_of_day(pickup.hour),
        "day_type": day_type(dow),
    }


def _clamp(score: float) -> int:
    return int(max(0, min(100, score)))


def _speed_penalty(speed: float, distance: float) -> int:
    penalty = 0
    if speed > 120:
        penalty += 20
    if speed < 1 and distance > 0.1:
        penalty += 10
    return penalty


def strict_quality_score(distance: float, speed: float, duration: int) -> int:
    score = 100 - _speed_penalty(speed, distance)
    if distance < 0.1:
        score -= 15
    if duration < 120:
        score -= 5
    if duration > 7200:
        score -= 5
    return _clamp(score)


def inclusive_quality_score(
    trip: ParsedTrip,
    flags: Sequence[str],
    distance: float,
    speed: Optional[float],
) -> int:
    score = 100
    if trip.pickup_datetime is None:
        score -= 20
    if trip.dropoff_datetime is None:
        score -= 20
    score -= sum(FLAG_PENALTIES.get(flag, 0) for flag in set(flags))
    if speed is not None:
        score -= _speed_penalty(speed, distance)
    if distance < 0.1:
        score -= 15
    return _clamp(score)


def processed_at() -> str:
    return datetime.now(timezone.utc).isoformat()


def strict_features(trip: ParsedTrip) -> dict:
    """Derived features for a fully parsed, rule-abiding trip."""
    distance = haversine_km(trip.pickup_latitude, trip.pickup_longitude, trip.dropoff_latitude, trip.dropoff_longitude)
    duration = trip.trip_duration
    speed = distance / (duration / 3600) if duration > 0 else 0.0
    fare = estimate_fare(distance, duration)
    return {
        "distance_km": round(distance, 3),
        "speed_kmh": round(speed, 2),
        **temporal_features(trip.pickup_datetime),
        "fare_estimate": round(fare, 2),
        "fare_per_km": round(fare / distance, 2) if distance > 0 else 0.0,
        "data_quality_score": strict_quality_score(distance, speed, duration),
        "processed_at": processed_at(),
    }


def inclusive_features(trip: ParsedTrip, flags: Sequence[str]) -> dict:
    """Derived features that degrade to ``None`` when inputs are missing."""
    features: dict = {"processed_at": processed_at()}
    if trip.pickup_datetime is not None:
        features.update(temporal_features(trip.pickup_datetime))

    if not trip.has_coordinates:
        features.update(
            distance_km=None,
            speed_kmh=None,
            fare_estimate=None,
            fare_per_km=None,
            data_quality_score=MISSING_COORDINATES_SCORE,
        )
        return features

    distance = haversine_km(trip.pickup_latitude, trip.pickup_longitude, trip.dropoff_latitude, trip.dropoff_longitude)
    duration = trip.trip_duration
    speed = distance / (duration / 3600) if duration is not None and duration > 0 else None
    fare = estimate_fare(distance, duration or 0)
    features.update(
        distance_km=round(distance, 3),
        speed_kmh=round(speed, 2) if speed is not None else None,
        fare_estimate=round(fare, 2),
        fare_per_km=round(fare / distance, 2) if distance > 0 else None,
        data_quality_score=inclusive_quality_score(trip, flags, distance, speed),
    )
    return features
