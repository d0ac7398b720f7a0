"""Strict and inclusive record validators.

Both adapters share :mod:`.enrich` and differ only in failure policy:

- :class:`StrictValidator` drops a row at the first problem and counts the
  reason. What it returns always passed every rule.
- :class:`InclusiveValidator` never drops a row. It returns a
  :class:`~.models.CategorizedRecord` carrying a category, every triggered
  flag and a readable issue list.

Instances are callables, so either can be passed directly as the
pipeline's ``on_record`` hook.
"""
from collections import Counter
from typing import Mapping, Optional, Sequence, Union

from loguru import logger

from .enrich import (
    IDENTITY_FIELDS,
    UNKNOWN_VENDOR,
    VENDOR_NAMES,
    ParsedTrip,
    as_mapping,
    assess,
    inclusive_features,
    missing_fields,
    parse_trip,
    processed_at,
    select_category,
    strict_features,
)
from .models import CategorizedRecord, DataCategory, ValidatedRecord

RawRow = Union[Mapping[str, str], Sequence[str]]

_TRIP_FIELDS = (
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


def _trip_fields(trip: ParsedTrip) -> dict:
    return {name: getattr(trip, name) for name in _TRIP_FIELDS}


def _percentage(part: int, whole: int) -> str:
    return f"{part / whole * 100:.2f}%" if whole else "0%"


class StrictValidator:
    """Reject-on-first-problem validator.

    Examples
    --------
    >>> validator = StrictValidator()
    >>> validator.process(row_with_zero_passengers) is None
    True
    >>> validator.validation_errors
    Counter({'invalid_passenger_count': 1})
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.total_processed = 0
        self.valid_records = 0
        self.invalid_records = 0
        self.validation_errors: Counter = Counter()

    def __call__(self, raw: RawRow) -> Optional[ValidatedRecord]:
        return self.process(raw)

    def process(self, raw: RawRow) -> Optional[ValidatedRecord]:
        """Validate and enrich ``raw``; ``None`` when any gate fails."""
        self.total_processed += 1
        try:
            record = self._validate(as_mapping(raw))
        except Exception as e:
            logger.error(f"Error processing record: {e!r}")
            return self._reject("processing_exception")
        if record is not None:
            self.valid_records += 1
        return record

    def _validate(self, raw: dict[str, str]) -> Optional[ValidatedRecord]:
        if missing_fields(raw):
            return self._reject("missing_required_fields")

        trip, problems = parse_trip(raw)
        if problems:
            return self._reject(problems[0].reason)

        for finding in assess(trip):
            if finding.reason is not None:
                return self._reject(finding.reason)

        return ValidatedRecord(**_trip_fields(trip), **strict_features(trip))

    def _reject(self, reason: str) -> None:
        self.validation_errors[reason] += 1
        self.invalid_records += 1
        return None

    def statistics(self) -> dict:
        return {
            "total_processed": self.total_processed,
            "valid_records": self.valid_records,
            "invalid_records": self.invalid_records,
            "validation_errors": dict(self.validation_errors),
            "validation_rate": _percentage(self.valid_records, self.total_processed),
            "invalidation_rate": _percentage(self.invalid_records, self.total_processed),
        }


class InclusiveValidator:
    """Categorize-everything validator; one output record per input row."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.total_processed = 0
        self.fully_valid = 0
        self.with_flags = 0
        self.categories: Counter = Counter()

    def __call__(self, raw: RawRow) -> CategorizedRecord:
        return self.process(raw)

    def process(self, raw: RawRow) -> CategorizedRecord:
        """Categorize ``raw``.

        Parsing is best-effort: a field that cannot be parsed is ``None`` on
        the record and described in ``validation_issues``. An unexpected
        exception yields a ``processing_error`` record instead of raising.
        """
        self.total_processed += 1
        try:
            record = self._categorize(as_mapping(raw))
        except Exception as e:
            logger.error(f"Error processing record: {e!r}")
            record = self._processing_error(raw, e)

        self.categories[record.data_category.value] += 1
        if record.data_category is DataCategory.VALID_COMPLETE:
            self.fully_valid += 1
        else:
            self.with_flags += 1
        return record

    def _categorize(self, raw: dict[str, str]) -> CategorizedRecord:
        trip, problems = parse_trip(raw)
        flags: list[str] = []
        issues: list[str] = []

        for name in IDENTITY_FIELDS:
            if getattr(trip, name) is None:
                flags.append("missing_required_field")
                issues.append(f"Missing {name}")

        for problem in problems:
            issues.append(f"Unparseable {problem.field}: {problem.value!r}")

        for finding in assess(trip):
            flags.append(finding.flag)
            issues.append(finding.message)

        flags = list(dict.fromkeys(flags))
        category = select_category(flags)

        return CategorizedRecord(
            **_trip_fields(trip),
            vendor_name=VENDOR_NAMES.get(trip.vendor_id, UNKNOWN_VENDOR),
            **inclusive_features(trip, flags),
            data_category=category,
            data_flags=flags,
            validation_issues=issues,
            is_valid_nyc_trip=category is DataCategory.VALID_COMPLETE,
            is_suburban_trip=category is DataCategory.SUBURBAN_TRIP,
            is_micro_trip=category is DataCategory.MICRO_TRIP,
            is_extended_trip=category is DataCategory.EXTENDED_TRIP,
            has_anomalies=category in (DataCategory.DATA_ANOMALY, DataCategory.INCOMPLETE_DATA),
            raw_data=trip.raw_data,
        )

    @staticmethod
    def _processing_error(raw: RawRow, error: Exception) -> CategorizedRecord:
        try:
            raw_data = {str(k): str(v) for k, v in as_mapping(raw).items()}
        except (TypeError, ValueError):
            raw_data = {}
        return CategorizedRecord(
            data_category=DataCategory.PROCESSING_ERROR,
            data_flags=["processing_exception"],
            validation_issues=[str(error)],
            data_quality_score=0,
            raw_data=raw_data,
            processed_at=processed_at(),
        )

    def statistics(self) -> dict:
        return {
            "total_processed": self.total_processed,
            "fully_valid": self.fully_valid,
            "with_flags": self.with_flags,
            "valid_rate": _percentage(self.fully_valid, self.total_processed),
            "categories": dict(self.categories),
        }
