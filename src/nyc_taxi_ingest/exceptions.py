"""Error taxonomy for trip ingestion.

Two families live here:

- *Fatal* errors (:class:`ErrorToleranceExceeded`, :class:`SourceUnreadableError`)
  are raised and abort the whole parse.
- *Line* errors (:class:`LineError` and subclasses) describe a single
  malformed physical line. The tokenizer returns them as values next to the
  rows it produced; they are counted and reported, never raised.
"""
from typing import Any, Optional


class IngestError(Exception):
    """Base class for all ingestion errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INGEST_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        # Filled in by the pipeline when the error aborts a parse.
        self.statistics = None


class ErrorToleranceExceeded(IngestError):
    """Too many malformed lines; the parse is aborted."""

    def __init__(self, error_rate: float, tolerance: float, line_number: int):
        super().__init__(
            f"Error rate ({error_rate * 100:.2f}%) exceeds tolerance ({tolerance * 100:.2f}%)",
            "ERROR_TOLERANCE_EXCEEDED",
            {"error_rate": error_rate, "tolerance": tolerance, "line_number": line_number},
        )
        self.error_rate = error_rate
        self.tolerance = tolerance
        self.line_number = line_number


class SourceUnreadableError(IngestError):
    """The input file could not be opened, read or decoded."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot read {path}: {reason}", "SOURCE_UNREADABLE", {"path": path})
        self.path = path


class LineError(IngestError):
    """A recoverable problem with one physical line."""

    def __init__(
        self,
        message: str,
        line_number: int,
        line: str = "",
        error_code: str = "LINE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)
        self.line_number = line_number
        self.line = line

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LineError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.line_number == other.line_number
            and self.message == other.message
        )

    def __hash__(self) -> int:
        return hash((type(self), self.line_number, self.message))


class FieldCountMismatch(LineError):
    def __init__(self, line_number: int, expected: int, actual: int, line: str = ""):
        super().__init__(
            f"Field count mismatch at line {line_number}: expected {expected}, got {actual}",
            line_number,
            line,
            "FIELD_COUNT_MISMATCH",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class FieldTooLarge(LineError):
    def __init__(self, line_number: int, size: int, limit: int, line: str = ""):
        super().__init__(
            f"Field of {size} characters at line {line_number} exceeds limit of {limit}",
            line_number,
            line,
            "FIELD_TOO_LARGE",
            {"size": size, "limit": limit},
        )


class UnterminatedQuote(LineError):
    def __init__(self, line_number: int, line: str = ""):
        super().__init__(
            f"Unterminated quoted field at line {line_number}",
            line_number,
            line,
            "UNTERMINATED_QUOTE",
        )
