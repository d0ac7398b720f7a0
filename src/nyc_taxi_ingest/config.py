"""Parser configuration for the trip CSV ingestion pipeline.

The options mirror the knobs of the streaming importer: dialect
(``delimiter``, ``quote``, ``escape``), decoding, chunking, header handling,
the global error-tolerance circuit breaker and batch/progress settings.

Each option can be given either by its Python name or by its camelCase
option name (``chunkSize``, ``skipEmptyLines`` ...), so a plain options
mapping coming from a job definition can be passed straight through::

    ParserConfig(**{"chunkSize": 8192, "errorTolerance": 0.05})
"""
import codecs

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_LINE_TERMINATORS = ("\n", "\r")


class ParserConfig(BaseModel):
    """Validated, immutable parser options.

    Parameters
    ----------
    delimiter
        Field separator (single character).
    quote
        Quote character used to enclose fields.
    escape
        Escape character inside quoted fields. When equal to ``quote`` the
        RFC-4180 doubled-quote convention applies.
    encoding
        Text encoding of the input file.
    chunk_size
        Number of bytes read from the file per step.
    skip_empty_lines
        Drop blank lines (they are still counted as ``empty_lines``).
    skip_header
        Treat the first line as data-less and do not use it as a header.
        Rows are then yielded as lists.
    max_field_size
        Longest accepted field, in characters. Longer fields make the line
        malformed.
    error_tolerance
        Highest fraction of malformed lines tolerated before the whole parse
        is aborted.
    batch_size
        Number of processed records per batch handed to the batch sink.
    progress_interval
        Minimum number of seconds between two progress callbacks.
    queue_size
        Capacity of the bounded channel between the tokenizer stage and the
        record stage.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    delimiter: str = ","
    quote: str = '"'
    escape: str = '"'
    encoding: str = "utf-8"
    chunk_size: int = Field(default=64 * 1024, alias="chunkSize", gt=0)
    skip_empty_lines: bool = Field(default=True, alias="skipEmptyLines")
    skip_header: bool = Field(default=False, alias="skipHeader")
    max_field_size: int = Field(default=128 * 1024, alias="maxFieldSize", gt=0)
    error_tolerance: float = Field(default=0.01, alias="errorTolerance", ge=0.0, le=1.0)
    batch_size: int = Field(default=1000, alias="batchSize", gt=0)
    progress_interval: float = Field(default=1.0, alias="progressInterval", gt=0)
    queue_size: int = Field(default=1000, alias="queueSize", gt=0)

    @field_validator("delimiter", "quote", "escape")
    @classmethod
    def _single_character(cls, v: str) -> str:
        if len(v) != 1:
            raise ValueError("must be exactly one character")
        if v in _LINE_TERMINATORS:
            raise ValueError("cannot be a line terminator")
        return v

    @field_validator("encoding")
    @classmethod
    def _known_encoding(cls, v: str) -> str:
        try:
            codecs.lookup(v)
        except LookupError as e:
            raise ValueError(f"unknown encoding: {v}") from e
        return v

    @model_validator(mode="after")
    def _distinct_dialect(self) -> "ParserConfig":
        if self.delimiter == self.quote:
            raise ValueError("delimiter and quote must differ")
        if self.delimiter == self.escape:
            raise ValueError("delimiter and escape must differ")
        return self
