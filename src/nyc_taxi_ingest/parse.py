"""Chunked CSV tokenizer for raw trip extracts.

This module provides:

- :func:`consume_chunk` / :func:`finish` – pure steps that turn text chunks
  into raw rows, threading an immutable :class:`ParserState` across chunk
  boundaries (partial line, open quote, header, counters).
- :class:`ChunkReader` – bounded-size byte reads with incremental decoding.
- :class:`CSVTokenizer` – stateful wrapper that keeps statistics, records
  malformed lines and trips the error-tolerance circuit breaker.

Line terminators (``\\n``, ``\\r``, ``\\r\\n``) only end a record outside an
open quote, which is how multi-line quoted fields survive. A quote or ``\\r``
that is the last buffered character is left undecided until the next chunk
arrives, so the output never depends on the chunk size.
"""
import codecs
import functools
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, NamedTuple, Optional, Union

from loguru import logger

from .config import ParserConfig
from .exceptions import (
    ErrorToleranceExceeded,
    FieldCountMismatch,
    FieldTooLarge,
    LineError,
    SourceUnreadableError,
    UnterminatedQuote,
)
from .fields import split_fields
from .stats import ErrorEntry, ParseStatistics

RawRow = Union[dict[str, str], list[str]]
Event = Union[dict[str, str], list[str], LineError]


@dataclass(frozen=True, slots=True)
class ParserState:
    """Everything the tokenizer carries from one chunk to the next.

    ``buffer`` always starts at the beginning of an unfinished line;
    ``scan_offset`` is where scanning resumes inside it and ``in_quote`` is
    the quote state at that offset.
    """

    buffer: str = ""
    in_quote: bool = False
    scan_offset: int = 0
    headers: Optional[tuple[str, ...]] = None
    header_seen: bool = False
    line_number: int = 0
    record_number: int = 0
    empty_lines: int = 0
    bytes_processed: int = 0


class ChunkResult(NamedTuple):
    state: ParserState
    events: tuple[Event, ...]


@functools.lru_cache(maxsize=16)
def _patterns(quote: str, escape: str) -> tuple[re.Pattern, re.Pattern]:
    outside = re.compile(f"[{re.escape(quote)}\r\n]")
    inside = re.compile(f"[{re.escape(quote)}{re.escape(escape)}]")
    return outside, inside


def _scan(buffer: str, start: int, in_quote: bool, config: ParserConfig, final: bool):
    """Find complete lines in ``buffer`` from ``start``.

    Returns ``(lines, line_start, resume_at, in_quote)`` where
    ``buffer[line_start:]`` is the unfinished remainder.
    """
    quote, escape = config.quote, config.escape
    outside, inside = _patterns(quote, escape)
    lines: list[str] = []
    line_start = 0
    i = start
    n = len(buffer)

    while i < n:
        m = (inside if in_quote else outside).search(buffer, i)
        if m is None:
            i = n
            break
        i = m.start()
        ch = buffer[i]
        at_end = i + 1 >= n

        if in_quote:
            if at_end and not final:
                break
            nxt = "" if at_end else buffer[i + 1]
            if ch == escape and escape != quote:
                i += 2 if nxt in (quote, escape) else 1
                continue
            if nxt == quote:
                i += 2
                continue
            in_quote = False
        elif ch == quote:
            in_quote = True
        else:
            if ch == "\r" and at_end and not final:
                break
            lines.append(buffer[line_start:i])
            if ch == "\r" and not at_end and buffer[i + 1] == "\n":
                i += 1
            line_start = i + 1
        i += 1

    return lines, line_start, i, in_quote


def _process_line(state: ParserState, line: str, config: ParserConfig) -> tuple[ParserState, Optional[Event]]:
    line_number = state.line_number + 1

    if config.skip_empty_lines and not line.strip():
        return replace(state, line_number=line_number, empty_lines=state.empty_lines + 1), None

    fields = split_fields(line, config.delimiter, config.quote, config.escape)

    if not state.header_seen:
        headers = None if config.skip_header else tuple(fields)
        return replace(state, line_number=line_number, header_seen=True, headers=headers), None

    state = replace(state, line_number=line_number)

    largest = max(len(f) for f in fields)
    if largest > config.max_field_size:
        return state, FieldTooLarge(line_number, largest, config.max_field_size, line)

    if state.headers is None:
        return replace(state, record_number=state.record_number + 1), fields

    if len(fields) != len(state.headers):
        return state, FieldCountMismatch(line_number, len(state.headers), len(fields), line)

    row = dict(zip(state.headers, fields))
    return replace(state, record_number=state.record_number + 1), row


def consume_chunk(state: ParserState, text: str, nbytes: int, config: ParserConfig) -> ChunkResult:
    """Append ``text`` to the carried buffer and emit every complete line.

    Parameters
    ----------
    state
        State returned by the previous step (``ParserState()`` to start).
    text
        Decoded chunk.
    nbytes
        Size of the chunk in bytes, added to ``bytes_processed``.
    config
        Dialect and header options.

    Returns
    -------
    ChunkResult
        The next state and, in file order, the rows and line errors
        produced by this chunk.
    """
    buffer = state.buffer + text
    lines, line_start, resume, in_quote = _scan(buffer, state.scan_offset, state.in_quote, config, final=False)
    state = replace(
        state,
        buffer=buffer[line_start:],
        scan_offset=resume - line_start,
        in_quote=in_quote,
        bytes_processed=state.bytes_processed + nbytes,
    )

    events: list[Event] = []
    for line in lines:
        state, event = _process_line(state, line, config)
        if event is not None:
            events.append(event)
    return ChunkResult(state, tuple(events))


def finish(state: ParserState, config: ParserConfig) -> ChunkResult:
    """Flush whatever is left in the buffer at end of stream."""
    lines, line_start, _, in_quote = _scan(state.buffer, state.scan_offset, state.in_quote, config, final=True)
    rest = state.buffer[line_start:]
    state = replace(state, buffer="", scan_offset=0, in_quote=False)

    events: list[Event] = []
    for line in lines:
        state, event = _process_line(state, line, config)
        if event is not None:
            events.append(event)

    if rest:
        if in_quote:
            state = replace(state, line_number=state.line_number + 1)
            events.append(UnterminatedQuote(state.line_number, rest))
        else:
            state, event = _process_line(state, rest, config)
            if event is not None:
                events.append(event)
    return ChunkResult(state, tuple(events))


class ChunkReader:
    """Read a file in ``chunk_size`` byte steps and decode incrementally.

    Multi-byte characters split across two reads are held back by the
    decoder until they are complete.
    """

    def __init__(self, path: str | Path, config: ParserConfig):
        self.path = Path(path)
        self.config = config
        self._decoder = codecs.getincrementaldecoder(config.encoding)()
        self._done = False
        try:
            self.size = self.path.stat().st_size
            self._fh = self.path.open("rb")
        except OSError as e:
            raise SourceUnreadableError(str(self.path), str(e)) from e

    def read(self) -> Optional[tuple[str, int]]:
        """Return ``(text, nbytes)`` for the next chunk, ``None`` at end of file."""
        if self._done:
            return None
        try:
            raw = self._fh.read(self.config.chunk_size)
            text = self._decoder.decode(raw, final=not raw)
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnreadableError(str(self.path), str(e)) from e
        if not raw:
            self._done = True
            return (text, 0) if text else None
        return text, len(raw)

    def close(self) -> None:
        self._fh.close()

    def __enter__(self) -> "ChunkReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class CSVTokenizer:
    """Stateful tokenizer: state threading, statistics and error tolerance.

    One instance parses one stream at a time; call :meth:`reset` before
    reusing it for another file.

    Examples
    --------
    >>> tok = CSVTokenizer(ParserConfig())
    >>> rows = list(tok.iter_rows("train.csv"))
    >>> tok.stats.total_records
    1458644
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self.reset()

    def reset(self) -> None:
        self.state = ParserState()
        self.stats = ParseStatistics()

    @property
    def headers(self) -> Optional[tuple[str, ...]]:
        return self.state.headers

    def snapshot(self) -> ParseStatistics:
        return self.stats.snapshot()

    def feed(self, text: str, nbytes: Optional[int] = None) -> Iterator[Event]:
        """Tokenize one decoded chunk; yields rows and recoverable line errors."""
        if nbytes is None:
            nbytes = len(text.encode(self.config.encoding))
        return self._drain(consume_chunk(self.state, text, nbytes, self.config))

    def close(self) -> Iterator[Event]:
        """Flush the final partial line."""
        return self._drain(finish(self.state, self.config))

    def iter_events(self, path: str | Path) -> Iterator[Event]:
        with ChunkReader(path, self.config) as reader:
            while (chunk := reader.read()) is not None:
                yield from self.feed(*chunk)
        yield from self.close()

    def iter_rows(self, path: str | Path) -> Iterator[RawRow]:
        """Yield the raw rows of ``path`` in file order."""
        for event in self.iter_events(path):
            if not isinstance(event, LineError):
                yield event

    def _drain(self, result: ChunkResult) -> Iterator[Event]:
        if self.state.headers is None and result.state.headers is not None:
            headers = result.state.headers
            logger.info(f"Detected {len(headers)} columns: {', '.join(headers)}")
        self.state = result.state
        self._sync()
        return self._emit(result.events)

    def _emit(self, events: tuple[Event, ...]) -> Iterator[Event]:
        for event in events:
            if isinstance(event, LineError):
                self._record_line_error(event)
            yield event

    def _sync(self) -> None:
        self.stats.total_lines = self.state.line_number
        self.stats.total_records = self.state.record_number
        self.stats.empty_lines = self.state.empty_lines
        self.stats.bytes_processed = self.state.bytes_processed

    def _record_line_error(self, error: LineError) -> None:
        self.stats.malformed_lines += 1
        self.stats.invalid_records += 1
        self.stats.errors.append(
            ErrorEntry(
                kind="line",
                message=error.message,
                line_number=error.line_number,
                record_number=self.state.record_number,
            )
        )
        logger.warning(f"Parse error at line {error.line_number}: {error.message}")

        rate = self.stats.malformed_lines / max(error.line_number, 1)
        if rate > self.config.error_tolerance:
            raise ErrorToleranceExceeded(rate, self.config.error_tolerance, error.line_number)
