"""
Loading utilities for streaming NYC taxi trip CSV extracts into ClickHouse.

This module provides:
- Batch-friendly inserts into ClickHouse (:func:`load_to_ch`)
- A batch sink for the ingestion pipeline (:func:`clickhouse_sink`)
- Streaming, memory-bounded CSV ingestion for one file
  (:func:`process_single_trip_file_streaming`) and for a whole directory
  (:func:`process_trip_files`)
"""

import asyncio
import gc
import shutil
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from clickhouse_driver import Client
from loguru import logger
from pydantic import BaseModel

from .config import ParserConfig
from .pipeline import IngestionPipeline
from .stats import ParseStatistics
from .summary import ImportSummary
from .validators import InclusiveValidator, StrictValidator

STRATEGIES = {
    "strict": StrictValidator,
    "inclusive": InclusiveValidator,
}


def _as_row(record: BaseModel | dict) -> dict:
    if hasattr(record, "to_row"):
        return record.to_row()
    if hasattr(record, "model_dump"):
        return record.model_dump()
    return dict(record)


def load_to_ch(
    data: List[BaseModel | dict],
    table: str,
    clickhouse_con: dict,
    batch_size: int = 50_000,
    client: Optional[Client] = None,
) -> int:
    """
    Insert trip records into a ClickHouse table in sub-batches.

    Each record is flattened with its ``to_row()`` method (falling back to
    ``model_dump()`` or ``dict()``) and one or more ``INSERT INTO``
    statements are issued through :mod:`clickhouse_driver`.

    Parameters
    ----------
    data
        Validated or categorized trip records to insert.
    table
        Fully qualified ClickHouse table name (e.g. ``"nyc.trips"``).
    clickhouse_con
        Connection kwargs passed to :class:`clickhouse_driver.Client`, e.g.
        ``{"host": "ch-router", "port": 19000, "user": "...", ...}``.
    batch_size
        Maximum number of rows per insert statement.
    client
        Existing client to reuse; a new one is created from
        ``clickhouse_con`` otherwise.

    Returns
    -------
    int
        Total number of rows inserted.

    Notes
    -----
    - ClickHouse does not require an explicit ``commit()`` for inserts.
    - Column names are taken from the first record of each sub-batch.
    """
    if not data:
        return 0

    client = client or Client(**clickhouse_con)

    inserted = 0
    for i in range(0, len(data), batch_size):
        chunk = data[i:i + batch_size]
        records = [_as_row(m) for m in chunk]
        cols = list(records[0].keys())
        client.execute(f"INSERT INTO {table} ({', '.join(cols)}) VALUES", records)
        inserted += len(records)
        del records, chunk, cols

    return inserted


def clickhouse_sink(table: str, clickhouse_con: dict) -> Callable:
    """
    Build an ``on_batch`` callback that inserts each batch into ``table``.

    The ClickHouse client is created once and reused for every batch. The
    insert runs in a worker thread so the event loop is not blocked, and the
    pipeline still waits for it before accumulating the next batch.

    Examples
    --------
    >>> sink = clickhouse_sink("nyc.trips_inclusive", ch_kwargs)
    >>> await IngestionPipeline().run("train.csv", on_record=InclusiveValidator(), on_batch=sink)
    """
    client = Client(**clickhouse_con)

    async def on_batch(batch: List[BaseModel], batch_number: int) -> int:
        inserted = await asyncio.to_thread(load_to_ch, batch, table, clickhouse_con, len(batch), client)
        logger.debug(f"[trips] batch {batch_number}: inserted {inserted} rows into {table}")
        return inserted

    return on_batch


def process_single_trip_file_streaming(
    file_path: str | Path,
    processed_dir: str | Path,
    clickhouse_con: dict,
    table: str,
    strategy: str = "inclusive",
    config: Optional[ParserConfig] = None,
    summary: Optional[ImportSummary] = None,
) -> ParseStatistics:
    """
    Stream-parse a single trip CSV and insert its records into ClickHouse.

    The file is read in ``config.chunk_size`` byte chunks by the ingestion
    pipeline, every row goes through the chosen validator and the resulting
    batches of ``config.batch_size`` records are inserted with
    :func:`load_to_ch`. After processing, the file is moved to
    ``processed_dir`` regardless of success.

    Parameters
    ----------
    file_path
        Path to the CSV file to process.
    processed_dir
        Directory where the file will be moved after processing.
    clickhouse_con
        Connection kwargs for :class:`clickhouse_driver.Client`.
    table
        Target ClickHouse table.
    strategy
        ``"strict"`` (drop invalid rows) or ``"inclusive"`` (categorize all).
    config
        Parser options; defaults to :class:`~.config.ParserConfig`.
    summary
        Optional :class:`~.summary.ImportSummary` fed with every batch.

    Returns
    -------
    ParseStatistics
        Final statistics of the parse.

    See Also
    --------
    IngestionPipeline.run :
        Drives tokenizer, validator and batch sink.
    load_to_ch :
        Inserts a batch of records into ClickHouse.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown strategy {strategy!r}; expected one of {sorted(STRATEGIES)}")

    file_path = Path(file_path)
    processed_dir = Path(processed_dir)
    processed_dir.mkdir(parents=True, exist_ok=True)

    validator = STRATEGIES[strategy]()
    sink = clickhouse_sink(table, clickhouse_con)

    async def on_batch(batch, batch_number):
        await sink(batch, batch_number)
        if summary is not None:
            summary.add_batch(batch, batch_number)
        del batch
        gc.collect()

    def on_progress(progress):
        logger.info(
            f"[trips] {file_path.name}: {progress.percentage}% "
            f"({progress.records_per_second} records/sec, {progress.mb_per_second} MB/sec)"
        )

    try:
        stats = asyncio.run(
            IngestionPipeline(config).run(
                file_path,
                on_record=validator,
                on_batch=on_batch,
                on_progress=on_progress,
            )
        )
    finally:
        shutil.move(str(file_path), processed_dir / file_path.name)

    logger.info(f"[trips] {file_path.name}: validator statistics {validator.statistics()}")
    return stats


# ---------- Orchestrator used by the DAG operator ----------

def process_trip_files(
    downloads_dir: str,
    processed_dir: str,
    clickhouse_con: dict,
    table: str = "nyc.trips",
    strategy: str = "inclusive",
    batch_size: int = 1000,
    parser_options: Optional[dict] = None,
) -> int:
    """
    Stream and load **all** trip CSV files in a directory into ClickHouse.

    Iterates over ``downloads_dir`` for files matching ``*.csv`` and calls
    :func:`process_single_trip_file_streaming` for each one. Designed to be
    used directly as an Airflow PythonOperator callable.

    Parameters
    ----------
    downloads_dir
        Directory containing CSV extracts to process.
    processed_dir
        Directory where processed files will be moved.
    clickhouse_con
        Connection kwargs for :class:`clickhouse_driver.Client`.
    table
        Target ClickHouse table.
    strategy
        ``"strict"`` or ``"inclusive"``.
    batch_size
        Records per ClickHouse insert.
    parser_options
        Extra :class:`~.config.ParserConfig` options (camelCase accepted).

    Returns
    -------
    int
        Total number of records accepted across all files.

    Notes
    -----
    - Files are processed in sorted filename order.
    - A file that aborts (error tolerance exceeded) is still moved to
      ``processed_dir`` and the error propagates, failing the task.
    """
    config = ParserConfig(**(parser_options or {}))
    if "batch_size" not in config.model_fields_set:
        config = config.model_copy(update={"batch_size": batch_size})
    files: Iterable[Path] = sorted(Path(downloads_dir).glob("*.csv"))
    if not files:
        logger.info("[trips] No files to process")
        return 0

    total = 0
    summary = ImportSummary()
    for fp in files:
        stats = process_single_trip_file_streaming(
            fp,
            processed_dir,
            clickhouse_con,
            table,
            strategy=strategy,
            config=config,
            summary=summary,
        )
        total += stats.valid_records
        logger.info(f"[trips] {fp.name}: accepted {stats.valid_records} of {stats.total_records} rows")

    for line in summary.report():
        logger.info(line)
    logger.info(f"[trips] TOTAL accepted: {total}")
    return total
