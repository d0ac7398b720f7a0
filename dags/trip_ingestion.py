"""
NYC Taxi Trip Ingestion DAG
===========================

This DAG stream-parses NYC taxi trip CSV extracts (the ``train.csv`` layout:
id, vendor, pickup/dropoff timestamps and coordinates, passengers, duration),
validates and enriches every row and loads the records into ClickHouse in
batches. Files are read in fixed-size chunks, so memory stays bounded
regardless of file size.

Prerequisites
-------------
- ClickHouse reachable (e.g., via HAProxy router).
- Writable volumes for ``/data/downloads`` and ``/data/processed``.
- Python deps installed for operators and the project code.

Environment Variables
---------------------
- ``CLICKHOUSE_HOST``: ClickHouse host (e.g., ``ch-router``).
- ``CLICKHOUSE_PORT``: ClickHouse port (default: ``19000``).
- ``CLICKHOUSE_USER``: ClickHouse username.
- ``CLICKHOUSE_PASSWORD``: ClickHouse password.
- ``CLICKHOUSE_DB``: Target database/schema name.
- ``TRIP_ERROR_TOLERANCE``: Allowed share of malformed lines (default: ``0.01``).

Data Paths
----------
- Trip downloads: ``/data/downloads/trips``
- Processed trips: ``/data/processed/trips``

Notes
-----
- The strict load keeps only fully valid trips; the inclusive load keeps
  every row with a data-quality category. Both read the same directory, so
  they run one after the other; the inclusive task moves the files.
"""
import sys, os
from pathlib import Path
from datetime import datetime, timedelta

from airflow import DAG
from airflow.operators.python import PythonOperator


sys.path.append(Path.joinpath(Path(__file__).parent.parent, "src").as_posix())

from nyc_taxi_ingest.load import process_trip_files
from nyc_taxi_ingest.logs import configure_logging

configure_logging(os.getenv("TRIP_LOG_LEVEL", "INFO"))

# This would usually come from Airflow Connections/Variables or a Secrets Manager
# For simplicity, we use environment variables here
clickhouse_con = {
    "host": os.getenv("CLICKHOUSE_HOST", ""),
    "port": int(os.getenv("CLICKHOUSE_PORT", 19000)),
    "user": os.getenv("CLICKHOUSE_USER", ""),
    "password": os.getenv("CLICKHOUSE_PASSWORD", ""),
    "database": os.getenv("CLICKHOUSE_DB", ""),
}

parser_options = {
    "errorTolerance": float(os.getenv("TRIP_ERROR_TOLERANCE", 0.01)),
    "chunkSize": int(os.getenv("TRIP_CHUNK_SIZE", 64 * 1024)),
}


default_args = {
    "owner": "airflow",
    "retries": 1,
    "retry_delay": timedelta(minutes=1),
}

TRIP_DOWNLOADS_DIR = "/data/downloads/trips"
TRIP_STAGING_DIR = "/data/downloads/trips_strict_done"
TRIP_PROCESSED_DIR = "/data/processed/trips"

with DAG(
    dag_id=Path(__file__).stem,
    start_date=datetime(2023, 1, 1),
    schedule=None,
    catchup=False,
    default_args=default_args,
    tags=["nyc", "taxi_trips", "csv", "streaming"],
) as dag:

    dag.doc_md = """
    NYC Taxi Trip Ingestion DAG
    ===========================

    **Purpose**
      Streams trip CSV extracts through validation and enrichment and loads
      them into ClickHouse.

    **Flow**
      #. Strict load: drop any row failing a business rule into ``nyc.trips``.
      #. Inclusive load: categorize every row into ``nyc.trips_inclusive``.

    **Key Parameters**
      - *ClickHouse*: read from environment variables.
      - *Batch size*: set via ``batch_size`` on each task.
      - *Error tolerance*: ``TRIP_ERROR_TOLERANCE``; the task fails when the
        share of malformed lines exceeds it.

    **Storage Layout**
      - Downloads: ``/data/downloads/trips``
      - Processed: ``/data/processed/trips``
    """

    strict_task = PythonOperator(
        task_id="load_trips_strict",
        python_callable=process_trip_files,
        op_kwargs={
            "downloads_dir": TRIP_DOWNLOADS_DIR,
            "processed_dir": TRIP_STAGING_DIR,
            "clickhouse_con": clickhouse_con,
            "table": "nyc.trips",
            "strategy": "strict",
            "batch_size": 1000,
            "parser_options": parser_options,
        },
        execution_timeout=timedelta(hours=6),
    )
    strict_task.doc_md = """
    Load Trips (Strict)
    -------------------

    **Steps**
      #. Iterate CSV files in ``/data/downloads/trips``.
      #. Stream-parse in 64 KiB chunks and validate every row.
      #. Insert fully valid, enriched trips into ``nyc.trips``.
      #. Move each file to the staging directory for the inclusive load.
    """

    inclusive_task = PythonOperator(
        task_id="load_trips_inclusive",
        python_callable=process_trip_files,
        op_kwargs={
            "downloads_dir": TRIP_STAGING_DIR,
            "processed_dir": TRIP_PROCESSED_DIR,
            "clickhouse_con": clickhouse_con,
            "table": "nyc.trips_inclusive",
            "strategy": "inclusive",
            "batch_size": 1000,
            "parser_options": parser_options,
        },
        execution_timeout=timedelta(hours=6),
    )
    inclusive_task.doc_md = """
    Load Trips (Inclusive)
    ----------------------

    **Steps**
      #. Iterate CSV files in the staging directory.
      #. Categorize every row (valid, anomaly, suburban, micro, ...).
      #. Insert all rows with flags and quality score into
         ``nyc.trips_inclusive``.
      #. Move each processed file to ``/data/processed/trips``.
    """

    strict_task >> inclusive_task
