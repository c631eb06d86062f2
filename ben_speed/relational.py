"""Run a pushable pipeline inside DuckDB.

Files are streamed into a table with ``CREATE OR REPLACE TABLE ... AS
SELECT * FROM read_csv_auto(...)`` so they never pass through Python
memory. In-memory tables are bulk-loaded. The pipeline is applied to a lazy
relation over that table and only the final relation is materialized.

Fidelity: DuckDB's type inference and coercion (dates, integer widths,
decimal sums) can differ from Polars; values match, dtypes may not.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import duckdb
import polars as pl

from ben_speed.events import Observer, emit
from ben_speed.exceptions import RelationalExecutionError
from ben_speed.pipeline import Pipeline
from ben_speed.processors import quote_identifier
from ben_speed.sources import DataSource, FileSource, TableSource, to_polars

TABLE_NAME = "temp_data"
_STAGING_VIEW = "_ben_speed_input"


def ingest(
    conn: duckdb.DuckDBPyConnection,
    source: DataSource,
    table_name: str = TABLE_NAME,
) -> None:
    """Create (or replace) ``table_name`` from the source."""
    target = quote_identifier(table_name)
    if isinstance(source, FileSource):
        conn.execute(f"CREATE OR REPLACE TABLE {target} AS SELECT * FROM {source.reader_sql()}")
        return

    conn.register(_STAGING_VIEW, source.table)
    try:
        conn.execute(f"CREATE OR REPLACE TABLE {target} AS SELECT * FROM {_STAGING_VIEW}")
    finally:
        conn.unregister(_STAGING_VIEW)


def apply_pipeline(
    rel: duckdb.DuckDBPyRelation,
    pipeline: Callable,
    conn: duckdb.DuckDBPyConnection,
) -> object:
    """Apply the pipeline to a lazy relation."""
    if isinstance(pipeline, Pipeline):
        return pipeline.apply_relation(rel, conn)
    return pipeline(rel)


def materialize(result: object) -> pl.DataFrame:
    """Force execution of the pipeline result into a Polars DataFrame."""
    if isinstance(result, duckdb.DuckDBPyRelation):
        return result.pl()
    return to_polars(result)


def run_relational(
    source: DataSource,
    pipeline: Callable,
    db_file: str = "ben_speed.db",
    *,
    table_name: str = TABLE_NAME,
    observer: Observer | None = None,
) -> pl.DataFrame:
    """Load the source into DuckDB, apply the pipeline, and collect.

    Args:
        source: File or in-memory table.
        pipeline: Pushable pipeline.
        db_file: DuckDB database file (created if missing, ":memory:" allowed).
        table_name: Table the data is loaded into; replaced if it exists.
        observer: Receives progress events.

    Returns:
        Polars DataFrame with the pipeline result.

    Raises:
        RelationalExecutionError: If connecting, ingestion, building the query
            or running it fails. The connection is closed first.
    """
    db_file = str(db_file)
    try:
        conn = duckdb.connect(db_file)
    except duckdb.Error as e:
        raise RelationalExecutionError("connect", db_file, str(e)) from e

    stage = "ingest"
    try:
        if isinstance(source, TableSource):
            emit(observer, "ingest", f"Bulk-loading table into {db_file}:{table_name}")
        else:
            emit(observer, "ingest", f"Streaming {source.path} into {db_file}:{table_name}")
        ingest(conn, source, table_name)

        stage = "query"
        rel = conn.sql(f"SELECT * FROM {quote_identifier(table_name)}")
        result = apply_pipeline(rel, pipeline, conn)
        if not isinstance(result, duckdb.DuckDBPyRelation):
            emit(
                observer,
                "materialized_early",
                "Pipeline materialized its result before the end of the relational run",
                level=logging.WARNING,
                result_type=type(result).__name__,
            )

        stage = "materialize"
        return materialize(result)
    except (duckdb.Error, KeyError, ValueError, TypeError, AttributeError) as e:
        # Steps can fail while building the query, before DuckDB runs it
        raise RelationalExecutionError(stage, db_file, f"{type(e).__name__}: {e}") from e
    finally:
        conn.close()
