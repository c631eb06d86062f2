"""Decide whether a pipeline can be pushed into DuckDB.

Three ways to reach a verdict, tried in order:

1. Pipeline values are inspected statically: every step must be a
   RelationalStep with a verb from RELATIONAL_VERBS.
2. Callables marked with ``@pushable`` / ``@not_pushable`` are trusted.
3. Any other callable is dry-run against a zero-row DuckDB relation with
   the dataset's schema. It is pushable if it hands back a relation that
   binds without error.

Classification never raises: any failure means NOT_PUSHABLE, which sends
the data down the slower but general in-memory/chunked paths.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable

import duckdb

from ben_speed.base import RelationalStep, Step
from ben_speed.pipeline import Pipeline
from ben_speed.sources import DataSource, FileSource, TableSource

logger = logging.getLogger(__name__)

PUSHABLE_ATTR = "__ben_speed_pushable__"

RELATIONAL_VERBS = frozenset(
    {
        "filter",
        "select",
        "rename",
        "with_column",
        "string_transform",
        "sort",
        "aggregate",
        "join",
        "sql",
    }
)

# Verbs whose result depends on rows outside the current chunk
GLOBAL_VERBS = frozenset({"sort", "aggregate", "sql"})


class Compatibility(str, enum.Enum):
    PUSHABLE = "pushable"
    NOT_PUSHABLE = "not_pushable"


def pushable(func: Callable) -> Callable:
    """Mark a callable as safe to run on a DuckDB relation."""
    setattr(func, PUSHABLE_ATTR, True)
    return func


def not_pushable(func: Callable) -> Callable:
    """Mark a callable as in-memory only (skips the dry run)."""
    setattr(func, PUSHABLE_ATTR, False)
    return func


def classify(pipeline: object, source: DataSource | None = None) -> Compatibility:
    """Classify a pipeline as PUSHABLE or NOT_PUSHABLE.

    Args:
        pipeline: Pipeline, Step, or any callable over a table.
        source: Dataset the pipeline will run on; gives the dry run its schema.

    Returns:
        Compatibility verdict. Stable for the same pipeline and schema.
    """
    try:
        if isinstance(pipeline, Step):
            pipeline = Pipeline([pipeline])
        if isinstance(pipeline, Pipeline):
            return _classify_steps(pipeline)

        tag = getattr(pipeline, PUSHABLE_ATTR, None)
        if tag is not None:
            return Compatibility.PUSHABLE if tag else Compatibility.NOT_PUSHABLE

        if not callable(pipeline):
            return Compatibility.NOT_PUSHABLE
        return _dry_run(pipeline, source)
    except Exception as e:
        logger.debug("Classification of %r failed, treating as not pushable: %s", pipeline, e)
        return Compatibility.NOT_PUSHABLE


def _classify_steps(pipeline: Pipeline) -> Compatibility:
    for step in pipeline.steps:
        if not isinstance(step, RelationalStep) or step.verb not in RELATIONAL_VERBS:
            logger.debug("Step %r has no relational form", step)
            return Compatibility.NOT_PUSHABLE
    return Compatibility.PUSHABLE


def _dry_run(func: Callable, source: DataSource | None) -> Compatibility:
    conn = duckdb.connect(":memory:")
    try:
        result = func(probe_relation(conn, source))
        if not isinstance(result, duckdb.DuckDBPyRelation):
            logger.debug(
                "Dry run returned %s instead of a lazy relation", type(result).__name__
            )
            return Compatibility.NOT_PUSHABLE
        # Binding the projection surfaces unknown columns and functions
        result.columns
        return Compatibility.PUSHABLE
    finally:
        conn.close()


def probe_relation(
    conn: duckdb.DuckDBPyConnection, source: DataSource | None = None
) -> duckdb.DuckDBPyRelation:
    """Zero-row relation with the same columns as ``source``."""
    if isinstance(source, FileSource):
        return conn.sql(f"SELECT * FROM {source.reader_sql()} LIMIT 0")
    if isinstance(source, TableSource):
        return conn.from_arrow(source.empty_frame().to_arrow())
    return conn.sql("SELECT NULL AS probe LIMIT 0")


def global_operations(pipeline: object) -> list[str]:
    """Verbs in ``pipeline`` that do not give chunk-local results."""
    if isinstance(pipeline, Step):
        pipeline = Pipeline([pipeline])
    if not isinstance(pipeline, Pipeline):
        return []
    return [verb for verb in pipeline.operations if verb in GLOBAL_VERBS]
