"""The ``speed`` entry point: pick an execution route and run it.

Routing table (first match wins):

    input   pipeline       size vs threshold   route
    file    pushable       any                 relational (stream ingest)
    file    not pushable   any                 chunked (range reads)
    table   pushable       above               relational (bulk load)
    table   pushable       at or below         in memory
    table   not pushable   above               chunked
    table   not pushable   at or below         in memory
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
import polars as pl

from ben_speed.base import Step
from ben_speed.chunked import run_chunked
from ben_speed.classifier import Compatibility, classify
from ben_speed.config import GB, SpeedConfig
from ben_speed.events import Observer, emit
from ben_speed.exceptions import InvalidInputError, RoutingError
from ben_speed.memory import run_in_memory
from ben_speed.pipeline import Pipeline
from ben_speed.relational import run_relational
from ben_speed.resources import ResourceBudget, ResourceProbe
from ben_speed.sources import DataSource, FileSource, TableSource, resolve_source


class Route(str, enum.Enum):
    RELATIONAL = "relational"
    CHUNKED = "chunked"
    IN_MEMORY = "in_memory"


def choose_route(
    kind: str,
    verdict: Compatibility,
    size_bytes: float,
    threshold_bytes: float,
) -> Route:
    """Apply the routing table.

    Raises:
        RoutingError: If no row matches (unknown input kind or verdict).
    """
    pushable = verdict == Compatibility.PUSHABLE
    not_pushable = verdict == Compatibility.NOT_PUSHABLE
    large = size_bytes > threshold_bytes

    if kind == "file" and pushable:
        return Route.RELATIONAL
    if kind == "file" and not_pushable:
        return Route.CHUNKED
    if kind == "table" and pushable and large:
        return Route.RELATIONAL
    if kind == "table" and pushable:
        return Route.IN_MEMORY
    if kind == "table" and not_pushable and large:
        return Route.CHUNKED
    if kind == "table" and not_pushable:
        return Route.IN_MEMORY

    raise RoutingError(
        f"Could not determine approach for input kind {kind!r} with verdict {verdict!r}. "
        "Check the input and the pipeline."
    )


@dataclass(frozen=True)
class Plan:
    """Every routing decision for one call, made before any execution."""

    source: DataSource
    pipeline: Callable
    size_bytes: int
    verdict: Compatibility
    route: Route
    budget: ResourceBudget
    config: SpeedConfig

    @property
    def kind(self) -> str:
        return self.source.kind

    @property
    def size_gb(self) -> float:
        return self.size_bytes / GB


def _as_pipeline(processing_func: object) -> Callable:
    if isinstance(processing_func, Step):
        return Pipeline([processing_func])
    if isinstance(processing_func, (list, tuple)):
        try:
            return Pipeline(list(processing_func))
        except (TypeError, ValueError) as e:
            raise InvalidInputError(processing_func, str(e)) from e
    if not callable(processing_func):
        raise InvalidInputError(processing_func, "processing_func must be callable")
    return processing_func


def plan(
    input: str | Path | pd.DataFrame | pl.DataFrame,
    processing_func: Callable,
    memory_threshold_gb: float = 2,
    reserve_cores: int = 2,
    reserve_ram: float = 4,
    max_chunk_gb: float = 0.5,
    db_file: str = "ben_speed.db",
    temp_dir: str | Path | None = None,
    *,
    observer: Observer | None = None,
    probe: ResourceProbe | None = None,
) -> Plan:
    """Decide how ``speed`` would run, without running anything.

    Raises:
        ConfigurationError: If a tuning value is out of range.
        InvalidInputError: If the input or the pipeline is unusable.
    """
    config = SpeedConfig(
        memory_threshold_gb=memory_threshold_gb,
        reserve_cores=reserve_cores,
        reserve_ram=reserve_ram,
        max_chunk_gb=max_chunk_gb,
        db_file=str(db_file),
        temp_dir=Path(temp_dir) if temp_dir is not None else None,
    )
    config.validate()

    source = resolve_source(input)
    pipeline = _as_pipeline(processing_func)

    size_bytes = source.size_bytes
    if isinstance(source, FileSource):
        emit(
            observer,
            "input",
            f"Input is a {source.format} file of approx {size_bytes / GB:.2f} GB",
            path=str(source.path),
            size_bytes=size_bytes,
        )
    else:
        emit(
            observer,
            "input",
            f"Input is an in-memory table of approx {size_bytes / GB:.2f} GB",
            size_bytes=size_bytes,
        )

    verdict = classify(pipeline, source)
    emit(observer, "verdict", f"Pipeline is {verdict.value}", verdict=verdict.value)

    budget = (probe or ResourceProbe()).probe(config.reserve_cores, config.reserve_ram)
    emit(
        observer,
        "budget",
        f"{budget.available_cores} core(s) and {budget.available_ram_gb:.1f} GB available",
        cores=budget.available_cores,
        ram_bytes=budget.available_ram_bytes,
    )

    route = choose_route(source.kind, verdict, size_bytes, config.memory_threshold_bytes)
    emit(observer, "route", f"Routing to {route.value} executor", route=route.value)

    return Plan(source, pipeline, size_bytes, verdict, route, budget, config)


def execute(plan: Plan, *, observer: Observer | None = None, use_processes: bool = False):
    """Run a Plan on its chosen executor."""
    config = plan.config
    if plan.route == Route.RELATIONAL:
        result = run_relational(plan.source, plan.pipeline, config.db_file, observer=observer)
    elif plan.route == Route.CHUNKED:
        result = run_chunked(
            plan.source,
            plan.pipeline,
            plan.budget,
            config.max_chunk_gb,
            config.ensure_temp_dir(),
            use_processes=use_processes,
            observer=observer,
        )
    elif plan.route == Route.IN_MEMORY and isinstance(plan.source, TableSource):
        result = run_in_memory(plan.source.table, plan.pipeline)
    else:
        raise RoutingError(f"Could not determine approach for route {plan.route!r}")

    emit(observer, "done", f"Completed {plan.route.value} approach", route=plan.route.value)
    return result


def speed(
    input: str | Path | pd.DataFrame | pl.DataFrame,
    processing_func: Callable,
    memory_threshold_gb: float = 2,
    reserve_cores: int = 2,
    reserve_ram: float = 4,
    max_chunk_gb: float = 0.5,
    db_file: str = "ben_speed.db",
    temp_dir: str | Path | None = None,
    *,
    observer: Observer | None = None,
    probe: ResourceProbe | None = None,
    use_processes: bool = False,
):
    """Transform a dataset, choosing DuckDB, chunks, or memory automatically.

    Args:
        input: Path to a CSV/Parquet/NDJSON file, or a pandas/Polars DataFrame.
        processing_func: Pipeline, list of steps, or any callable over a table.
        memory_threshold_gb: In-memory tables above this size leave the
            in-memory path.
        reserve_cores: CPU cores kept free when sizing the worker pool.
        reserve_ram: GB of RAM kept free.
        max_chunk_gb: Upper bound on one chunk in the chunked path.
        db_file: DuckDB file for the relational path.
        temp_dir: Chunk working directory, created if missing when the chunked
            route runs (default: ./ben_speed_temp).
        observer: Callable receiving SpeedEvents (default: log them).
        probe: ResourceProbe to use instead of psutil.
        use_processes: Chunk workers are processes instead of threads.

    Returns:
        The transformed table. Relational and chunked runs return a Polars
        DataFrame; in-memory runs return whatever the pipeline returns.

    Raises:
        InvalidInputError: Input is not a readable file or a DataFrame.
        RelationalExecutionError: DuckDB ingestion or query failed.
        ChunkExecutionError: The pipeline failed on a chunk.

    Example:
        >>> from ben_speed import Pipeline, speed
        >>> from ben_speed.processors import Filter, StringTransform
        >>> result = speed("sales.csv", Pipeline([
        ...     Filter("price", 1000, ">="),
        ...     StringTransform("name", "upper"),
        ... ]))
    """
    emit(observer, "start", "Ben_Speed: start")
    decided = plan(
        input,
        processing_func,
        memory_threshold_gb,
        reserve_cores,
        reserve_ram,
        max_chunk_gb,
        db_file,
        temp_dir,
        observer=observer,
        probe=probe,
    )
    return execute(decided, observer=observer, use_processes=use_processes)
