"""Run a pipeline over bounded-size chunks with a worker pool.

The dataset is split into contiguous row ranges of at most ``max_chunk_gb``
each. Every chunk runs the pipeline independently and the results are
concatenated back in source row order.

This is only equivalent to one pass over the whole dataset when the
pipeline is row-wise. Sorts and aggregations give per-chunk results; a
warning event is emitted when a Pipeline contains them.

Files are never loaded whole: each worker scans only its own row range and
spills its result to a Parquet file under ``temp_dir``. The spill files are
removed when the run finishes, whether it succeeded or not.
"""

from __future__ import annotations

import logging
import math
import shutil
import tempfile
from collections.abc import Callable
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
import polars as pl

from ben_speed.classifier import global_operations
from ben_speed.config import GB
from ben_speed.events import Observer, emit
from ben_speed.exceptions import ChunkExecutionError
from ben_speed.resources import ResourceBudget
from ben_speed.sources import DataSource, FileSource, to_polars


@dataclass(frozen=True)
class ChunkPlan:
    """How a dataset is split.

    Attributes:
        chunk_count: Number of chunks (at least 1)
        total_rows: Rows in the dataset
        total_bytes: Size estimate the split was based on
    """

    chunk_count: int
    total_rows: int
    total_bytes: int

    def ranges(self) -> list[tuple[int, int]]:
        """(offset, length) of every chunk, in row order.

        Rows are spread evenly; chunk lengths differ by at most one.
        """
        base, extra = divmod(self.total_rows, self.chunk_count)
        ranges = []
        offset = 0
        for index in range(self.chunk_count):
            length = base + (1 if index < extra else 0)
            ranges.append((offset, length))
            offset += length
        return ranges


def plan_chunks(total_bytes: int, total_rows: int, max_chunk_bytes: float) -> ChunkPlan:
    """Split ``total_bytes`` into chunks no larger than ``max_chunk_bytes``.

    ``chunk_count = ceil(total_bytes / max_chunk_bytes)``, at least 1 and at
    most one chunk per row.
    """
    if max_chunk_bytes <= 0:
        raise ValueError(f"max_chunk_bytes must be positive, got: {max_chunk_bytes}")
    chunk_count = max(1, math.ceil(total_bytes / max_chunk_bytes))
    chunk_count = min(chunk_count, max(total_rows, 1))
    return ChunkPlan(chunk_count, total_rows, total_bytes)


@dataclass(frozen=True)
class FileChunk:
    """A row range of a file, read lazily by the worker."""

    source: FileSource
    offset: int
    length: int

    def load(self) -> pl.DataFrame:
        return self.source.scan().slice(self.offset, self.length).collect()


def run_chunk(
    chunk: pd.DataFrame | pl.DataFrame | FileChunk,
    pipeline: Callable,
    spill_path: Path | None = None,
) -> pl.DataFrame | Path:
    """Apply the pipeline to one chunk.

    Module-level so process pools can pickle it.
    """
    frame = chunk.load() if isinstance(chunk, FileChunk) else chunk
    result = to_polars(pipeline(frame))
    if spill_path is None:
        return result
    result.write_parquet(spill_path)
    return spill_path


def _make_pool(workers: int, use_processes: bool) -> Executor:
    if use_processes:
        return ProcessPoolExecutor(max_workers=workers)
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ben_speed_chunk")


def run_chunked(
    source: DataSource,
    pipeline: Callable,
    resource_budget: ResourceBudget,
    max_chunk_gb: float = 0.5,
    temp_dir: str | Path | None = None,
    *,
    use_processes: bool = False,
    observer: Observer | None = None,
) -> pl.DataFrame:
    """Apply ``pipeline`` chunk by chunk and concatenate the results.

    Args:
        source: File or in-memory table.
        pipeline: Any pipeline; must be chunk-local for a full-dataset result.
        resource_budget: Caps the number of workers.
        max_chunk_gb: Upper bound on one chunk's size.
        temp_dir: Where file chunks spill their results (default: system temp).
        use_processes: Use a process pool instead of threads. The pipeline
            must then be picklable.
        observer: Receives progress events.

    Returns:
        Polars DataFrame with chunk results in source row order.

    Raises:
        ChunkExecutionError: If the pipeline fails on any chunk. No partial
            result is returned.
    """
    if isinstance(source, FileSource):
        total_rows = source.count_rows()
    else:
        total_rows = source.row_count
    plan = plan_chunks(source.size_bytes, total_rows, max_chunk_gb * GB)
    workers = max(1, min(plan.chunk_count, resource_budget.available_cores))

    emit(
        observer,
        "chunk_plan",
        f"Splitting {plan.total_rows:,} rows into {plan.chunk_count} chunk(s) "
        f"across {workers} worker(s)",
        chunk_count=plan.chunk_count,
        workers=workers,
        total_bytes=plan.total_bytes,
    )

    global_ops = global_operations(pipeline)
    if global_ops and plan.chunk_count > 1:
        emit(
            observer,
            "chunk_local",
            f"Pipeline contains {global_ops}; results are per chunk, not dataset-wide",
            level=logging.WARNING,
            operations=global_ops,
        )

    spill_dir = None
    if isinstance(source, FileSource):
        if temp_dir is not None:
            Path(temp_dir).mkdir(parents=True, exist_ok=True)
        spill_dir = Path(tempfile.mkdtemp(prefix="chunks_", dir=temp_dir))

    try:
        outputs: dict[int, pl.DataFrame | Path] = {}
        failures: dict[int, BaseException] = {}

        with _make_pool(workers, use_processes) as pool:
            futures = {}
            for number, (offset, length) in enumerate(plan.ranges(), start=1):
                if isinstance(source, FileSource):
                    chunk = FileChunk(source, offset, length)
                    spill_path = spill_dir / f"chunk_{number:05d}.parquet"
                else:
                    chunk = source.slice(offset, length)
                    spill_path = None
                futures[pool.submit(run_chunk, chunk, pipeline, spill_path)] = number

            for future in as_completed(futures):
                number = futures[future]
                if future.cancelled():
                    continue
                try:
                    outputs[number] = future.result()
                except Exception as e:
                    failures[number] = e
                    # Chunks not started yet would be discarded anyway
                    for pending in futures:
                        pending.cancel()

        if failures:
            raise ChunkExecutionError(failures, plan.chunk_count)

        frames = [
            pl.read_parquet(out) if isinstance(out, Path) else out
            for _, out in sorted(outputs.items())
        ]
        result = frames[0] if len(frames) == 1 else pl.concat(frames, how="vertical_relaxed")
        emit(observer, "chunks_done", f"Combined {len(frames)} chunk result(s)", rows=result.height)
        return result
    finally:
        if spill_dir is not None:
            shutil.rmtree(spill_dir, ignore_errors=True)
