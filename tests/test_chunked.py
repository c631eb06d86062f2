"""Tests for the chunked execution path."""

import logging
import threading
from pathlib import Path

import pandas as pd
import polars as pl
import pytest
from polars.testing import assert_frame_equal

from ben_speed import Pipeline
from ben_speed.chunked import ChunkPlan, FileChunk, plan_chunks, run_chunk, run_chunked
from ben_speed.config import GB
from ben_speed.exceptions import ChunkExecutionError
from ben_speed.processors import MapBatches, Sort, WithColumn
from ben_speed.resources import ResourceBudget
from ben_speed.sources import FileSource, TableSource

BUDGET = ResourceBudget(available_cores=8, available_ram_bytes=16 * 10**9)


def chunk_gb_for(size_bytes: int, chunks: float) -> float:
    """max_chunk_gb that splits ``size_bytes`` into ceil(chunks) pieces."""
    return size_bytes / chunks / GB


class TestPlanChunks:
    """Tests for chunk count and row ranges."""

    def test_ten_gb_in_half_gb_chunks(self) -> None:
        plan = plan_chunks(int(10 * GB), 10**9, 0.5 * GB)

        assert plan.chunk_count == 20

    def test_partial_chunk_rounds_up(self) -> None:
        assert plan_chunks(1001, 10_000, 100).chunk_count == 11

    def test_at_least_one_chunk(self) -> None:
        assert plan_chunks(0, 0, 0.5 * GB).chunk_count == 1
        assert plan_chunks(10, 5, 0.5 * GB).chunk_count == 1

    def test_at_most_one_chunk_per_row(self) -> None:
        assert plan_chunks(int(GB), 3, 1).chunk_count == 3

    def test_rejects_non_positive_chunk_size(self) -> None:
        with pytest.raises(ValueError, match="must be positive"):
            plan_chunks(100, 10, 0)

    @pytest.mark.parametrize("rows,chunks", [(10, 3), (1000, 5), (7, 7), (0, 1), (5, 1)])
    def test_ranges_cover_every_row_once(self, rows: int, chunks: int) -> None:
        ranges = ChunkPlan(chunks, rows, 0).ranges()

        assert len(ranges) == chunks
        assert sum(length for _, length in ranges) == rows
        lengths = {length for _, length in ranges}
        assert max(lengths) - min(lengths) <= 1
        offsets = [offset for offset, _ in ranges]
        assert offsets == sorted(offsets)

    def test_ranges_are_contiguous(self) -> None:
        assert ChunkPlan(3, 10, 0).ranges() == [(0, 4), (4, 3), (7, 3)]


class TestRunChunk:
    """Tests for the per-chunk worker function."""

    def test_file_chunk_reads_only_its_range(self, numbered_csv: Path) -> None:
        chunk = FileChunk(FileSource(numbered_csv, "csv"), offset=200, length=50)

        frame = chunk.load()

        assert frame["id"].to_list() == list(range(200, 250))

    def test_spills_to_parquet(self, numbered_df: pl.DataFrame, tmp_path: Path) -> None:
        spill = tmp_path / "chunk_00001.parquet"

        assert run_chunk(numbered_df.head(10), Pipeline([WithColumn("x", "id + 1")]), spill) == spill
        assert pl.read_parquet(spill)["x"].to_list() == list(range(1, 11))

    def test_pandas_result_is_converted(self, numbered_df: pl.DataFrame) -> None:
        result = run_chunk(numbered_df.head(3), lambda df: df.to_pandas())

        assert isinstance(result, pl.DataFrame)


class TestRunChunked:
    """Tests for run_chunked."""

    @pytest.fixture
    def pipeline(self) -> Pipeline:
        return Pipeline([WithColumn("tripled", "value * 3")])

    def test_table_order_preserved(self, numbered_df: pl.DataFrame, pipeline: Pipeline, events: list) -> None:
        """Five chunks reassemble into the single-pass result."""
        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 4.5)

        result = run_chunked(TableSource(numbered_df), pipeline, BUDGET, max_chunk_gb, observer=events.append)

        assert_frame_equal(result, pipeline(numbered_df))
        chunk_plan = next(e for e in events if e.stage == "chunk_plan")
        assert chunk_plan.details["chunk_count"] == 5

    def test_pandas_table(self, numbered_df: pl.DataFrame, pipeline: Pipeline) -> None:
        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 2.5)

        result = run_chunked(TableSource(numbered_df.to_pandas()), pipeline, BUDGET, max_chunk_gb)

        assert result["id"].to_list() == list(range(1000))

    def test_pandas_chunks_stay_pandas(self, numbered_df: pl.DataFrame) -> None:
        """Each chunk is a slice of the caller's pandas table."""
        table = numbered_df.to_pandas()
        seen = []

        def record(df):
            seen.append(type(df))
            return df.assign(double=df["value"] * 2)

        max_chunk_gb = chunk_gb_for(int(table.memory_usage(deep=True).sum()), 2.5)
        result = run_chunked(TableSource(table), record, BUDGET, max_chunk_gb)

        assert seen == [pd.DataFrame] * 3
        assert result["double"].to_list() == [v * 2 for v in range(0, 3000, 3)]

    def test_workers_capped_by_budget(self, numbered_df: pl.DataFrame, pipeline: Pipeline, events: list) -> None:
        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 9.5)
        budget = ResourceBudget(available_cores=2, available_ram_bytes=0)

        run_chunked(TableSource(numbered_df), pipeline, budget, max_chunk_gb, observer=events.append)

        chunk_plan = next(e for e in events if e.stage == "chunk_plan")
        assert chunk_plan.details["chunk_count"] == 10
        assert chunk_plan.details["workers"] == 2

    def test_workers_capped_by_chunks(self, numbered_df: pl.DataFrame, pipeline: Pipeline, events: list) -> None:
        run_chunked(TableSource(numbered_df), pipeline, BUDGET, 0.5, observer=events.append)

        chunk_plan = next(e for e in events if e.stage == "chunk_plan")
        assert chunk_plan.details["chunk_count"] == 1
        assert chunk_plan.details["workers"] == 1

    def test_file_chunks(self, numbered_csv: Path, numbered_df: pl.DataFrame, pipeline: Pipeline, tmp_path: Path, events: list) -> None:
        """File chunks are read by range and spill files are removed afterwards."""
        source = FileSource(numbered_csv, "csv")
        work_dir = tmp_path / "work"

        result = run_chunked(
            source,
            pipeline,
            BUDGET,
            chunk_gb_for(source.size_bytes, 3.5),
            work_dir,
            observer=events.append,
        )

        assert_frame_equal(result, pipeline(numbered_df))
        assert next(e for e in events if e.stage == "chunk_plan").details["chunk_count"] == 4
        assert list(work_dir.iterdir()) == []

    def test_global_operation_warning(self, numbered_df: pl.DataFrame, events: list) -> None:
        """Sorting chunk by chunk is flagged."""
        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 1.5)

        run_chunked(
            TableSource(numbered_df),
            Pipeline([Sort("id", descending=True)]),
            BUDGET,
            max_chunk_gb,
            observer=events.append,
        )

        warnings = [e for e in events if e.stage == "chunk_local"]
        assert len(warnings) == 1
        assert warnings[0].level == logging.WARNING
        assert warnings[0].details["operations"] == ["sort"]

    def test_no_warning_for_single_chunk(self, numbered_df: pl.DataFrame, events: list) -> None:
        run_chunked(TableSource(numbered_df), Pipeline([Sort("id")]), BUDGET, 0.5, observer=events.append)

        assert not [e for e in events if e.stage == "chunk_local"]

    def test_process_pool(self, numbered_df: pl.DataFrame, pipeline: Pipeline) -> None:
        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 2.5)

        result = run_chunked(TableSource(numbered_df), pipeline, BUDGET, max_chunk_gb, use_processes=True)

        assert_frame_equal(result, pipeline(numbered_df))


class TestChunkFailures:
    """A failing chunk fails the whole run."""

    def test_chunk_three_of_five(self, numbered_df: pl.DataFrame) -> None:
        def fail_on_third(df: pl.DataFrame) -> pl.DataFrame:
            if df["id"].min() == 400:
                raise ValueError("bad rows")
            return df

        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 4.5)

        with pytest.raises(ChunkExecutionError) as exc_info:
            run_chunked(TableSource(numbered_df), Pipeline([MapBatches(fail_on_third)]), BUDGET, max_chunk_gb)

        error = exc_info.value
        assert error.chunk_number == 3
        assert error.total_chunks == 5
        assert "chunk 3 of 5" in str(error)
        assert isinstance(error.failures[3], ValueError)

    def test_lowest_failing_chunk_is_reported(self, numbered_df: pl.DataFrame) -> None:
        """All chunks are running before any fails, so both failures are recorded."""
        barrier = threading.Barrier(5, timeout=30)

        def fail_on_second_and_fourth(df: pl.DataFrame) -> pl.DataFrame:
            barrier.wait()
            if df["id"].min() in (200, 600):
                raise RuntimeError(f"chunk starting at {df['id'].min()}")
            return df

        max_chunk_gb = chunk_gb_for(numbered_df.estimated_size(), 4.5)

        with pytest.raises(ChunkExecutionError) as exc_info:
            run_chunked(
                TableSource(numbered_df),
                Pipeline([MapBatches(fail_on_second_and_fourth)]),
                BUDGET,
                max_chunk_gb,
            )

        assert exc_info.value.chunk_number == 2
        assert list(exc_info.value.failures) == [2, 4]
        assert "failed chunks: [2, 4]" in str(exc_info.value)

    def test_spill_dir_removed_on_failure(self, numbered_csv: Path, tmp_path: Path) -> None:
        source = FileSource(numbered_csv, "csv")
        work_dir = tmp_path / "work"

        def explode(df: pl.DataFrame) -> pl.DataFrame:
            raise RuntimeError("boom")

        with pytest.raises(ChunkExecutionError):
            run_chunked(source, explode, BUDGET, chunk_gb_for(source.size_bytes, 3.5), work_dir)

        assert list(work_dir.iterdir()) == []
