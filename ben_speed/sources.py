"""Dataset references: a file on disk or an in-memory table.

``resolve_source`` turns the dispatcher's input into one of the two kinds
and rejects everything else. Each kind knows its approximate size and how
to hand its rows to DuckDB and to Polars.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
import polars as pl

from ben_speed.exceptions import InvalidInputError

# File suffix -> format name. Anything else is read as CSV.
FORMATS = {
    ".csv": "csv",
    ".parquet": "parquet",
    ".pq": "parquet",
    ".ndjson": "ndjson",
    ".jsonl": "ndjson",
    ".json": "ndjson",
}

DUCKDB_READERS = {
    "csv": "read_csv_auto",
    "parquet": "read_parquet",
    "ndjson": "read_json_auto",
}


def detect_format(path: str | Path) -> str:
    """Infer the file format from the extension (CSV by default)."""
    return FORMATS.get(Path(path).suffix.lower(), "csv")


@dataclass(frozen=True)
class FileSource:
    """A readable file whose rows are never loaded whole by ben-speed."""

    path: Path
    format: str = "csv"

    kind = "file"

    @property
    def size_bytes(self) -> int:
        return self.path.stat().st_size

    def reader_sql(self) -> str:
        """DuckDB table function that streams the file."""
        literal = str(self.path).replace("'", "''")
        return f"{DUCKDB_READERS[self.format]}('{literal}')"

    def scan(self) -> pl.LazyFrame:
        """Lazy Polars scan of the file."""
        if self.format == "parquet":
            return pl.scan_parquet(self.path)
        if self.format == "ndjson":
            return pl.scan_ndjson(self.path)
        return pl.scan_csv(self.path)

    def count_rows(self) -> int:
        """Count rows with a streaming scan."""
        return self.scan().select(pl.len()).collect().item()


class TableSource:
    """An in-memory pandas or Polars DataFrame owned by the caller.

    The table is never converted as a whole: chunks are slices of the
    caller's own table, so a pipeline sees the same frame type on every
    route.
    """

    kind = "table"

    def __init__(self, table: pd.DataFrame | pl.DataFrame):
        self.table = table

    @property
    def size_bytes(self) -> int:
        return estimate_table_size(self.table)

    @property
    def row_count(self) -> int:
        return len(self.table)

    def slice(self, offset: int, length: int) -> pd.DataFrame | pl.DataFrame:
        """Rows ``offset`` to ``offset + length`` in the caller's frame type."""
        if isinstance(self.table, pd.DataFrame):
            return self.table.iloc[offset : offset + length]
        return self.table.slice(offset, length)

    def empty_frame(self) -> pl.DataFrame:
        """Zero-row Polars frame with the table's columns and dtypes."""
        if isinstance(self.table, pd.DataFrame):
            # One row so object columns get a concrete dtype
            return pl.from_pandas(self.table.head(1)).clear()
        return self.table.clear()

    def __repr__(self) -> str:
        return f"TableSource({type(self.table).__name__}, {self.table.shape})"


DataSource = FileSource | TableSource


def estimate_table_size(table: pd.DataFrame | pl.DataFrame) -> int:
    """Approximate in-memory footprint of a table in bytes."""
    if isinstance(table, pd.DataFrame):
        return int(table.memory_usage(deep=True).sum())
    return int(table.estimated_size())


def resolve_source(value: object) -> DataSource:
    """Classify the dispatcher input.

    Args:
        value: A file path (str or Path) or a pandas/Polars DataFrame.

    Returns:
        FileSource or TableSource.

    Raises:
        InvalidInputError: For missing/unreadable files and unsupported types.
    """
    if isinstance(value, (pd.DataFrame, pl.DataFrame)):
        return TableSource(value)

    if isinstance(value, (str, os.PathLike)):
        path = Path(value)
        if not path.exists():
            raise InvalidInputError(value, "file does not exist")
        if not path.is_file():
            raise InvalidInputError(value, "path is not a regular file")
        if not os.access(path, os.R_OK):
            raise InvalidInputError(value, "file is not readable")
        return FileSource(path, detect_format(path))

    raise InvalidInputError(
        value,
        f"expected a file path or a pandas/Polars DataFrame, got {type(value).__name__}",
    )


def to_polars(result: object) -> pl.DataFrame:
    """Materialize a pipeline result as a Polars DataFrame."""
    if isinstance(result, pl.DataFrame):
        return result
    if isinstance(result, pl.LazyFrame):
        return result.collect()
    if isinstance(result, pd.DataFrame):
        return pl.from_pandas(result)
    raise TypeError(f"Pipeline returned {type(result).__name__}, expected a table")
