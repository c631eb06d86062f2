"""Pytest fixtures for ben-speed tests.

Provides small sample tables (Polars and pandas), the same data written to
CSV files under ``tmp_path``, a fixed-size resource probe and an event
recorder.

Key fixtures:
- sales_df / sales_csv: six sales rows for step and routing tests
- numbered_df / numbered_csv: 1,000 ordered rows for chunking tests
- fixed_probe: ResourceProbe reporting 8 cores and 16 GB
- events: list collecting SpeedEvents (pass ``events.append`` as observer)
"""

from pathlib import Path

import duckdb
import pandas as pd
import polars as pl
import pytest

from ben_speed.resources import ResourceProbe


class FixedProbe(ResourceProbe):
    """ResourceProbe with fixed totals instead of psutil lookups."""

    def __init__(self, cores: int | None = 8, ram_bytes: int | None = 16 * 10**9):
        self.cores = cores
        self.ram_bytes = ram_bytes

    def total_cores(self) -> int | None:
        return self.cores

    def total_ram_bytes(self) -> int | None:
        return self.ram_bytes


# -----------------------------------------------------------------------------
# Sample Data Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sales_df() -> pl.DataFrame:
    """Sample sales data for testing."""
    return pl.DataFrame(
        {
            "sale_id": [1, 2, 3, 4, 5, 6],
            "artwork_id": [101, 102, 101, 103, 104, 102],
            "sale_price_usd": [100000, 250000, 150000, 50000, 900, 3000],
            "buyer_country": ["usa", "uk", "usa", "france", "  germany ", "uk"],
        }
    )


@pytest.fixture
def sales_pandas(sales_df: pl.DataFrame) -> pd.DataFrame:
    """Sample sales data as pandas."""
    return sales_df.to_pandas()


@pytest.fixture
def artworks_df() -> pl.DataFrame:
    """Sample artworks data for join tests."""
    return pl.DataFrame(
        {
            "artwork_id": [101, 102, 103, 104],
            "title": ["Painting A", "Sculpture B", "Drawing C", "Print D"],
        }
    )


@pytest.fixture
def sales_csv(tmp_path: Path, sales_df: pl.DataFrame) -> Path:
    """Sales data written to a CSV file."""
    path = tmp_path / "sales.csv"
    sales_df.write_csv(path)
    return path


@pytest.fixture
def numbered_df() -> pl.DataFrame:
    """1,000 rows in id order, for chunk ordering tests."""
    ids = list(range(1000))
    return pl.DataFrame({"id": ids, "value": [i * 3 for i in ids]})


@pytest.fixture
def numbered_csv(tmp_path: Path, numbered_df: pl.DataFrame) -> Path:
    """Numbered data written to a CSV file."""
    path = tmp_path / "numbered.csv"
    numbered_df.write_csv(path)
    return path


# -----------------------------------------------------------------------------
# Resource and Event Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def fixed_probe() -> FixedProbe:
    """Probe reporting 8 cores and 16 GB."""
    return FixedProbe()


@pytest.fixture
def events() -> list:
    """Collects SpeedEvents; pass ``events.append`` as the observer."""
    return []


@pytest.fixture
def conn():
    """In-memory DuckDB connection, closed after the test."""
    connection = duckdb.connect(":memory:")
    yield connection
    connection.close()


def relation_of(conn: duckdb.DuckDBPyConnection, df: pl.DataFrame) -> duckdb.DuckDBPyRelation:
    """DuckDB relation over a Polars DataFrame."""
    return conn.from_arrow(df.to_arrow())
