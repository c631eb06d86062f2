"""Tests for dataset references."""

from pathlib import Path

import pandas as pd
import polars as pl
import pytest

import ben_speed.sources as sources
from ben_speed.exceptions import InvalidInputError
from ben_speed.sources import FileSource, TableSource, detect_format, resolve_source


class TestResolveSource:
    """Tests for resolve_source."""

    def test_dataframes_are_tables(self, sales_df: pl.DataFrame, sales_pandas: pd.DataFrame) -> None:
        assert resolve_source(sales_df).kind == "table"
        assert resolve_source(sales_pandas).kind == "table"

    def test_path_is_file(self, sales_csv: Path) -> None:
        source = resolve_source(str(sales_csv))

        assert source == FileSource(sales_csv, "csv")
        assert source.size_bytes == sales_csv.stat().st_size

    @pytest.mark.parametrize(
        "name,fmt",
        [("a.csv", "csv"), ("a.PARQUET", "parquet"), ("a.jsonl", "ndjson"), ("a.json", "ndjson"), ("a.tsv", "csv")],
    )
    def test_detect_format(self, name: str, fmt: str) -> None:
        assert detect_format(name) == fmt

    def test_reader_sql_escapes_quotes(self, tmp_path: Path) -> None:
        source = FileSource(tmp_path / "o'brien.csv", "csv")

        assert "o''brien.csv" in source.reader_sql()

    def test_unsupported_type(self) -> None:
        with pytest.raises(InvalidInputError, match="got int"):
            resolve_source(42)


class TestTableSource:
    """Tables are sliced in the caller's own frame type."""

    def test_pandas_slice_stays_pandas(self, sales_pandas: pd.DataFrame) -> None:
        chunk = TableSource(sales_pandas).slice(2, 3)

        assert isinstance(chunk, pd.DataFrame)
        assert chunk["sale_id"].tolist() == [3, 4, 5]

    def test_polars_slice(self, sales_df: pl.DataFrame) -> None:
        chunk = TableSource(sales_df).slice(4, 10)

        assert chunk["sale_id"].to_list() == [5, 6]

    def test_row_count(self, sales_pandas: pd.DataFrame) -> None:
        assert TableSource(sales_pandas).row_count == 6

    def test_empty_frame_keeps_schema(self, sales_pandas: pd.DataFrame, sales_df: pl.DataFrame) -> None:
        empty = TableSource(sales_pandas).empty_frame()

        assert empty.height == 0
        assert empty.schema == sales_df.schema

    def test_empty_frame_does_not_convert_whole_table(self, sales_pandas: pd.DataFrame, monkeypatch) -> None:
        converted = []
        real_from_pandas = sources.pl.from_pandas

        def recording_from_pandas(df, *args, **kwargs):
            converted.append(len(df))
            return real_from_pandas(df, *args, **kwargs)

        monkeypatch.setattr(sources.pl, "from_pandas", recording_from_pandas)
        TableSource(sales_pandas).empty_frame()

        assert converted == [1]
