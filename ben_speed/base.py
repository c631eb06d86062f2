"""Base step classes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import polars as pl

if TYPE_CHECKING:
    import duckdb


class Step(ABC):
    """One operation in a Pipeline - takes a LazyFrame, returns a LazyFrame.

    ``verb`` names the kind of operation. The classifier reads it to decide
    whether a pipeline can run inside DuckDB.
    """

    verb: str = "step"

    @abstractmethod
    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class RelationalStep(Step):
    """
    Step that also has a DuckDB form.

    ``_apply_relation`` must return another lazy relation: nothing is
    executed until the final relation is materialized. ``conn`` is the
    connection that owns ``rel``; steps that bring in extra tables need it.
    """

    @abstractmethod
    def _apply_relation(
        self,
        rel: "duckdb.DuckDBPyRelation",
        conn: "duckdb.DuckDBPyConnection | None" = None,
    ) -> "duckdb.DuckDBPyRelation":
        pass
