"""Pipeline: an ordered list of steps usable on any table kind.

The same Pipeline value runs on pandas/Polars DataFrames, Polars LazyFrames
and DuckDB relations, which is what lets the dispatcher choose where to run
it. Its step list is also what the classifier inspects.
"""

from __future__ import annotations

import duckdb
import pandas as pd
import polars as pl

from ben_speed.base import RelationalStep, Step


class Pipeline:
    """Chain steps with lazy evaluation.

    All steps must have an ``_apply(LazyFrame) -> LazyFrame`` method. On a
    DataFrame the whole chain runs as a single optimized Polars query; on a
    DuckDB relation every step must be a RelationalStep and the result stays
    a lazy relation.

    Example:
        from ben_speed import Pipeline
        from ben_speed.processors import Filter, StringTransform

        pipeline = Pipeline([
            StringTransform("name", "upper"),
            Filter("price", 1000, ">="),
        ])
        result = pipeline(df)  # single optimized query
    """

    def __init__(self, steps: list[Step]):
        if not steps:
            raise ValueError("Pipeline requires at least one step")

        for step in steps:
            if not hasattr(step, "_apply"):
                raise TypeError(
                    f"{type(step).__name__} is not a pipeline step. "
                    "Steps must have an _apply(LazyFrame) method."
                )

        self.steps = list(steps)

    @property
    def operations(self) -> list[str]:
        """Verb of every step, in order."""
        return [getattr(step, "verb", type(step).__name__) for step in self.steps]

    def then(self, *steps: Step) -> "Pipeline":
        """Return a new pipeline with ``steps`` appended."""
        return Pipeline(self.steps + list(steps))

    def __call__(
        self,
        data: pd.DataFrame | pl.DataFrame | pl.LazyFrame | duckdb.DuckDBPyRelation,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> pl.DataFrame | pl.LazyFrame | duckdb.DuckDBPyRelation:
        """Execute the pipeline.

        Args:
            data: Input table. pandas input is converted to Polars.
            conn: Connection owning ``data`` when it is a DuckDB relation.

        Returns:
            Same kind as the input for Polars types and relations; a Polars
            DataFrame for pandas input.
        """
        if isinstance(data, duckdb.DuckDBPyRelation):
            return self.apply_relation(data, conn)

        input_is_lazy = isinstance(data, pl.LazyFrame)

        if isinstance(data, pd.DataFrame):
            lf = pl.from_pandas(data).lazy()
        elif isinstance(data, pl.LazyFrame):
            lf = data
        else:
            lf = data.lazy()

        for step in self.steps:
            lf = step._apply(lf)

        if input_is_lazy:
            return lf

        return lf.collect()

    def apply_relation(
        self,
        rel: duckdb.DuckDBPyRelation,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> duckdb.DuckDBPyRelation:
        """Apply every step to a DuckDB relation without executing it.

        Raises:
            TypeError: If a step has no relational form
        """
        for step in self.steps:
            if not isinstance(step, RelationalStep):
                raise TypeError(f"{step!r} cannot run inside DuckDB")
            rel = step._apply_relation(rel, conn)
        return rel

    def __repr__(self) -> str:
        return f"Pipeline([{', '.join(repr(s) for s in self.steps)}])"
