"""Built-in pipeline steps.

Every step except MapBatches has both a Polars form and a DuckDB form, so a
pipeline built only from them can be pushed into the database. Expressions
given as strings (WithColumn, SQL) use SQL syntax, which both engines read.

Example:
    pipeline = Pipeline([
        Filter("price", 1000, ">="),
        WithColumn("price_with_tax", "price * 1.2"),
        StringTransform("name", "upper"),
        Sort("price", descending=True),
    ])
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Literal

import pandas as pd
import polars as pl

from ben_speed.base import RelationalStep, Step


OPERATORS = (">=", ">", "<=", "<", "==", "!=")
AGGREGATIONS = {
    "sum": "SUM",
    "mean": "AVG",
    "min": "MIN",
    "max": "MAX",
    "count": "COUNT",
    "n_unique": "COUNT(DISTINCT {})",
}
STRING_FUNCTIONS = {"upper": "upper", "lower": "lower", "strip": "trim"}

TransformType = Literal["upper", "lower", "strip"]

_alias_counter = itertools.count()


def quote_identifier(name: str) -> str:
    """Quote a column name for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def sql_literal(value: object) -> str:
    """Render a Python scalar as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def _as_list(value: str | list[str]) -> list[str]:
    return [value] if isinstance(value, str) else list(value)


def _require_connection(conn, step: Step):
    if conn is None:
        raise ValueError(
            f"{step!r} needs the DuckDB connection that owns the relation. "
            "Call pipeline.apply_relation(rel, conn)."
        )
    return conn


# --- Row selection ---


class Filter(RelationalStep):
    """Keep rows where ``column <operator> value``.

    Example:
        >>> Filter("price", 1000, ">=")
    """

    verb = "filter"

    def __init__(self, column: str, value: object, operator: str = ">="):
        if operator not in OPERATORS:
            raise ValueError(f"Unknown operator: {operator}. Use one of {OPERATORS}")
        self.column = column
        self.value = value
        self.operator = operator

    def _get_filter_expr(self) -> pl.Expr:
        """Build the Polars filter expression."""
        col = pl.col(self.column)
        if self.operator == ">=":
            return col >= self.value
        elif self.operator == ">":
            return col > self.value
        elif self.operator == "<=":
            return col <= self.value
        elif self.operator == "<":
            return col < self.value
        elif self.operator == "==":
            return col == self.value
        return col != self.value

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.filter(self._get_filter_expr())

    def _apply_relation(self, rel, conn=None):
        op = "=" if self.operator == "==" else self.operator
        return rel.filter(
            f"{quote_identifier(self.column)} {op} {sql_literal(self.value)}"
        )

    def __repr__(self) -> str:
        return f"Filter({self.column} {self.operator} {self.value!r})"


# --- Column selection and computation ---


class Select(RelationalStep):
    """Keep only the named columns, in the given order."""

    verb = "select"

    def __init__(self, *columns: str):
        if not columns:
            raise ValueError("Select requires at least one column")
        self.columns = list(columns)

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.select(self.columns)

    def _apply_relation(self, rel, conn=None):
        return rel.project(", ".join(quote_identifier(c) for c in self.columns))

    def __repr__(self) -> str:
        return f"Select({', '.join(self.columns)})"


class Rename(RelationalStep):
    """Rename columns with an ``{old: new}`` mapping, keeping column order."""

    verb = "rename"

    def __init__(self, mapping: dict[str, str]):
        if not mapping:
            raise ValueError("Rename requires a non-empty mapping")
        self.mapping = dict(mapping)

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.rename(self.mapping)

    def _apply_relation(self, rel, conn=None):
        missing = set(self.mapping) - set(rel.columns)
        if missing:
            raise KeyError(f"Cannot rename missing columns: {sorted(missing)}")
        parts = []
        for col in rel.columns:
            if col in self.mapping:
                parts.append(f"{quote_identifier(col)} AS {quote_identifier(self.mapping[col])}")
            else:
                parts.append(quote_identifier(col))
        return rel.project(", ".join(parts))

    def __repr__(self) -> str:
        return f"Rename({self.mapping})"


class WithColumn(RelationalStep):
    """Add or replace a column computed from a SQL expression.

    An existing column is replaced in place; a new one is appended.

    Example:
        >>> WithColumn("price_with_tax", "price * 1.2")
    """

    verb = "with_column"

    def __init__(self, name: str, expression: str):
        self.name = name
        self.expression = expression

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.with_columns(pl.sql_expr(self.expression).alias(self.name))

    def _apply_relation(self, rel, conn=None):
        computed = f"{self.expression} AS {quote_identifier(self.name)}"
        columns = rel.columns
        if self.name in columns:
            parts = [computed if c == self.name else quote_identifier(c) for c in columns]
        else:
            parts = [quote_identifier(c) for c in columns] + [computed]
        return rel.project(", ".join(parts))

    def __repr__(self) -> str:
        return f"WithColumn({self.name} = {self.expression})"


class StringTransform(RelationalStep):
    """Apply a string transformation to one column in place."""

    verb = "string_transform"

    def __init__(self, column: str, transform: TransformType = "upper"):
        if transform not in STRING_FUNCTIONS:
            raise ValueError(
                f"Unknown transform: {transform}. Use one of {list(STRING_FUNCTIONS)}"
            )
        self.column = column
        self.transform = transform

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        col = pl.col(self.column)
        if self.transform == "upper":
            return lf.with_columns(col.str.to_uppercase())
        elif self.transform == "lower":
            return lf.with_columns(col.str.to_lowercase())
        return lf.with_columns(col.str.strip_chars())

    def _apply_relation(self, rel, conn=None):
        func = STRING_FUNCTIONS[self.transform]
        target = quote_identifier(self.column)
        parts = [
            f"{func}({target}) AS {target}" if c == self.column else quote_identifier(c)
            for c in rel.columns
        ]
        return rel.project(", ".join(parts))

    def __repr__(self) -> str:
        return f"StringTransform({self.column}, {self.transform})"


# --- Ordering and aggregation ---


class Sort(RelationalStep):
    """Sort rows by one or more columns. Nulls sort last in both engines."""

    verb = "sort"

    def __init__(self, by: str | list[str], descending: bool | list[bool] = False):
        self.by = _as_list(by)
        if isinstance(descending, bool):
            self.descending = [descending] * len(self.by)
        else:
            self.descending = list(descending)
        if len(self.descending) != len(self.by):
            raise ValueError("descending must have one entry per sort column")

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.sort(
            self.by, descending=self.descending, nulls_last=True, maintain_order=True
        )

    def _apply_relation(self, rel, conn=None):
        order = ", ".join(
            f"{quote_identifier(col)} {'DESC' if desc else 'ASC'} NULLS LAST"
            for col, desc in zip(self.by, self.descending)
        )
        return rel.order(order)

    def __repr__(self) -> str:
        return f"Sort({', '.join(self.by)})"


class Aggregate(RelationalStep):
    """Group rows and aggregate.

    Args:
        group_by: Grouping columns; empty for a whole-table aggregate.
        aggregations: ``{output_col: (function, column)}`` where function is
            one of sum, mean, min, max, count, n_unique. ``("count", "*")``
            counts rows.

    Example:
        >>> Aggregate(
        ...     ["artist_id"],
        ...     {"total": ("sum", "price"), "sales": ("count", "*")},
        ... )
    """

    verb = "aggregate"

    def __init__(
        self,
        group_by: str | list[str],
        aggregations: dict[str, tuple[str, str]],
    ):
        if not aggregations:
            raise ValueError("Aggregate requires at least one aggregation")
        for name, (func, column) in aggregations.items():
            if func not in AGGREGATIONS:
                raise ValueError(
                    f"Unknown aggregation {func!r} for {name}. Use one of {list(AGGREGATIONS)}"
                )
            if column == "*" and func != "count":
                raise ValueError(f"Only count accepts '*', got {func!r} for {name}")
        self.group_by = _as_list(group_by)
        self.aggregations = dict(aggregations)

    def _polars_expr(self, name: str, func: str, column: str) -> pl.Expr:
        if column == "*":
            return pl.len().alias(name)
        col = pl.col(column)
        if func == "n_unique":
            return col.drop_nulls().n_unique().alias(name)
        return getattr(col, func)().alias(name)

    def _sql_expr(self, name: str, func: str, column: str) -> str:
        target = "*" if column == "*" else quote_identifier(column)
        template = AGGREGATIONS[func]
        if "{}" in template:
            expr = template.format(target)
        else:
            expr = f"{template}({target})"
        return f"{expr} AS {quote_identifier(name)}"

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        exprs = [self._polars_expr(n, f, c) for n, (f, c) in self.aggregations.items()]
        if not self.group_by:
            return lf.select(exprs)
        return lf.group_by(self.group_by, maintain_order=True).agg(exprs)

    def _apply_relation(self, rel, conn=None):
        group = ", ".join(quote_identifier(c) for c in self.group_by)
        aggs = ", ".join(self._sql_expr(n, f, c) for n, (f, c) in self.aggregations.items())
        select = f"{group}, {aggs}" if group else aggs
        return rel.aggregate(select, group)

    def __repr__(self) -> str:
        return f"Aggregate(GROUP BY {', '.join(self.group_by) or '()'})"


# --- Joins ---


class Join(RelationalStep):
    """Equality join against a second, in-memory table.

    Args:
        other: Right-hand table (pandas or Polars).
        on: Join key column(s), present in both tables.
        how: "inner" or "left".
    """

    verb = "join"

    def __init__(
        self,
        other: pd.DataFrame | pl.DataFrame,
        on: str | list[str],
        how: Literal["inner", "left"] = "inner",
    ):
        if how not in ("inner", "left"):
            raise ValueError(f"Unsupported join type: {how}")
        self.other = pl.from_pandas(other) if isinstance(other, pd.DataFrame) else other
        self.on = _as_list(on)
        self.how = how

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.join(self.other.lazy(), on=self.on, how=self.how)

    def _apply_relation(self, rel, conn=None):
        conn = _require_connection(conn, self)
        other_rel = conn.from_arrow(self.other.to_arrow()).set_alias(
            f"_join_rhs_{next(_alias_counter)}"
        )
        condition = ", ".join(quote_identifier(c) for c in self.on)
        return rel.join(other_rel, condition, how=self.how)

    def __repr__(self) -> str:
        return f"Join({self.how} ON {', '.join(self.on)})"


# --- Raw SQL ---


class SQL(RelationalStep):
    """Run a SQL query against the current table, referenced as ``_input``.

    Polars runs the query with its SQL context, DuckDB as a subquery.

    Example:
        >>> SQL("SELECT *, price * 1.1 AS price_with_tax FROM _input")
    """

    verb = "sql"

    def __init__(self, query: str):
        self.query = query

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        return lf.sql(self.query, table_name="_input")

    def _apply_relation(self, rel, conn=None):
        return rel.query("_input", self.query)

    def __repr__(self) -> str:
        preview = self.query.strip()[:50].replace("\n", " ")
        return f"SQL({preview}...)"


# --- Opaque ---


class MapBatches(Step):
    """Apply an arbitrary Python function to a materialized DataFrame.

    The function receives a Polars DataFrame and may return a pandas or
    Polars DataFrame. It has no DuckDB form, so any pipeline containing it
    runs in memory or in chunks.
    """

    verb = "map"

    def __init__(self, function: Callable[[pl.DataFrame], pl.DataFrame | pd.DataFrame]):
        self.function = function

    def _apply(self, lf: pl.LazyFrame) -> pl.LazyFrame:
        result = self.function(lf.collect())
        if isinstance(result, pd.DataFrame):
            result = pl.from_pandas(result)
        return result.lazy()

    def __repr__(self) -> str:
        name = getattr(self.function, "__name__", type(self.function).__name__)
        return f"MapBatches({name})"
