"""Apply a pipeline directly to an in-memory table."""

from __future__ import annotations

from collections.abc import Callable

import pandas as pd
import polars as pl


def run_in_memory(table: pd.DataFrame | pl.DataFrame, pipeline: Callable) -> object:
    """Return ``pipeline(table)`` unchanged.

    No size or compatibility checks; errors raised by the pipeline propagate
    as they are.
    """
    return pipeline(table)
