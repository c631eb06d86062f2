#!/usr/bin/env python3
"""Compare relational vs chunked vs in-memory outputs for one pipeline.

Normalizes NaN/None and Decimal values, compares row multisets on shared
columns. Differences point at engine fidelity caveats (type coercion,
per-chunk results for global operations).

Usage:
    python scripts/compare_routes.py data.csv pipelines/example.py [--max-chunk-gb 0.01]
"""

from __future__ import annotations

import argparse
import decimal
import math
import sys
import tempfile
from collections import Counter
from pathlib import Path

import polars as pl

from ben_speed.__main__ import load_pipeline_module
from ben_speed.chunked import run_chunked
from ben_speed.classifier import Compatibility, classify
from ben_speed.memory import run_in_memory
from ben_speed.relational import run_relational
from ben_speed.resources import probe
from ben_speed.sources import FileSource, detect_format, to_polars


def normalize_value(value):
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, list):
        return tuple(normalize_value(x) for x in value)
    if isinstance(value, dict):
        return tuple(sorted((k, normalize_value(v)) for k, v in value.items()))
    return value


def rows_multiset(df: pl.DataFrame, columns: list[str]) -> Counter:
    return Counter(
        tuple(normalize_value(value) for value in row)
        for row in df.select(columns).iter_rows()
    )


def compare(reference: pl.DataFrame, other: pl.DataFrame, other_name: str) -> list[str]:
    report = []
    ref_cols = reference.columns
    other_cols = other.columns
    missing = [c for c in ref_cols if c not in other_cols]
    extra = [c for c in other_cols if c not in ref_cols]
    if missing:
        report.append(f"{other_name} missing columns vs in-memory: {missing}")
    if extra:
        report.append(f"{other_name} extra columns vs in-memory: {extra}")
    common = [c for c in ref_cols if c in other_cols]
    if not common:
        report.append(f"{other_name} shares no columns with in-memory")
        return report
    ref_rows = rows_multiset(reference, common)
    other_rows = rows_multiset(other, common)
    if ref_rows != other_rows:
        sample = list((ref_rows - other_rows).elements())[:3]
        sample2 = list((other_rows - ref_rows).elements())[:3]
        report.append(
            f"{other_name} row mismatch vs in-memory on columns {common}. "
            f"In-memory-only sample: {sample}; {other_name}-only sample: {sample2}"
        )
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("input")
    parser.add_argument("pipeline")
    parser.add_argument("--max-chunk-gb", type=float, default=0.01)
    args = parser.parse_args(argv)

    pipeline = load_pipeline_module(Path(args.pipeline)).PIPELINE
    source = FileSource(Path(args.input), detect_format(args.input))

    reference = to_polars(run_in_memory(source.scan().collect(), pipeline))
    outputs = {}
    with tempfile.TemporaryDirectory() as tmp:
        if classify(pipeline, source) == Compatibility.PUSHABLE:
            outputs["Relational"] = run_relational(
                source, pipeline, str(Path(tmp) / "compare.db")
            )
        else:
            print("Pipeline is not pushable; skipping relational route")
        outputs["Chunked"] = run_chunked(
            source, pipeline, probe(), args.max_chunk_gb, Path(tmp) / "chunks"
        )

    reports = []
    for name, output in outputs.items():
        reports.extend(compare(reference, output, name))

    if not reports:
        print("All routes match the in-memory output (normalized, order-insensitive).")
        return 0

    print("Mismatches vs in-memory output:")
    for report in reports:
        print(f"  - {report}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
