"""Run a pipeline definition against a dataset file."""

import argparse
import importlib.util
import logging
from pathlib import Path

from ben_speed.config import SpeedConfig
from ben_speed.exceptions import SpeedError


def load_pipeline_module(path: Path):
    """Load a pipeline definition module from path."""
    spec = importlib.util.spec_from_file_location("pipeline_def", path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Could not load {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def write_output(result, path: Path) -> None:
    """Write a Polars DataFrame, choosing the format from the suffix."""
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        result.write_parquet(path)
    elif suffix in (".json", ".ndjson", ".jsonl"):
        result.write_ndjson(path)
    else:
        result.write_csv(path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Transform a dataset with DuckDB, chunks, or in memory"
    )
    parser.add_argument("input", help="Dataset file (CSV, Parquet or NDJSON)")
    parser.add_argument(
        "pipeline",
        nargs="?",
        default="pipelines/example.py",
        help="Path to pipeline definition (default: pipelines/example.py)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show plan without running")
    parser.add_argument("--output", default=None, help="Write the result to this file")
    parser.add_argument("--db", default=None, help="DuckDB file path")
    parser.add_argument("--temp-dir", default=None, help="Chunk working directory")
    parser.add_argument("--memory-threshold-gb", type=float, default=None)
    parser.add_argument("--reserve-cores", type=int, default=None)
    parser.add_argument("--reserve-ram", type=float, default=None, help="GB of RAM to keep free")
    parser.add_argument("--max-chunk-gb", type=float, default=None)
    parser.add_argument(
        "--processes", action="store_true", help="Use worker processes instead of threads"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every decision")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Find pipeline file
    pipeline_path = Path(args.pipeline)
    if not pipeline_path.is_absolute() and not pipeline_path.exists():
        # Try relative to the package root
        pipeline_path = Path(__file__).parent.parent / args.pipeline

    if not pipeline_path.exists():
        print(f"Pipeline not found: {args.pipeline}")
        return 2

    pipeline_def = load_pipeline_module(pipeline_path)
    if not hasattr(pipeline_def, "PIPELINE"):
        print(f"{pipeline_path} does not define PIPELINE")
        return 2

    from ben_speed.dispatcher import execute, plan

    try:
        config = SpeedConfig.from_env().with_overrides(
            memory_threshold_gb=args.memory_threshold_gb,
            reserve_cores=args.reserve_cores,
            reserve_ram=args.reserve_ram,
            max_chunk_gb=args.max_chunk_gb,
            db_file=args.db,
            temp_dir=Path(args.temp_dir) if args.temp_dir else None,
        )
        decided = plan(
            args.input,
            pipeline_def.PIPELINE,
            config.memory_threshold_gb,
            config.reserve_cores,
            config.reserve_ram,
            config.max_chunk_gb,
            config.db_file,
            config.temp_dir,
        )
    except SpeedError as e:
        print(f"Error: {e}")
        return 1

    print(f"Pipeline: {pipeline_path.stem}")
    print(f"Input: {args.input} ({decided.kind}, {decided.size_gb:.3f} GB)")
    operations = getattr(decided.pipeline, "operations", None)
    if operations:
        for i, verb in enumerate(operations, 1):
            print(f"  {i}. {verb}")
    print(f"Verdict: {decided.verdict.value}")
    print(f"Budget: {decided.budget.available_cores} core(s), {decided.budget.available_ram_gb:.1f} GB")
    print(f"Route: {decided.route.value}")
    print()

    if args.dry_run:
        print("Dry run - not executing")
        return 0

    try:
        result = execute(decided, use_processes=args.processes)
    except SpeedError as e:
        print(f"Error: {e}")
        return 1

    print("Result:")
    print(result)

    if args.output:
        output_path = Path(args.output)
        write_output(result, output_path)
        print(f"Written to: {output_path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
