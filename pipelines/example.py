"""
Example pipeline - high value sales with a tax column and tidy names.

Every step has a DuckDB form, so file inputs are streamed into DuckDB.
Swap in PIPELINE_NOT_PUSHABLE to see the chunked route instead.

Run with:
    python -m ben_speed data/sales.csv pipelines/example.py --dry-run
"""

from ben_speed import Filter, MapBatches, Pipeline, StringTransform, WithColumn

PIPELINE = Pipeline([
    # 1. Filter - keep sales of $1,000 and above
    Filter("sale_price_usd", 1000, ">="),
    # 2. WithColumn - add tax-inclusive price
    WithColumn("price_with_tax", "sale_price_usd * 1.2"),
    # 3. StringTransform - normalize country names
    StringTransform("buyer_country", "upper"),
])


def add_price_band(df):
    """Bucket prices in Python (no SQL form)."""
    return df.with_columns(
        (df["sale_price_usd"] // 10_000).alias("price_band")
    )


PIPELINE_NOT_PUSHABLE = PIPELINE.then(MapBatches(add_price_band))
