"""
Ingest transaction records, validate the record contract, derive decline
category and recoverability from the decline reason.
"""

import logging
from pathlib import Path
from typing import Iterable, Mapping, Union

import polars as pl

from payintel.contracts.schemas import (
    CAMEL_CASE_COLUMNS,
    DECLINE_CATEGORY_MAP,
    DERIVED_COLUMNS,
    RECOVERABLE_REASONS,
    STATUSES,
    TRANSACTION_SCHEMA,
    Dimension,
)

logger = logging.getLogger(__name__)

_READERS = {
    ".parquet": pl.read_parquet,
    ".csv": lambda path: pl.read_csv(path, try_parse_dates=True),
    ".json": pl.read_json,
}


def _normalise_columns(df: pl.DataFrame) -> pl.DataFrame:
    """Rename API field names to snake_case and drop columns that are always derived."""
    renames = {k: v for k, v in CAMEL_CASE_COLUMNS.items() if k in df.columns and v not in df.columns}
    df = df.rename(renames)
    return df.drop([c for c in DERIVED_COLUMNS if c in df.columns])


def _normalise_timestamp(df: pl.DataFrame) -> pl.DataFrame:
    """Parse string timestamps; naive datetimes are taken as UTC."""
    if "timestamp" not in df.columns:
        return df
    dtype = df["timestamp"].dtype
    if dtype == pl.Utf8:
        df = df.with_columns(pl.col("timestamp").str.to_datetime(time_unit="us", time_zone="UTC"))
    elif isinstance(dtype, pl.Datetime):
        if dtype.time_zone is None:
            ts = pl.col("timestamp").dt.replace_time_zone("UTC")
        else:
            ts = pl.col("timestamp").dt.convert_time_zone("UTC")
        df = df.with_columns(ts.dt.cast_time_unit("us"))
    return df


def _add_derived_columns(df: pl.DataFrame) -> pl.DataFrame:
    """Add decline_category and is_recoverable from the decline reason lookup tables."""
    reason = pl.col("decline_reason")
    category = reason.replace_strict(dict(DECLINE_CATEGORY_MAP), default=None, return_dtype=pl.Utf8)
    recoverable = (
        pl.when(reason.is_null())
        .then(pl.lit(None, dtype=pl.Boolean))
        .otherwise(reason.is_in(list(RECOVERABLE_REASONS)))
    )
    return df.with_columns(
        category.alias("decline_category"),
        recoverable.alias("is_recoverable"),
    )


def _validate_schema(df: pl.DataFrame) -> None:
    """Raise if df is missing required columns or has wrong types."""
    for col, dtype in TRANSACTION_SCHEMA.items():
        if col not in df.columns:
            raise ValueError(f"Missing required column: {col}")
        actual = df[col].dtype
        if isinstance(dtype, pl.Datetime):
            if not isinstance(actual, pl.Datetime) or actual.time_zone != "UTC":
                raise TypeError(f"Column '{col}': expected {dtype}, got {actual}")
        elif actual != dtype:
            raise TypeError(f"Column '{col}': expected {dtype}, got {actual}")


def _validate_dimensions(df: pl.DataFrame) -> None:
    """Reject records with a null value in any Dimension column."""
    for dimension in Dimension:
        nulls = df[dimension.value].null_count()
        if nulls:
            raise ValueError(f"{nulls} records have no {dimension.value}")


def _validate_declines(df: pl.DataFrame) -> None:
    """
    Declined records must carry a known decline reason; approved records
    must not carry one.
    """
    bad_status = df.filter(pl.col("status").is_null() | ~pl.col("status").is_in(list(STATUSES)))
    if bad_status.height:
        values = sorted(set(bad_status["status"].drop_nulls().to_list()))
        raise ValueError(f"{bad_status.height} records with invalid status: {values}")

    unknown = df.filter(
        pl.col("decline_reason").is_not_null()
        & ~pl.col("decline_reason").is_in(list(DECLINE_CATEGORY_MAP))
    )
    if unknown.height:
        values = sorted(set(unknown["decline_reason"].to_list()))
        raise ValueError(f"Unknown decline reasons: {values}")

    approved_with_reason = df.filter(
        (pl.col("status") == "approved") & pl.col("decline_reason").is_not_null()
    ).height
    if approved_with_reason:
        raise ValueError(f"{approved_with_reason} approved records carry a decline reason")

    declined_without_reason = df.filter(
        (pl.col("status") == "declined") & pl.col("decline_reason").is_null()
    ).height
    if declined_without_reason:
        raise ValueError(f"{declined_without_reason} declined records have no decline reason")


def prepare_transactions(df: pl.DataFrame) -> pl.DataFrame:
    """
    Normalise column names and timestamps, validate the record contract,
    derive decline columns and return the frame in TRANSACTION_SCHEMA order.
    """
    df = _normalise_timestamp(_normalise_columns(df))
    # all-null columns (e.g. decline_reason in an approved-only batch) arrive untyped
    df = df.with_columns([
        pl.col(c).cast(TRANSACTION_SCHEMA[c]) for c in df.columns
        if c in TRANSACTION_SCHEMA and df[c].dtype == pl.Null
    ])
    if "amount" in df.columns and df["amount"].dtype.is_integer():
        df = df.with_columns(pl.col("amount").cast(pl.Float64))

    missing = [c for c in TRANSACTION_SCHEMA if c not in df.columns and c not in DERIVED_COLUMNS]
    if missing:
        raise ValueError(f"Missing required column: {missing[0]}")

    _validate_dimensions(df)
    _validate_declines(df)
    df = _add_derived_columns(df)
    _validate_schema(df)
    return df.select(list(TRANSACTION_SCHEMA.keys()))


def as_frame(records: Union[pl.DataFrame, Iterable[Mapping]]) -> pl.DataFrame:
    """Build a validated transaction frame from a DataFrame or an iterable of dicts."""
    if isinstance(records, pl.DataFrame):
        return prepare_transactions(records)
    rows = [dict(r) for r in records]
    if not rows:
        return pl.DataFrame(schema=TRANSACTION_SCHEMA)
    return prepare_transactions(pl.DataFrame(rows, infer_schema_length=None))


def load_transactions(path: Union[str, Path]) -> pl.DataFrame:
    """Load and validate transactions from a .parquet, .csv or .json file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Transactions file not found at '{path}'.")
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported file type '{path.suffix}' (expected one of {sorted(_READERS)})")

    df = prepare_transactions(reader(path))
    logger.info("Loaded %d transactions from %s", df.height, path)
    return df
