"""
Record filtering applied before the analytics core runs, and paging for listings.
"""

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

import polars as pl

from payintel.contracts.schemas import DEFAULT_PAGE_SIZE

DateBound = Union[date, datetime, str, None]


def _to_utc(value: DateBound, end_of_day: bool = False) -> Optional[datetime]:
    """
    Coerce a bound to an aware UTC datetime. Date-only upper bounds cover the
    whole day.
    """
    if value is None:
        return None
    if isinstance(value, str):
        date_only = len(value) == 10
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        date_only = not isinstance(value, datetime)
        if date_only:
            value = datetime.combine(value, time.min)

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if date_only and end_of_day:
        value += timedelta(days=1) - timedelta(microseconds=1)
    return value


def _selected(value: Optional[str]) -> bool:
    return value is not None and value != "all"


def filter_transactions(
    df: pl.DataFrame,
    country: Optional[str] = None,
    payment_method: Optional[str] = None,
    processor: Optional[str] = None,
    status: Optional[str] = None,
    date_from: DateBound = None,
    date_to: DateBound = None,
) -> pl.DataFrame:
    """
    Keep records matching every given criterion. None or "all" disables a
    criterion; date bounds are inclusive.
    """
    predicates = []
    for col, value in (
        ("country", country),
        ("payment_method", payment_method),
        ("processor", processor),
        ("status", status),
    ):
        if _selected(value):
            predicates.append(pl.col(col) == value)

    start = _to_utc(date_from)
    end = _to_utc(date_to, end_of_day=True)
    if start is not None:
        predicates.append(pl.col("timestamp") >= start)
    if end is not None:
        predicates.append(pl.col("timestamp") <= end)

    if not predicates:
        return df
    return df.filter(*predicates)


def paginate(df: pl.DataFrame, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    """
    One page of records (1-based) plus the paging totals. A page past the
    end has no data but still reports the totals.
    """
    if page < 1 or limit < 1:
        raise ValueError(f"page and limit must be positive, got page={page} limit={limit}")
    return {
        "data": df.slice((page - 1) * limit, limit).to_dicts(),
        "total": df.height,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(df.height / limit),
    }
