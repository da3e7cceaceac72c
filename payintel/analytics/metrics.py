"""
Metrics aggregation for the Payment Approval Intelligence Engine.

Computes headline KPIs and per-dimension, per-reason, per-day, per-hour and
per-cohort breakdowns from a transaction frame. Every function is total over
an empty frame: rates with an empty denominator are reported as 0.
"""

import logging
import math
from typing import Optional

import polars as pl

from payintel.analytics.currency import usd_amount_expr
from payintel.contracts.schemas import (
    DECLINE_CATEGORY_MAP,
    DECLINE_REASON_LABELS,
    RECOVERABLE_REASONS,
    TOP_DECLINE_REASONS_LIMIT,
    Dimension,
)

logger = logging.getLogger(__name__)

_APPROVED = pl.col("status") == "approved"
_DECLINED = pl.col("status") == "declined"


def _usd_sum(mask: pl.Expr) -> pl.Expr:
    return pl.when(mask).then(usd_amount_expr()).otherwise(0.0).sum()


def _count(mask: pl.Expr) -> pl.Expr:
    return mask.fill_null(False).cast(pl.Int64).sum()


def _rate(approved: int, total: int, ndigits: Optional[int] = None) -> float:
    """
    Approval rate as a percentage, 0.0 when total is zero. With `ndigits`,
    halves round up (1 of 32 -> 3.13), not to even as round() does.
    """
    if total == 0:
        return 0.0
    if ndigits is None:
        return approved / total * 100
    scale = 10 ** ndigits
    return math.floor(approved / total * (100 * scale) + 0.5) / scale


# ---------------------------------------------------------------------------
# KPIs
# ---------------------------------------------------------------------------

def compute_kpis(df: pl.DataFrame) -> dict:
    recoverable = _DECLINED & pl.col("is_recoverable").fill_null(False)
    row = df.select(
        pl.len().cast(pl.Int64).alias("total_transactions"),
        _count(_APPROVED).alias("approved"),
        _usd_sum(_APPROVED).alias("total_revenue"),
        _usd_sum(_DECLINED).alias("lost_revenue"),
        _usd_sum(recoverable).alias("recoverable_revenue"),
    ).row(0, named=True)

    total = row["total_transactions"]
    approved = row["approved"] or 0
    return {
        "total_transactions": total,
        "approved": approved,
        "declined": total - approved,
        "approval_rate": _rate(approved, total),
        "total_revenue": float(row["total_revenue"] or 0.0),
        "lost_revenue": float(row["lost_revenue"] or 0.0),
        "recoverable_revenue": float(row["recoverable_revenue"] or 0.0),
    }


# ---------------------------------------------------------------------------
# Breakdowns
# ---------------------------------------------------------------------------

def aggregate_by_dimension(df: pl.DataFrame, dimension: Dimension | str) -> list[dict]:
    """
    One row per distinct value of `dimension`, ordered by volume descending.
    Groups keep discovery order on ties.
    """
    col = Dimension(dimension).value
    grouped = (
        df.group_by(col, maintain_order=True)
        .agg(
            pl.len().cast(pl.Int64).alias("total"),
            _count(_APPROVED).alias("approved"),
            _usd_sum(_APPROVED).alias("revenue"),
            _usd_sum(_DECLINED).alias("lost_revenue"),
        )
        .sort("total", descending=True, maintain_order=True)
    )

    metrics = []
    for row in grouped.iter_rows(named=True):
        metrics.append({
            "dimension": col,
            "value": row[col],
            "total": row["total"],
            "approved": row["approved"],
            "declined": row["total"] - row["approved"],
            "approval_rate": _rate(row["approved"], row["total"]),
            "revenue": row["revenue"],
            "lost_revenue": row["lost_revenue"],
        })
    logger.debug("Aggregated %d records into %d %s groups", df.height, len(metrics), col)
    return metrics


def top_decline_reasons(df: pl.DataFrame, limit: int = TOP_DECLINE_REASONS_LIMIT) -> list[dict]:
    """
    Most frequent decline reasons. Percentages are relative to the declined
    records that carry a reason, not to the whole frame.
    """
    declined = df.filter(_DECLINED & pl.col("decline_reason").is_not_null())
    total_declined = declined.height

    grouped = (
        declined.group_by("decline_reason", maintain_order=True)
        .agg(
            pl.len().cast(pl.Int64).alias("count"),
            usd_amount_expr().sum().alias("revenue_impact"),
        )
        .sort("count", descending=True, maintain_order=True)
        .head(limit)
    )

    return [
        {
            "reason": row["decline_reason"],
            "label": DECLINE_REASON_LABELS.get(row["decline_reason"], row["decline_reason"]),
            "count": row["count"],
            "percentage": row["count"] / total_declined * 100 if total_declined else 0.0,
            "revenue_impact": row["revenue_impact"],
            "category": DECLINE_CATEGORY_MAP.get(row["decline_reason"]),
            "is_recoverable": row["decline_reason"] in RECOVERABLE_REASONS,
        }
        for row in grouped.iter_rows(named=True)
    ]


def time_series(df: pl.DataFrame) -> list[dict]:
    """Daily volume and approval rate, keyed by UTC calendar date."""
    daily = (
        df.with_columns(pl.col("timestamp").dt.strftime("%Y-%m-%d").alias("date"))
        .group_by("date")
        .agg(
            pl.len().cast(pl.Int64).alias("total"),
            _count(_APPROVED).alias("approved"),
            _usd_sum(_APPROVED).alias("revenue"),
        )
        .sort("date")
    )

    return [
        {
            "date": row["date"],
            "total": row["total"],
            "approved": row["approved"],
            "declined": row["total"] - row["approved"],
            "approval_rate": _rate(row["approved"], row["total"], 2),
            "revenue": row["revenue"],
        }
        for row in daily.iter_rows(named=True)
    ]


def hourly_pattern(df: pl.DataFrame) -> list[dict]:
    """Volume and approval rate per UTC hour. Always 24 rows, 0..23."""
    hourly = (
        df.group_by(pl.col("timestamp").dt.hour().cast(pl.Int64).alias("hour"))
        .agg(
            pl.len().cast(pl.Int64).alias("total"),
            _count(_APPROVED).alias("approved"),
        )
    )
    by_hour = {row["hour"]: row for row in hourly.iter_rows(named=True)}

    metrics = []
    for hour in range(24):
        row = by_hour.get(hour, {"total": 0, "approved": 0})
        metrics.append({
            "hour": hour,
            "total": row["total"],
            "approved": row["approved"],
            "approval_rate": _rate(row["approved"], row["total"], 2),
        })
    return metrics


def recoverable_breakdown(df: pl.DataFrame) -> dict:
    """Declined volume and lost USD revenue per decline category."""
    soft = _DECLINED & (pl.col("decline_category") == "soft_decline")
    hard = _DECLINED & (pl.col("decline_category") == "hard_decline")
    processing = _DECLINED & (pl.col("decline_category") == "processing_error")

    row = df.select(
        _count(soft).alias("soft_declines"),
        _count(hard).alias("hard_declines"),
        _count(processing).alias("processing_errors"),
        _usd_sum(soft.fill_null(False)).alias("soft_decline_revenue"),
        _usd_sum(hard.fill_null(False)).alias("hard_decline_revenue"),
        _usd_sum(processing.fill_null(False)).alias("processing_error_revenue"),
    ).row(0, named=True)

    return {
        "soft_declines": row["soft_declines"] or 0,
        "hard_declines": row["hard_declines"] or 0,
        "processing_errors": row["processing_errors"] or 0,
        "soft_decline_revenue": float(row["soft_decline_revenue"] or 0.0),
        "hard_decline_revenue": float(row["hard_decline_revenue"] or 0.0),
        "processing_error_revenue": float(row["processing_error_revenue"] or 0.0),
    }


def cohort_analysis(df: pl.DataFrame) -> dict:
    """New vs returning customers: volume, approvals and approval rate."""
    returning = pl.col("is_returning_customer").fill_null(False)
    row = df.select(
        _count(~returning).alias("new_total"),
        _count(~returning & _APPROVED).alias("new_approved"),
        _count(returning).alias("returning_total"),
        _count(returning & _APPROVED).alias("returning_approved"),
    ).row(0, named=True)

    cohorts = {}
    for key, prefix in (("new_customers", "new"), ("returning_customers", "returning")):
        total = row[f"{prefix}_total"] or 0
        approved = row[f"{prefix}_approved"] or 0
        cohorts[key] = {
            "total": total,
            "approved": approved,
            "approval_rate": _rate(approved, total, 2),
        }
    return cohorts


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------

def compute_all_metrics(df: pl.DataFrame) -> dict:
    """Every breakdown in one structure; the entry point for downstream stages."""
    metrics = {
        "kpis": compute_kpis(df),
        "by_payment_method": aggregate_by_dimension(df, Dimension.PAYMENT_METHOD),
        "by_country": aggregate_by_dimension(df, Dimension.COUNTRY),
        "by_processor": aggregate_by_dimension(df, Dimension.PROCESSOR),
        "by_currency": aggregate_by_dimension(df, Dimension.CURRENCY),
        "top_decline_reasons": top_decline_reasons(df),
        "time_series": time_series(df),
        "hourly_pattern": hourly_pattern(df),
        "recoverable_breakdown": recoverable_breakdown(df),
        "cohort": cohort_analysis(df),
    }
    kpis = metrics["kpis"]
    logger.info(
        "Computed metrics for %d transactions (approval rate %.1f%%)",
        kpis["total_transactions"], kpis["approval_rate"],
    )
    return metrics
