"""
Anomaly Detection for the Payment Approval Intelligence Engine.

Scores payment methods, processors, decline reasons, countries and hours of
day against their peer population (z-score over approval rate or revenue
impact) and emits severity-tagged insights. Recoverable revenue is a fixed
threshold rule rather than a z-score.

Every detector runs on each call; the findings are concatenated and sorted
by severity, then by revenue impact descending.
"""

import itertools
import logging
from typing import Optional, Sequence

import numpy as np
import polars as pl

from payintel.analytics.metrics import compute_all_metrics
from payintel.contracts.schemas import (
    COUNTRY_CRITICAL_Z,
    COUNTRY_MIN_VOLUME,
    COUNTRY_Z_THRESHOLD,
    HOUR_MIN_VOLUME,
    HOUR_WARNING_Z,
    HOUR_Z_THRESHOLD,
    METHOD_CRITICAL_Z,
    METHOD_MIN_VOLUME,
    METHOD_Z_THRESHOLD,
    PROCESSING_ERROR_REVENUE_THRESHOLD,
    PROCESSOR_CRITICAL_Z,
    PROCESSOR_MIN_VOLUME,
    PROCESSOR_WARNING_Z,
    PROCESSOR_Z_THRESHOLD,
    REASON_CRITICAL_Z,
    REASON_MIN_REVENUE_SHARE,
    REASON_Z_THRESHOLD,
    SEVERITY_ORDER,
    SOFT_DECLINE_REVENUE_THRESHOLD,
)

logger = logging.getLogger(__name__)


class InsightIdSequence:
    """Sequential insight ids (insight_1, insight_2, ...) for one detection run."""

    def __init__(self, prefix: str = "insight") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self._prefix}_{next(self._counter)}"


# ---------------------------------------------------------------------------
# Distribution statistics
# ---------------------------------------------------------------------------

def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two samples."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def z_score(value: float, avg: float, sd: float) -> float:
    if sd == 0:
        return 0.0
    return (value - avg) / sd


def _money(value: float) -> str:
    return f"${round(value):,}"


def _insight(ids: InsightIdSequence, type_: str, severity: str, title: str,
             description: str, impact: float, recommendation: str) -> dict:
    return {
        "id": ids(),
        "type": type_,
        "severity": severity,
        "title": title,
        "description": description,
        "impact": float(impact),
        "recommendation": recommendation,
    }


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

def detect_underperforming_methods(by_method: list[dict], global_rate: float,
                                   ids: InsightIdSequence) -> list[dict]:
    rates = [m["approval_rate"] for m in by_method]
    avg, sd = mean(rates), std_dev(rates)

    insights = []
    for m in by_method:
        z = z_score(m["approval_rate"], avg, sd)
        if z < METHOD_Z_THRESHOLD and m["total"] > METHOD_MIN_VOLUME:
            gap = global_rate - m["approval_rate"]
            insights.append(_insight(
                ids,
                "underperforming_method",
                "critical" if z < METHOD_CRITICAL_Z else "warning",
                f"{m['value'].upper()} has {m['approval_rate']:.1f}% approval rate (z={z:.2f})",
                f"{m['value']} payments have an approval rate {gap:.1f}% below the global "
                f"average of {global_rate:.1f}% (z-score: {z:.2f}, threshold: "
                f"{METHOD_Z_THRESHOLD}σ). This affects {m['declined']} transactions with "
                f"{_money(m['lost_revenue'])} in lost revenue.",
                m["lost_revenue"],
                f"Investigate {m['value']} decline reasons and consider retry logic or "
                f"offering alternative payment methods to affected customers.",
            ))
    return insights


def detect_processor_anomalies(by_processor: list[dict], global_rate: float,
                               ids: InsightIdSequence) -> list[dict]:
    """
    Flags the worst processor against the best one, then any other processor
    sitting below PROCESSOR_WARNING_Z.
    """
    if len(by_processor) < 2:
        return []

    rates = [p["approval_rate"] for p in by_processor]
    avg, sd = mean(rates), std_dev(rates)

    ranked = sorted(by_processor, key=lambda p: p["approval_rate"])
    worst, best = ranked[0], ranked[-1]
    gap = best["approval_rate"] - worst["approval_rate"]
    worst_z = z_score(worst["approval_rate"], avg, sd)

    insights = []
    if worst_z < PROCESSOR_Z_THRESHOLD and worst["total"] > PROCESSOR_MIN_VOLUME:
        impact = worst["lost_revenue"] * (gap / 100)
        insights.append(_insight(
            ids,
            "processor_anomaly",
            "critical" if worst_z < PROCESSOR_CRITICAL_Z else "warning",
            f"{worst['value']} underperforms by {gap:.1f}% vs {best['value']} (z={worst_z:.2f})",
            f"{worst['value']} has {worst['approval_rate']:.1f}% approval rate compared to "
            f"{best['value']}'s {best['approval_rate']:.1f}% (z-score: {worst_z:.2f}). "
            f"Routing traffic away from {worst['value']} could recover significant revenue.",
            impact,
            f"Consider routing {worst['value']} traffic to {best['value']} where possible. "
            f"Estimated monthly impact: {_money(impact)}/month.",
        ))

    for p in by_processor:
        if p["value"] == worst["value"]:
            continue
        z = z_score(p["approval_rate"], avg, sd)
        if z < PROCESSOR_WARNING_Z and p["total"] > PROCESSOR_MIN_VOLUME:
            p_gap = global_rate - p["approval_rate"]
            insights.append(_insight(
                ids,
                "processor_anomaly",
                "warning",
                f"{p['value']} approval rate is {p_gap:.1f}% below average (z={z:.2f})",
                f"{p['value']} processes {p['total']} transactions at "
                f"{p['approval_rate']:.1f}% approval rate (z-score: {z:.2f}, below "
                f"{PROCESSOR_WARNING_Z:g}σ threshold).",
                p["lost_revenue"] * (p_gap / 100),
                f"Review {p['value']} configuration and consider A/B testing traffic splits "
                f"with alternative processors.",
            ))
    return insights


def detect_high_impact_reasons(reasons: list[dict], kpis: dict,
                               ids: InsightIdSequence) -> list[dict]:
    total_revenue = kpis["total_revenue"] + kpis["lost_revenue"]
    impacts = [r["revenue_impact"] for r in reasons]
    avg, sd = mean(impacts), std_dev(impacts)

    insights = []
    for r in reasons:
        share = r["revenue_impact"] / total_revenue * 100 if total_revenue else 0.0
        z = z_score(r["revenue_impact"], avg, sd)
        if z > REASON_Z_THRESHOLD and share > REASON_MIN_REVENUE_SHARE:
            if r["is_recoverable"]:
                recommendation = (
                    f'Implement retry logic for "{r["label"]}" declines. Consider notifying '
                    f"customers to retry with alternative payment methods."
                )
            else:
                recommendation = (
                    f'Review fraud rules and card validation processes to reduce '
                    f'"{r["label"]}" declines.'
                )
            category = (r["category"] or "").replace("_", " ")
            recoverability = "potentially recoverable" if r["is_recoverable"] else "non-recoverable"
            insights.append(_insight(
                ids,
                "high_impact_reason",
                "critical" if z > REASON_CRITICAL_Z else "warning",
                f'"{r["label"]}" costs {_money(r["revenue_impact"])} '
                f"({share:.1f}% of revenue, z={z:.2f})",
                f'{r["count"]} transactions declined due to "{r["label"]}" ({category}). '
                f"Revenue impact is {z:.1f} standard deviations above the mean decline "
                f"reason impact. This is {recoverability}.",
                r["revenue_impact"],
                recommendation,
            ))
    return insights


def detect_geographic_outliers(by_country: list[dict], global_rate: float,
                               ids: InsightIdSequence) -> list[dict]:
    rates = [c["approval_rate"] for c in by_country]
    avg, sd = mean(rates), std_dev(rates)

    insights = []
    for c in by_country:
        z = z_score(c["approval_rate"], avg, sd)
        if z < COUNTRY_Z_THRESHOLD and c["total"] > COUNTRY_MIN_VOLUME:
            gap = global_rate - c["approval_rate"]
            insights.append(_insight(
                ids,
                "geographic_outlier",
                "critical" if z < COUNTRY_CRITICAL_Z else "warning",
                f"{c['value']} has {c['approval_rate']:.1f}% approval rate "
                f"(z={z:.2f}, {gap:.1f}% below avg)",
                f"{c['value']} processes {c['total']} transactions but only approves "
                f"{c['approval_rate']:.1f}% (z-score: {z:.2f}, below {COUNTRY_Z_THRESHOLD}σ). "
                f"Lost revenue: {_money(c['lost_revenue'])}.",
                c["lost_revenue"],
                f"Investigate {c['value']}-specific decline patterns. Consider local processor "
                f"optimization or alternative payment methods popular in {c['value']}.",
            ))
    return insights


def detect_recoverable_revenue(breakdown: dict, ids: InsightIdSequence) -> list[dict]:
    soft = breakdown["soft_decline_revenue"]
    processing = breakdown["processing_error_revenue"]
    total_lost = soft + breakdown["hard_decline_revenue"] + processing
    if total_lost == 0:
        return []

    recoverable_pct = (soft + processing) / total_lost * 100

    insights = []
    if soft > SOFT_DECLINE_REVENUE_THRESHOLD:
        insights.append(_insight(
            ids,
            "recoverable_revenue",
            "critical",
            f"{_money(soft)} in potentially recoverable revenue from soft declines",
            f"{recoverable_pct:.0f}% of all declined revenue ({_money(soft)}) comes from soft "
            f"declines (insufficient funds, velocity limits, 3DS failures) that could be "
            f"recovered through retry logic or customer communication.",
            soft,
            "Implement automatic retry for soft declines after 1-4 hours. Notify customers "
            "by email or SMS suggesting they retry or use an alternative payment method.",
        ))

    if processing > PROCESSING_ERROR_REVENUE_THRESHOLD:
        insights.append(_insight(
            ids,
            "recoverable_revenue",
            "warning",
            f"{_money(processing)} lost to processing errors",
            f"Processing errors (gateway timeouts, issuer unavailable) account for "
            f"{breakdown['processing_errors']} transactions. These are typically transient "
            f"and recoverable.",
            processing,
            "Implement automatic retry with exponential backoff for processing errors. "
            "Consider failover routing to alternative processors.",
        ))
    return insights


def detect_temporal_anomalies(hourly: list[dict], ids: InsightIdSequence) -> list[dict]:
    """One finding naming every hour below HOUR_Z_THRESHOLD, lowest rate first."""
    rates = [h["approval_rate"] for h in hourly]
    avg, sd = mean(rates), std_dev(rates)

    anomalous = [
        h for h in hourly
        if z_score(h["approval_rate"], avg, sd) < HOUR_Z_THRESHOLD and h["total"] > HOUR_MIN_VOLUME
    ]
    if not anomalous:
        return []

    # hours are listed lowest rate first
    anomalous.sort(key=lambda h: h["approval_rate"])
    worst = anomalous[0]
    worst_z = z_score(worst["approval_rate"], avg, sd)
    hours = ", ".join(f"{h['hour']}:00" for h in anomalous)

    return [_insight(
        ids,
        "temporal_anomaly",
        "warning" if worst_z < HOUR_WARNING_Z else "info",
        f"Anomalous approval rates at hours {hours} (below {HOUR_Z_THRESHOLD:.0f}σ)",
        f"Approval rates drop to {worst['approval_rate']:.1f}% at {worst['hour']}:00 UTC "
        f"(z-score: {worst_z:.2f}) compared to the mean of {avg:.1f}% (σ={sd:.2f}). "
        f"Values beyond 2 standard deviations indicate a significant deviation.",
        0.0,
        "Consider time-based routing to distribute load across processors during peak "
        "hours. Review velocity limit configurations.",
    )]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def sort_insights(insights: list[dict]) -> list[dict]:
    return sorted(insights, key=lambda i: (SEVERITY_ORDER[i["severity"]], -i["impact"]))


def detect_all_insights(df: pl.DataFrame, metrics: Optional[dict] = None) -> list[dict]:
    """
    Run every detector over `df` and return the findings ordered by severity,
    then impact. Pass `metrics` from compute_all_metrics to skip recomputing.
    """
    if metrics is None:
        metrics = compute_all_metrics(df)
    ids = InsightIdSequence()
    global_rate = metrics["kpis"]["approval_rate"]

    insights = [
        *detect_recoverable_revenue(metrics["recoverable_breakdown"], ids),
        *detect_underperforming_methods(metrics["by_payment_method"], global_rate, ids),
        *detect_processor_anomalies(metrics["by_processor"], global_rate, ids),
        *detect_high_impact_reasons(metrics["top_decline_reasons"], metrics["kpis"], ids),
        *detect_geographic_outliers(metrics["by_country"], global_rate, ids),
        *detect_temporal_anomalies(metrics["hourly_pattern"], ids),
    ]

    ranked = sort_insights(insights)
    logger.info("Detected %d insights", len(ranked))
    return ranked
