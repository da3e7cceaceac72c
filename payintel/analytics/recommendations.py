"""
Recommendation generation for the Payment Approval Intelligence Engine.

Evaluates a fixed catalogue of remediation actions against the computed
metrics. Each action has a gate and an impact estimate built from an assumed
recovery rate (see the *_RATE constants in contracts.schemas). The applicable
actions are ranked by estimated monthly USD impact.
"""

import logging
from typing import Optional

import polars as pl

from payintel.analytics.currency import to_usd
from payintel.analytics.metrics import compute_all_metrics
from payintel.contracts.schemas import (
    AUTHENTICATION_REASON,
    AUTHENTICATION_RECOVERY_RATE,
    FAILOVER_RECOVERY_RATE,
    METHOD_PROMOTION_TARGET,
    MIX_COUNTRY_RECOVERY_RATE,
    MIX_METHOD_RECOVERY_RATE,
    MIX_OPTIMIZATION_TARGET,
    PROCESSING_ERROR_REVENUE_THRESHOLD,
    PROMOTION_CONVERSION_RATE,
    REASON_REVENUE_THRESHOLD,
    RECOVERY_MESSAGING_RATE,
    RECOVERY_MESSAGING_REASON,
    RETRY_RECOVERY_RATE,
    ROUTING_MIN_GAP,
    ROUTING_RECOVERY_RATE,
    SOFT_DECLINE_REVENUE_THRESHOLD,
)

logger = logging.getLogger(__name__)


def _find(rows: list[dict], key: str, value: str) -> Optional[dict]:
    return next((r for r in rows if r[key] == value), None)


def _recommendation(title: str, description: str, impact: float, effort: str, category: str) -> dict:
    # id and rank are assigned after ranking
    return {
        "id": "",
        "rank": 0,
        "title": title,
        "description": description,
        "estimated_impact": float(impact),
        "effort": effort,
        "category": category,
    }


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

def _processor_routing(by_processor: list[dict]) -> Optional[dict]:
    if len(by_processor) < 2:
        return None
    ranked = sorted(by_processor, key=lambda p: p["approval_rate"], reverse=True)
    best, worst = ranked[0], ranked[-1]
    gap = best["approval_rate"] - worst["approval_rate"]
    if gap <= ROUTING_MIN_GAP:
        return None
    return _recommendation(
        f"Route {worst['value']} traffic to {best['value']}",
        f"{worst['value']} has {worst['approval_rate']:.1f}% approval vs {best['value']}'s "
        f"{best['approval_rate']:.1f}%. Gradually shifting traffic could recover {gap:.0f}% "
        f"of declines. Start with a 20% traffic split test.",
        worst["lost_revenue"] * (gap / 100) * ROUTING_RECOVERY_RATE,
        "medium",
        "Processor Optimization",
    )


def _soft_decline_retry(breakdown: dict) -> Optional[dict]:
    revenue = breakdown["soft_decline_revenue"]
    if revenue <= SOFT_DECLINE_REVENUE_THRESHOLD:
        return None
    return _recommendation(
        "Implement smart retry for soft declines",
        f"{breakdown['soft_declines']} soft declines (${round(revenue):,} lost) could be "
        f'partially recovered. Retry "insufficient_funds" and "do_not_honor" declines '
        f"automatically after 1-4 hours. Industry recovery rate: 20-30%.",
        revenue * RETRY_RECOVERY_RATE,
        "low",
        "Retry Logic",
    )


def _country_mix(by_country: list[dict], by_method: list[dict]) -> Optional[dict]:
    country = _find(by_country, "value", MIX_OPTIMIZATION_TARGET["country"])
    if country is None or country["approval_rate"] >= MIX_OPTIMIZATION_TARGET["max_approval_rate"]:
        return None
    method = _find(by_method, "value", MIX_OPTIMIZATION_TARGET["method"])
    if method is not None:
        impact = method["lost_revenue"] * MIX_METHOD_RECOVERY_RATE
    else:
        impact = country["lost_revenue"] * MIX_COUNTRY_RECOVERY_RATE
    return _recommendation(
        f"Optimize {country['value']} payment mix",
        f"{country['value']} has {country['approval_rate']:.1f}% approval rate. "
        f"{MIX_OPTIMIZATION_TARGET['method'].upper()} payments show high decline rates from "
        f"authentication failures and timeouts. Promote card payments through local "
        f"acquirers or add a bank transfer alternative.",
        impact,
        "medium",
        "Geographic Optimization",
    )


def _method_promotion(df: pl.DataFrame, by_country: list[dict], by_method: list[dict]) -> Optional[dict]:
    target = METHOD_PROMOTION_TARGET
    local = _find(by_method, "value", target["local_method"])
    country = _find(by_country, "value", target["country"])
    if local is None or country is None or local["approval_rate"] <= target["min_local_approval_rate"]:
        return None

    global_declines = df.filter(
        (pl.col("country") == target["country"])
        & (pl.col("payment_method") == target["global_method"])
        & (pl.col("status") == "declined")
    ).height
    converted = global_declines * PROMOTION_CONVERSION_RATE
    return _recommendation(
        f"Promote {target['local_method'].upper()} as preferred payment in {target['country']}",
        f"{target['local_method'].upper()} has {local['approval_rate']:.1f}% approval rate vs "
        f"{target['global_method'].replace('_', ' ')} payments. Promoting it at checkout for "
        f"{target['country']} customers could convert {round(converted)} declined "
        f"{target['global_method'].replace('_', ' ')} transactions.",
        converted * to_usd(target["avg_ticket"], target["currency"]),
        "low",
        "Payment Method Optimization",
    )


def _authentication_remediation(reasons: list[dict]) -> Optional[dict]:
    reason = _find(reasons, "reason", AUTHENTICATION_REASON)
    if reason is None or reason["revenue_impact"] <= REASON_REVENUE_THRESHOLD:
        return None
    return _recommendation(
        "Optimize 3DS authentication flow",
        f"3DS failures account for {reason['count']} declines "
        f"(${round(reason['revenue_impact']):,} lost). Review the challenge flow UX, use "
        f"frictionless 3DS 2.0 where possible and apply exemptions for low-risk transactions.",
        reason["revenue_impact"] * AUTHENTICATION_RECOVERY_RATE,
        "high",
        "Authentication Optimization",
    )


def _recovery_messaging(reasons: list[dict]) -> Optional[dict]:
    reason = _find(reasons, "reason", RECOVERY_MESSAGING_REASON)
    if reason is None or reason["revenue_impact"] <= REASON_REVENUE_THRESHOLD:
        return None
    return _recommendation(
        "Implement declined payment recovery emails",
        f'"{reason["label"]}" caused {reason["count"]} declines. Send automated emails '
        f"within 24 hours inviting customers to retry, with alternative payment method "
        f"suggestions.",
        reason["revenue_impact"] * RECOVERY_MESSAGING_RATE,
        "low",
        "Customer Recovery",
    )


def _processing_failover(breakdown: dict) -> Optional[dict]:
    revenue = breakdown["processing_error_revenue"]
    if revenue <= PROCESSING_ERROR_REVENUE_THRESHOLD:
        return None
    return _recommendation(
        "Add processor failover for gateway errors",
        f"{breakdown['processing_errors']} transactions failed due to processing errors "
        f"(${round(revenue):,}). Fail over to a secondary processor automatically when "
        f"gateway timeouts or issuer unavailability are detected.",
        revenue * FAILOVER_RECOVERY_RATE,
        "medium",
        "Infrastructure",
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def rank_recommendations(recommendations: list[dict]) -> list[dict]:
    """Sort by estimated impact descending and assign rank / id from 1."""
    ranked = sorted(recommendations, key=lambda r: r["estimated_impact"], reverse=True)
    for rank, rec in enumerate(ranked, start=1):
        rec["rank"] = rank
        rec["id"] = f"rec_{rank}"
    return ranked


def generate_recommendations(df: pl.DataFrame, metrics: Optional[dict] = None) -> list[dict]:
    """
    Evaluate the remediation catalogue against `df` and return the applicable
    actions, highest estimated impact first.
    """
    if metrics is None:
        metrics = compute_all_metrics(df)

    candidates = [
        _processor_routing(metrics["by_processor"]),
        _soft_decline_retry(metrics["recoverable_breakdown"]),
        _country_mix(metrics["by_country"], metrics["by_payment_method"]),
        _method_promotion(df, metrics["by_country"], metrics["by_payment_method"]),
        _authentication_remediation(metrics["top_decline_reasons"]),
        _recovery_messaging(metrics["top_decline_reasons"]),
        _processing_failover(metrics["recoverable_breakdown"]),
    ]

    ranked = rank_recommendations([c for c in candidates if c is not None])
    logger.info("Generated %d recommendations", len(ranked))
    return ranked
