"""
Data contracts for the Payment Approval Intelligence Engine.

These schemas and lookup tables are the single source of truth shared by
ingestion, the analytics core and the CLI.

Layer flow: raw transactions -> metrics -> insights / recommendations -> report
"""

from enum import Enum
from types import MappingProxyType

import polars as pl


# =============================================================================
# LAYER 1: Transactions (ingest -> analytics core)
# =============================================================================

TRANSACTION_SCHEMA = {
    "transaction_id": pl.Utf8,
    "timestamp": pl.Datetime("us", "UTC"),
    "merchant_id": pl.Utf8,
    "customer_id": pl.Utf8,
    "amount": pl.Float64,              # Local currency
    "currency": pl.Utf8,               # BRL, MXN, IDR, USD
    "country": pl.Utf8,                # Brazil, Mexico, Indonesia, US
    "payment_method": pl.Utf8,         # credit_card, pix, oxxo, gopay
    "processor": pl.Utf8,              # StripeConnect, AdyenLatam, PayUBrasil, ConektaMX
    "status": pl.Utf8,                 # approved, declined
    "decline_reason": pl.Utf8,         # null if approved
    "decline_category": pl.Utf8,       # derived from decline_reason
    "is_recoverable": pl.Boolean,      # derived from decline_reason
    "is_returning_customer": pl.Boolean,
}

# Columns derived at ingestion; never read from the input file
DERIVED_COLUMNS = ("decline_category", "is_recoverable")

# Field names used by the dashboard JSON API
CAMEL_CASE_COLUMNS = {
    "id": "transaction_id",
    "merchantId": "merchant_id",
    "customerId": "customer_id",
    "paymentMethod": "payment_method",
    "declineReason": "decline_reason",
    "declineCategory": "decline_category",
    "isRecoverable": "is_recoverable",
    "isReturningCustomer": "is_returning_customer",
}

STATUSES = ("approved", "declined")


class Dimension(str, Enum):
    """Transaction columns that metrics can be sliced by."""

    PAYMENT_METHOD = "payment_method"
    COUNTRY = "country"
    PROCESSOR = "processor"
    CURRENCY = "currency"


# =============================================================================
# LAYER 2: Analytics output (insights / recommendations -> report)
# =============================================================================

INSIGHT_SCHEMA = {
    "id": pl.Utf8,                     # insight_1, insight_2, ... per run
    "type": pl.Utf8,                   # one of INSIGHT_TYPES
    "severity": pl.Utf8,               # critical, warning, info
    "title": pl.Utf8,
    "description": pl.Utf8,
    "impact": pl.Float64,              # USD, 0 for informational findings
    "recommendation": pl.Utf8,
}

RECOMMENDATION_SCHEMA = {
    "id": pl.Utf8,                     # rec_<rank>
    "rank": pl.Int32,                  # 1 = highest impact
    "title": pl.Utf8,
    "description": pl.Utf8,
    "estimated_impact": pl.Float64,    # USD per month
    "effort": pl.Utf8,                 # low, medium, high
    "category": pl.Utf8,
}

INSIGHT_TYPES = (
    "underperforming_method",
    "processor_anomaly",
    "high_impact_reason",
    "geographic_outlier",
    "recoverable_revenue",
    "temporal_anomaly",
)

SEVERITY_ORDER = MappingProxyType({"critical": 0, "warning": 1, "info": 2})

DEFAULT_OUTPUT_DIR = "data/analytics"
DEFAULT_PAGE_SIZE = 50                 # transactions listing
REPORT_FILENAME = "report.json"
INSIGHTS_FILENAME = "insights.parquet"
RECOMMENDATIONS_FILENAME = "recommendations.parquet"


# =============================================================================
# CONSTANTS
# =============================================================================

USD_RATES = MappingProxyType({
    "BRL": 0.18,
    "MXN": 0.055,
    "IDR": 0.000062,
    "USD": 1.0,
})

DECLINE_REASON_LABELS = MappingProxyType({
    "insufficient_funds": "Insufficient Funds",
    "do_not_honor": "Do Not Honor",
    "expired_card": "Expired Card",
    "fraud_suspected": "Fraud Suspected",
    "3ds_failed": "3DS Authentication Failed",
    "gateway_timeout": "Gateway Timeout",
    "stolen_card": "Stolen Card",
    "issuer_unavailable": "Issuer Unavailable",
    "invalid_card": "Invalid Card",
    "velocity_limit": "Velocity Limit Exceeded",
})

DECLINE_CATEGORY_MAP = MappingProxyType({
    "insufficient_funds": "soft_decline",
    "do_not_honor": "soft_decline",
    "expired_card": "hard_decline",
    "fraud_suspected": "hard_decline",
    "3ds_failed": "soft_decline",
    "gateway_timeout": "processing_error",
    "stolen_card": "hard_decline",
    "issuer_unavailable": "processing_error",
    "invalid_card": "hard_decline",
    "velocity_limit": "soft_decline",
})

RECOVERABLE_REASONS = frozenset({
    "insufficient_funds",
    "do_not_honor",
    "3ds_failed",
    "gateway_timeout",
    "issuer_unavailable",
    "velocity_limit",
})

TOP_DECLINE_REASONS_LIMIT = 10

# Detector thresholds (approval rates are percentages, revenue is USD)
METHOD_Z_THRESHOLD = -1.5
METHOD_CRITICAL_Z = -2.0
METHOD_MIN_VOLUME = 50

PROCESSOR_Z_THRESHOLD = -1.5
PROCESSOR_CRITICAL_Z = -2.0
PROCESSOR_WARNING_Z = -1.0
PROCESSOR_MIN_VOLUME = 100

REASON_Z_THRESHOLD = 1.0
REASON_CRITICAL_Z = 2.0
REASON_MIN_REVENUE_SHARE = 2.0

COUNTRY_Z_THRESHOLD = -1.5
COUNTRY_CRITICAL_Z = -2.0
COUNTRY_MIN_VOLUME = 100

SOFT_DECLINE_REVENUE_THRESHOLD = 1000.0
PROCESSING_ERROR_REVENUE_THRESHOLD = 500.0

HOUR_Z_THRESHOLD = -2.0
HOUR_WARNING_Z = -3.0
HOUR_MIN_VOLUME = 50

# Recommendation heuristics: assumed recovery rates, not fitted values
ROUTING_MIN_GAP = 10.0
ROUTING_RECOVERY_RATE = 0.6
RETRY_RECOVERY_RATE = 0.25
MIX_METHOD_RECOVERY_RATE = 0.3
MIX_COUNTRY_RECOVERY_RATE = 0.2
PROMOTION_CONVERSION_RATE = 0.3
AUTHENTICATION_RECOVERY_RATE = 0.4
RECOVERY_MESSAGING_RATE = 0.15
FAILOVER_RECOVERY_RATE = 0.7
REASON_REVENUE_THRESHOLD = 1000.0

MIX_OPTIMIZATION_TARGET = MappingProxyType({
    "country": "Mexico",
    "method": "oxxo",
    "max_approval_rate": 55.0,
})

METHOD_PROMOTION_TARGET = MappingProxyType({
    "country": "Brazil",
    "local_method": "pix",
    "global_method": "credit_card",
    "min_local_approval_rate": 85.0,
    "avg_ticket": 45.0,
    "currency": "BRL",
})

AUTHENTICATION_REASON = "3ds_failed"
RECOVERY_MESSAGING_REASON = "insufficient_funds"
