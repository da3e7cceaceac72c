"""
Currency normalisation to USD using the fixed USD_RATES table.
"""

import polars as pl

from payintel.contracts.schemas import USD_RATES


def to_usd(amount: float, currency: str) -> float:
    """Convert a local amount to USD. Unknown currencies are taken as USD."""
    return amount * USD_RATES.get(currency, 1.0)


def usd_amount_expr() -> pl.Expr:
    """Expression equivalent of to_usd over the amount/currency columns."""
    rate = pl.col("currency").replace_strict(
        dict(USD_RATES), default=1.0, return_dtype=pl.Float64
    )
    return pl.col("amount") * rate
