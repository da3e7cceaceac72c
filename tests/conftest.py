from datetime import timedelta

import pytest

from factories import BASE_TS, batch, frame
from payintel.pipeline.ingest import as_frame


@pytest.fixture()
def empty_frame():
    return as_frame([])


@pytest.fixture()
def mixed_frame():
    """Three processors, two countries, several decline reasons and hours."""
    return frame(
        batch(120, 96, processor="StripeConnect", country="Brazil", currency="BRL",
              payment_method="pix", decline_reason="insufficient_funds"),
        batch(150, 60, processor="PayUBrasil", country="Brazil", currency="BRL",
              payment_method="credit_card", decline_reason="3ds_failed",
              timestamp=BASE_TS + timedelta(hours=3)),
        batch(80, 70, processor="ConektaMX", country="Mexico", currency="MXN",
              payment_method="oxxo", decline_reason="gateway_timeout",
              timestamp=BASE_TS + timedelta(days=1)),
        batch(40, 10, processor="ConektaMX", country="Mexico", currency="USD",
              payment_method="credit_card", decline_reason="stolen_card", amount=250.0,
              is_returning_customer=True),
    )
