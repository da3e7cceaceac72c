import pytest

from factories import batch, frame
from payintel.analytics.recommendations import generate_recommendations, rank_recommendations


def _titles(recs):
    return [r["title"] for r in recs]


def test_empty_frame_has_no_recommendations(empty_frame):
    assert generate_recommendations(empty_frame) == []


def test_processor_routing():
    df = frame(
        batch(100, 90, processor="AdyenLatam", decline_reason="expired_card"),
        batch(100, 70, processor="ConektaMX", decline_reason="expired_card"),
    )
    recs = generate_recommendations(df)
    assert len(recs) == 1
    rec = recs[0]
    assert rec["title"] == "Route ConektaMX traffic to AdyenLatam"
    assert rec["effort"] == "medium"
    assert rec["category"] == "Processor Optimization"
    # 300 lost * 20 point gap * 0.6
    assert rec["estimated_impact"] == pytest.approx(300.0 * 0.2 * 0.6)
    assert (rec["rank"], rec["id"]) == (1, "rec_1")


def test_processor_routing_needs_ten_point_gap():
    df = frame(
        batch(100, 90, processor="AdyenLatam", decline_reason="expired_card"),
        batch(100, 82, processor="ConektaMX", decline_reason="expired_card"),
    )
    assert generate_recommendations(df) == []


def test_soft_decline_retry_and_recovery_messaging():
    df = frame(batch(200, 50, decline_reason="insufficient_funds"))
    recs = generate_recommendations(df)
    assert _titles(recs) == [
        "Implement smart retry for soft declines",
        "Implement declined payment recovery emails",
    ]
    assert recs[0]["estimated_impact"] == pytest.approx(1500.0 * 0.25)
    assert recs[1]["estimated_impact"] == pytest.approx(1500.0 * 0.15)
    assert [r["effort"] for r in recs] == ["low", "low"]


def test_authentication_remediation():
    df = frame(batch(120, 0, decline_reason="3ds_failed"))
    recs = generate_recommendations(df)
    assert recs[0]["title"] == "Optimize 3DS authentication flow"
    assert recs[0]["effort"] == "high"
    assert recs[0]["estimated_impact"] == pytest.approx(1200.0 * 0.4)
    # 3DS failures are soft declines, so the retry action applies as well
    assert recs[1]["estimated_impact"] == pytest.approx(1200.0 * 0.25)


def test_processing_error_failover():
    df = frame(batch(60, 0, decline_reason="gateway_timeout"))
    recs = generate_recommendations(df)
    assert _titles(recs) == ["Add processor failover for gateway errors"]
    assert recs[0]["estimated_impact"] == pytest.approx(600.0 * 0.7)
    assert recs[0]["category"] == "Infrastructure"


def test_country_mix_uses_method_lost_revenue():
    df = frame(batch(100, 50, country="Mexico", payment_method="oxxo", decline_reason="expired_card"))
    recs = generate_recommendations(df)
    assert _titles(recs) == ["Optimize Mexico payment mix"]
    assert recs[0]["estimated_impact"] == pytest.approx(500.0 * 0.3)
    assert recs[0]["category"] == "Geographic Optimization"


def test_country_mix_falls_back_to_country_lost_revenue():
    df = frame(batch(100, 50, country="Mexico", payment_method="credit_card", decline_reason="expired_card"))
    recs = generate_recommendations(df)
    assert recs[0]["estimated_impact"] == pytest.approx(500.0 * 0.2)


def test_country_mix_not_triggered_above_threshold():
    df = frame(batch(100, 60, country="Mexico", payment_method="oxxo", decline_reason="expired_card"))
    assert generate_recommendations(df) == []


def test_local_method_promotion():
    df = frame(
        batch(100, 90, country="Brazil", payment_method="pix", decline_reason="expired_card"),
        batch(50, 30, country="Brazil", payment_method="credit_card", decline_reason="expired_card"),
    )
    recs = generate_recommendations(df)
    assert _titles(recs) == ["Promote PIX as preferred payment in Brazil"]
    # 20 declined cards * 30% conversion * 45 BRL * 0.18
    assert recs[0]["estimated_impact"] == pytest.approx(20 * 0.3 * 45 * 0.18)
    assert recs[0]["effort"] == "low"


def test_local_method_promotion_needs_high_approval():
    df = frame(
        batch(100, 80, country="Brazil", payment_method="pix", decline_reason="expired_card"),
        batch(50, 30, country="Brazil", payment_method="credit_card", decline_reason="expired_card"),
    )
    assert generate_recommendations(df) == []


def test_recommendations_ranked_by_impact():
    df = frame(
        batch(200, 50, processor="StripeConnect", decline_reason="insufficient_funds"),
        batch(100, 90, processor="AdyenLatam", decline_reason="expired_card"),
        batch(60, 0, processor="AdyenLatam", decline_reason="gateway_timeout"),
    )
    recs = generate_recommendations(df)
    assert len(recs) == 4
    impacts = [r["estimated_impact"] for r in recs]
    assert impacts == sorted(impacts, reverse=True)
    assert [r["rank"] for r in recs] == list(range(1, len(recs) + 1))
    assert [r["id"] for r in recs] == [f"rec_{i}" for i in range(1, len(recs) + 1)]


def test_rank_recommendations_reassigns_rank_and_id():
    ranked = rank_recommendations([
        {"id": "", "rank": 0, "estimated_impact": 5.0},
        {"id": "", "rank": 0, "estimated_impact": 50.0},
        {"id": "", "rank": 0, "estimated_impact": 20.0},
    ])
    assert [(r["rank"], r["id"], r["estimated_impact"]) for r in ranked] == [
        (1, "rec_1", 50.0),
        (2, "rec_2", 20.0),
        (3, "rec_3", 5.0),
    ]
