from datetime import date, datetime, timedelta, timezone

import pytest

from factories import BASE_TS, batch, frame
from payintel.pipeline.filters import filter_transactions, paginate


def test_no_filters_returns_input(mixed_frame):
    assert filter_transactions(mixed_frame).equals(mixed_frame)


def test_all_disables_a_filter(mixed_frame):
    assert filter_transactions(mixed_frame, country="all", status="all").height == mixed_frame.height


def test_dimension_filters_combine(mixed_frame):
    df = filter_transactions(mixed_frame, country="Mexico", payment_method="credit_card")
    assert df.height == 40
    assert set(df["processor"].to_list()) == {"ConektaMX"}


def test_status_filter(mixed_frame):
    df = filter_transactions(mixed_frame, status="declined")
    assert df.height == 154
    assert set(df["status"].to_list()) == {"declined"}


def test_date_only_upper_bound_covers_whole_day():
    df = frame(
        batch(2, 2, timestamp=BASE_TS),
        batch(3, 3, timestamp=BASE_TS.replace(hour=23, minute=59)),
        batch(4, 4, timestamp=BASE_TS + timedelta(days=1)),
    )
    assert filter_transactions(df, date_to="2026-01-05").height == 5
    assert filter_transactions(df, date_to=date(2026, 1, 5)).height == 5
    assert filter_transactions(df, date_from="2026-01-06").height == 4


def test_timestamp_bounds_are_inclusive():
    df = frame(
        batch(2, 2, timestamp=BASE_TS),
        batch(3, 3, timestamp=BASE_TS + timedelta(hours=1)),
    )
    assert filter_transactions(df, date_from=BASE_TS, date_to=BASE_TS).height == 2
    naive_end = datetime(2026, 1, 5, 13, 0)
    assert filter_transactions(df, date_to=naive_end).height == 5
    assert filter_transactions(df, date_from="2026-01-05T12:30:00+00:00").height == 3
    assert filter_transactions(df, date_to=BASE_TS.astimezone(timezone(timedelta(hours=-5)))).height == 2


def test_paginate_slices_records(mixed_frame):
    listing = paginate(mixed_frame, page=2, limit=50)
    assert (listing["total"], listing["page"], listing["limit"], listing["total_pages"]) == (390, 2, 50, 8)
    assert len(listing["data"]) == 50
    assert listing["data"][0]["transaction_id"] == mixed_frame["transaction_id"][50]


def test_paginate_last_and_past_end_pages(mixed_frame):
    assert len(paginate(mixed_frame, page=8, limit=50)["data"]) == 40
    past_end = paginate(mixed_frame, page=9, limit=50)
    assert past_end["data"] == []
    assert past_end["total_pages"] == 8


def test_paginate_empty_frame(empty_frame):
    assert paginate(empty_frame) == {"data": [], "total": 0, "page": 1, "limit": 50, "total_pages": 0}


@pytest.mark.parametrize("page, limit", [(0, 50), (1, 0)])
def test_paginate_rejects_non_positive_arguments(mixed_frame, page, limit):
    with pytest.raises(ValueError, match="must be positive"):
        paginate(mixed_frame, page=page, limit=limit)
