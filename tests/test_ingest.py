from datetime import datetime

import polars as pl
import pytest

from factories import batch, frame, make_txn
from payintel.contracts.schemas import TRANSACTION_SCHEMA
from payintel.pipeline.ingest import as_frame, load_transactions


def test_frame_follows_schema(mixed_frame):
    assert mixed_frame.columns == list(TRANSACTION_SCHEMA)
    assert mixed_frame.schema["timestamp"] == pl.Datetime("us", "UTC")


def test_empty_input_gives_empty_schema_frame():
    df = as_frame([])
    assert df.height == 0
    assert df.columns == list(TRANSACTION_SCHEMA)


def test_decline_columns_are_derived():
    df = as_frame([
        make_txn("approved"),
        make_txn("declined", decline_reason="insufficient_funds"),
        make_txn("declined", decline_reason="stolen_card"),
        make_txn("declined", decline_reason="issuer_unavailable"),
    ])
    assert df["decline_category"].to_list() == [None, "soft_decline", "hard_decline", "processing_error"]
    assert df["is_recoverable"].to_list() == [None, True, False, True]


def test_supplied_derived_columns_are_ignored():
    txn = make_txn("declined", decline_reason="stolen_card",
                   decline_category="soft_decline", is_recoverable=True)
    df = as_frame([txn])
    assert df["decline_category"].to_list() == ["hard_decline"]
    assert df["is_recoverable"].to_list() == [False]


def test_approved_only_batch_types_decline_reason():
    df = frame(batch(5, 5))
    assert df.schema["decline_reason"] == pl.Utf8
    assert df["decline_reason"].null_count() == 5


def test_camel_case_fields_are_renamed():
    txn = make_txn("declined", decline_reason="do_not_honor")
    api_txn = {
        "id": txn["transaction_id"],
        "timestamp": "2026-01-05T12:00:00",
        "merchantId": txn["merchant_id"],
        "customerId": txn["customer_id"],
        "amount": 25,
        "currency": "MXN",
        "country": "Mexico",
        "paymentMethod": "oxxo",
        "processor": "ConektaMX",
        "status": "declined",
        "declineReason": "do_not_honor",
        "declineCategory": "soft_decline",
        "isRecoverable": True,
        "isReturningCustomer": True,
        "bin": "411111",
    }
    df = as_frame([api_txn])
    row = df.row(0, named=True)
    assert row["transaction_id"] == txn["transaction_id"]
    assert row["payment_method"] == "oxxo"
    assert row["amount"] == 25.0
    assert row["is_returning_customer"] is True
    assert row["timestamp"].hour == 12
    assert "bin" not in df.columns


def test_naive_timestamps_are_taken_as_utc():
    df = as_frame([make_txn(timestamp=datetime(2026, 1, 5, 22, 30))])
    assert df.schema["timestamp"] == pl.Datetime("us", "UTC")
    assert df["timestamp"].dt.hour().to_list() == [22]


@pytest.mark.parametrize(
    "txn, message",
    [
        (make_txn("approved", decline_reason="insufficient_funds"), "approved records carry a decline reason"),
        ({**make_txn("declined"), "decline_reason": None}, "declined records have no decline reason"),
        (make_txn("declined", decline_reason="card_melted"), "Unknown decline reasons"),
        (make_txn("pending"), "invalid status"),
        (make_txn(payment_method=None), "records have no payment_method"),
        ({**make_txn(), "country": None}, "records have no country"),
    ],
)
def test_contract_violations_are_rejected(txn, message):
    with pytest.raises(ValueError, match=message):
        as_frame([txn])


def test_missing_column_is_rejected():
    txn = make_txn()
    del txn["processor"]
    with pytest.raises(ValueError, match="Missing required column: processor"):
        as_frame([txn])


def test_wrong_dtype_is_rejected():
    with pytest.raises(TypeError, match="is_returning_customer"):
        as_frame([make_txn(is_returning_customer="yes")])


def test_load_parquet_round_trip(tmp_path, mixed_frame):
    path = tmp_path / "transactions.parquet"
    mixed_frame.write_parquet(path)
    loaded = load_transactions(path)
    assert loaded.equals(mixed_frame)


def test_load_csv(tmp_path):
    path = tmp_path / "transactions.csv"
    path.write_text(
        "transaction_id,timestamp,merchant_id,customer_id,amount,currency,country,"
        "payment_method,processor,status,decline_reason,is_returning_customer\n"
        "t1,2026-01-05 10:00:00,m1,c1,10.0,USD,US,credit_card,StripeConnect,approved,,false\n"
        "t2,2026-01-05 11:00:00,m1,c2,20.0,BRL,Brazil,pix,PayUBrasil,declined,velocity_limit,true\n"
    )
    df = load_transactions(path)
    assert df.height == 2
    assert df["decline_category"].to_list() == [None, "soft_decline"]
    assert df["is_returning_customer"].to_list() == [False, True]
    assert df["timestamp"].dt.hour().to_list() == [10, 11]


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_transactions(tmp_path / "nope.parquet")


def test_unsupported_suffix(tmp_path):
    path = tmp_path / "transactions.xlsx"
    path.write_bytes(b"")
    with pytest.raises(ValueError, match="Unsupported file type"):
        load_transactions(path)


def test_null_dimension_in_mixed_batch_is_rejected():
    records = batch(3, 3) + [make_txn(processor=None)]
    with pytest.raises(ValueError, match="1 records have no processor"):
        as_frame(records)
