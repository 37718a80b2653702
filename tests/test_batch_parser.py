"""Tests for ingestion.batch_parser."""
import csv
import json

import pytest

from helpers import BONK, FIXED_NOW, WIF, fixed_clock
from ingestion.batch_parser import (
    ImportFormatError,
    infer_side,
    infer_status,
    parse_csv,
    parse_json,
    split_csv_line,
    validate_batch,
    validate_records,
)
from ingestion.dialects import GENERIC, NEXGENT
from shared.schemas import LegStatus, Side

NEXGENT_CSV = f"""token_symbol,token_address,amount,purchase_price,sell_price,profit_loss,created_at
BONK,{BONK},1000,0.01,0.015,5.00,2025-01-01 00:00:00.000000+11
WIF,{WIF},10,2.5,2.0,"-$5.00",2025-01-01T00:00:00Z
"POPCAT, inc",,50,"1,000.5",1100,"+$4,975.00",1735689600
"""

TRADE_HISTORY_CSV = f"""Token Symbol,Token Address,Amount,Average Purchase Price (USD),Sale Price (USD),Profit / Loss (USD),Change (%),Time,Signal ID
BONK,{BONK},1000,$0.01,$0.012,+$2.00,+20.0%,2025-01-01T00:00:00Z,sig-9
"""

GENERIC_CSV = """id,symbol,side,quantity,price,exit,date,status

g1,BONK,buy,100,0.01,,2025-01-01,open
g2,,sell,100,0.01,0.02,2025-01-01,closed
g3,WIF,buy,0,1,1,2025-01-01,closed
g4,"WIF,2,buy
"""


def test_split_csv_line_respects_quotes():
    assert split_csv_line('a,"b, c",""""') == ["a", "b, c", '"']


def test_split_csv_line_rejects_unterminated_quote():
    with pytest.raises(csv.Error):
        split_csv_line('g4,"WIF,2')


@pytest.mark.parametrize("entry,exit_,pnl,expected", [
    (1.0, 2.0, None, Side.BUY),
    (2.0, 1.0, 5.0, Side.SELL),
    (None, None, -3.0, Side.SELL),
    (1.0, None, 0.0, Side.BUY),
    (None, None, None, Side.BUY),
])
def test_infer_side_priority(entry, exit_, pnl, expected):
    assert infer_side(entry, exit_, pnl) == expected


@pytest.mark.parametrize("value,expected", [
    ("Active position", LegStatus.OPEN),
    ("open", LegStatus.OPEN),
    ("FAILED", LegStatus.FAILED),
    ("sold out", LegStatus.CLOSED),
    (None, LegStatus.CLOSED),
])
def test_infer_status(value, expected):
    assert infer_status(value) == expected


def test_nexgent_header_detected_and_all_rows_parse():
    batch = parse_csv(NEXGENT_CSV, clock=fixed_clock)
    assert batch.detected_dialect == NEXGENT
    assert batch.total_records == 3
    assert batch.error_count == 0
    assert [r["token"] for r in batch.records] == ["BONK", "WIF", "POPCAT, inc"]

    bonk, wif, popcat = batch.records
    assert bonk["side"] == "BUY"
    assert bonk["status"] == "CLOSED"
    assert bonk["quantity"] == 1000.0
    assert bonk["tokenAddress"] == BONK
    assert bonk["timestamp"] == FIXED_NOW
    assert bonk["id"] == f"BONK-{FIXED_NOW}-10000"
    assert bonk["line"] == 2
    assert bonk["sourceFormat"] == NEXGENT

    assert wif["side"] == "SELL"
    assert wif["pnl"] == -5.0
    assert popcat["entryPrice"] == 1000.5
    assert popcat["pnl"] == 4975.0
    assert popcat["timestamp"] == FIXED_NOW

    result = validate_batch(batch)
    assert result.valid_count == 3
    assert result.error_count == 0


def test_trade_history_headers_map_to_nexgent():
    batch = parse_csv(TRADE_HISTORY_CSV)
    record = batch.records[0]
    assert batch.detected_dialect == NEXGENT
    assert record["entryPrice"] == 0.01
    assert record["exitPrice"] == 0.012
    assert record["pnl"] == 2.0
    assert record["pnlPercent"] == 20.0
    # Original columns stay on the record
    assert record["Signal ID"] == "sig-9"


def test_columns_aliasing_parsed_fields_are_dropped():
    batch = parse_csv("symbol,quantity,amount,price\nBONK,100,0,0.01\n")
    record = batch.records[0]
    assert record["quantity"] == 100.0
    assert "amount" not in record
    assert "symbol" not in record
    assert record["token"] == "BONK"


def test_generic_csv_with_bad_rows():
    batch = parse_csv(GENERIC_CSV, clock=fixed_clock)
    assert batch.detected_dialect == GENERIC
    assert batch.total_records == 4
    assert [r["id"] for r in batch.records] == ["g1", "g2", "g3"]
    assert [e.index for e in batch.errors] == [6]

    g1 = batch.records[0]
    assert g1["line"] == 3
    assert g1["side"] == "BUY"
    assert g1["status"] == "OPEN"
    assert g1["exitPrice"] == g1["entryPrice"] == 0.01

    result = validate_batch(batch)
    assert result.valid_count == 1
    assert result.error_count == 3
    assert result.valid_count + result.error_count == batch.total_records
    reasons = {e.index: e.reasons for e in result.errors}
    assert reasons[4] == ["Missing token symbol"]
    assert reasons[5] == ["Invalid quantity"]
    assert reasons[6][0].startswith("Malformed record")


def test_dialect_hint_overrides_detection():
    batch = parse_csv(NEXGENT_CSV, dialect=GENERIC, clock=fixed_clock)
    assert batch.detected_dialect == GENERIC
    assert batch.records[0]["token"] == "BONK"


@pytest.mark.parametrize("text", ["", "token_symbol,amount\n", "\n\n  \n"])
def test_csv_without_data_rows_is_rejected(text):
    with pytest.raises(ImportFormatError):
        parse_csv(text)


def test_unknown_dialect_hint_is_rejected():
    with pytest.raises(ImportFormatError):
        parse_csv(NEXGENT_CSV, dialect="binance")


def test_parse_json_array_with_non_object_item():
    text = json.dumps([
        {"symbol": "BONK", "quantity": 1, "entryPrice": 2, "exitPrice": 3},
        5,
    ])
    batch = parse_json(text, clock=fixed_clock)
    assert batch.total_records == 2
    assert len(batch.records) == 1
    assert batch.errors[0].index == 2
    assert batch.records[0]["side"] == "BUY"

    result = validate_batch(batch)
    assert result.valid_count + result.error_count == 2


def test_parse_json_single_object_nexgent_keys():
    text = json.dumps({
        "token_symbol": "WIF", "purchase_price": "2.5", "sell_price": "3",
        "profit_loss": "+$5", "amount": "10",
    })
    batch = parse_json(text, clock=fixed_clock)
    assert batch.detected_dialect == NEXGENT
    assert batch.records[0]["pnl"] == 5.0


@pytest.mark.parametrize("text", ["", "{oops", "[]", "42", '"text"'])
def test_parse_json_rejects_unusable_documents(text):
    with pytest.raises(ImportFormatError):
        parse_json(text)


def test_validate_records_lists_every_reason():
    result = validate_records([
        {"token": "UNKNOWN", "quantity": 0, "entryPrice": 0, "exitPrice": 0, "line": 2},
    ])
    assert result.valid_count == 0
    assert result.errors[0].index == 2
    assert result.errors[0].reasons == [
        "Missing token symbol",
        "Invalid quantity",
        "Invalid entry price",
        "Invalid exit price",
    ]
