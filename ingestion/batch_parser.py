"""CSV/JSON batch import: dialect detection, per-record parsing, validation.

Quirks of uploaded exports:
- The first non-blank CSV line is the header; blank lines are ignored
- Values may be quoted, with commas inside quotes
- Money columns may carry "$", "+", thousands separators or "%"
- There may be no side column at all; side is then inferred
- A broken row is recorded and skipped, the rest of the batch still parses
"""
import csv
import json
import logging
from typing import Any, Mapping, Optional

from ingestion.dialects import DIALECTS, detect_dialect, find_value, header_index
from normalizer.aliases import FIELD_ALIASES
from normalizer.coercion import (
    Clock,
    clean_str,
    normalize_side,
    normalize_status,
    normalize_timestamp,
    optional_float,
    safe_float,
)
from normalizer.identity import synthesize_leg_id
from normalizer.trade_normalizer import PLACEHOLDER_TOKEN
from shared.schemas import ImportBatch, LegStatus, RecordError, Side, ValidationResult

logger = logging.getLogger(__name__)


# Record keys the parser resolves, and the normalizer field each one feeds.
# Original columns aliasing these fields are dropped so the normalizer
# reads the value that was validated.
PARSED_FIELDS: dict[str, str] = {
    "id": "id",
    "token": "token",
    "tokenAddress": "token_address",
    "side": "side",
    "status": "status",
    "quantity": "quantity",
    "entryPrice": "entry_price",
    "exitPrice": "exit_price",
    "pnl": "pnl",
    "pnlPercent": "pnl_percent",
    "fees": "total_fees",
    "timestamp": "timestamp",
    "agentId": "agent_id",
    "linkedLegId": "linked_leg_id",
    "sourceFormat": "source_format",
}
_SHADOWING_COLUMNS = {
    alias for field in PARSED_FIELDS.values() for alias in FIELD_ALIASES[field]
}


class ImportFormatError(ValueError):
    """The upload as a whole cannot be read (empty file, broken JSON)."""


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line; commas inside double quotes are not delimiters."""
    return next(csv.reader([line], strict=True), [])


def infer_side(
    entry_price: Optional[float],
    exit_price: Optional[float],
    pnl: Optional[float],
) -> Side:
    """Guess the side of a row that has no side column.

    Priority: exit above entry, then sign of P&L, then BUY.
    """
    if entry_price and exit_price:
        return Side.BUY if exit_price > entry_price else Side.SELL
    if pnl is not None:
        return Side.BUY if pnl >= 0 else Side.SELL
    return Side.BUY


def infer_status(value: Any) -> LegStatus:
    text = clean_str(value)
    if text is None:
        return LegStatus.CLOSED
    status = normalize_status(text, default=None)
    if status is not None:
        return status
    lowered = text.lower()
    if "open" in lowered or "active" in lowered:
        return LegStatus.OPEN
    return LegStatus.CLOSED


def build_record(
    row: Mapping[str, Any],
    dialect: str,
    line: int,
    clock: Optional[Clock] = None,
) -> dict[str, Any]:
    """Convert one raw row into a near-canonical record using a dialect."""
    mapping = DIALECTS[dialect]
    index = header_index(row.keys())

    def get(field: str) -> Optional[Any]:
        return find_value(row, mapping.get(field, []), index)

    entry_price = optional_float(get("entryPrice"))
    exit_price = optional_float(get("exitPrice"))
    pnl = optional_float(get("pnl"))

    side = normalize_side(get("side")) or infer_side(entry_price, exit_price, pnl)
    token = clean_str(get("token")) or PLACEHOLDER_TOKEN
    timestamp = normalize_timestamp(get("timestamp"), clock)
    entry = entry_price or 0.0

    record = {k: v for k, v in row.items() if k not in _SHADOWING_COLUMNS}
    record.update({
        "id": clean_str(get("id")) or synthesize_leg_id(token, timestamp, entry),
        "token": token,
        "tokenAddress": clean_str(get("tokenAddress")),
        "side": side.value,
        "status": infer_status(get("status")).value,
        "quantity": safe_float(get("quantity")),
        "entryPrice": entry,
        "exitPrice": exit_price or entry,
        "pnl": pnl,
        "pnlPercent": optional_float(get("pnlPercent")),
        "fees": safe_float(get("fees")),
        "timestamp": timestamp,
        "agentId": clean_str(get("agentId")),
        "linkedLegId": clean_str(get("linkedLegId")),
        "sourceFormat": dialect,
        "line": line,
    })
    return record


def _resolve_dialect(hint: Optional[str], keys: list[str]) -> str:
    if hint is None:
        return detect_dialect(keys)
    if hint not in DIALECTS:
        raise ImportFormatError(f"Unknown dialect: {hint}")
    return hint


def parse_csv(
    text: str,
    dialect: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> ImportBatch:
    """Parse CSV text into near-canonical records.

    Raises ImportFormatError when there is no header plus at least one row.
    """
    if not isinstance(text, str):
        raise ImportFormatError("CSV input must be text")

    lines = [
        (lineno, line)
        for lineno, line in enumerate(text.lstrip("\ufeff").splitlines(), start=1)
        if line.strip()
    ]
    if len(lines) < 2:
        raise ImportFormatError("CSV file is empty or invalid")

    try:
        headers = [h.strip() for h in split_csv_line(lines[0][1])]
    except csv.Error as e:
        raise ImportFormatError(f"Unreadable CSV header: {e}") from e

    name = _resolve_dialect(dialect, headers)
    batch = ImportBatch(detected_dialect=name, total_records=len(lines) - 1)

    for lineno, line in lines[1:]:
        try:
            values = split_csv_line(line)
            row = {
                header: values[i].strip() if i < len(values) else ""
                for i, header in enumerate(headers)
            }
            batch.records.append(build_record(row, name, lineno, clock))
        except (csv.Error, ValueError, TypeError) as e:
            logger.warning(
                "Skipping malformed CSV row",
                extra={"line": lineno, "error": str(e)},
            )
            batch.errors.append(
                RecordError(index=lineno, reasons=[f"Malformed record: {e}"])
            )

    logger.info(
        "CSV batch parsed",
        extra={
            "dialect": name,
            "records": len(batch.records),
            "errors": batch.error_count,
        },
    )
    return batch


def parse_json(
    text: str,
    dialect: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> ImportBatch:
    """Parse a JSON object or array of objects into near-canonical records."""
    if not isinstance(text, str) or not text.strip():
        raise ImportFormatError("JSON file is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Invalid JSON: {e.msg} (line {e.lineno})") from e

    if isinstance(data, dict):
        items = [data]
    elif isinstance(data, list):
        items = data
    else:
        raise ImportFormatError("JSON must be an object or an array of objects")
    if not items:
        raise ImportFormatError("JSON file contains no records")

    first = next((item for item in items if isinstance(item, dict)), {})
    name = _resolve_dialect(dialect, list(first.keys()))
    batch = ImportBatch(detected_dialect=name, total_records=len(items))

    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            batch.errors.append(
                RecordError(index=position, reasons=["Malformed record: not an object"])
            )
            continue
        try:
            batch.records.append(build_record(item, name, position, clock))
        except (ValueError, TypeError) as e:
            logger.warning(
                "Skipping malformed JSON record",
                extra={"index": position, "error": str(e)},
            )
            batch.errors.append(
                RecordError(index=position, reasons=[f"Malformed record: {e}"])
            )

    logger.info(
        "JSON batch parsed",
        extra={
            "dialect": name,
            "records": len(batch.records),
            "errors": batch.error_count,
        },
    )
    return batch


def validate_records(records: list[dict[str, Any]]) -> ValidationResult:
    """Check business invariants; one error entry per failing record."""
    result = ValidationResult(total_processed=len(records))
    for position, record in enumerate(records, start=1):
        reasons = []
        token = clean_str(record.get("token"))
        if token is None or token.upper() == PLACEHOLDER_TOKEN:
            reasons.append("Missing token symbol")
        if safe_float(record.get("quantity")) <= 0:
            reasons.append("Invalid quantity")
        if safe_float(record.get("entryPrice")) <= 0:
            reasons.append("Invalid entry price")
        if safe_float(record.get("exitPrice")) <= 0:
            reasons.append("Invalid exit price")

        if reasons:
            result.errors.append(
                RecordError(
                    index=record.get("line", position),
                    reasons=reasons,
                    record=record,
                )
            )
        else:
            result.valid.append(record)
    return result


def validate_batch(batch: ImportBatch) -> ValidationResult:
    """Validate a parsed batch, folding its parse errors into the result.

    ``valid_count + error_count`` equals the number of records in the input.
    """
    result = validate_records(batch.records)
    result.errors = sorted(batch.errors + result.errors, key=lambda e: e.index)
    result.total_processed = batch.total_records
    return result
