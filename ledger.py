"""Main entry point: wires parsing, normalization and reconciliation."""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from dotenv import load_dotenv

from ingestion.batch_parser import ImportFormatError, parse_csv, parse_json, validate_batch
from ingestion.webhook import (
    SignalError,
    parse_signal,
    signal_to_record,
    validate_signal,
    webhook_gate,
)
from normalizer.coercion import Clock
from normalizer.identity import is_duplicate, partition_known
from normalizer.trade_normalizer import check_leg, normalize_record, normalize_records
from reconciliation.leg_unifier import filter_failed, unify_legs
from reconciliation.summary import performance_metrics, summarize
from shared.config import Config
from shared.logging import setup_logging
from shared.schemas import (
    ImportReport,
    ReconcileReport,
    TradeLeg,
    WebhookReport,
)

logger = logging.getLogger(__name__)

FORMATS = ("csv", "json")


class TradeLedger:
    """Turns raw uploads and deliveries into legs, and legs into a ledger."""

    def __init__(self, config: Optional[Config] = None, clock: Optional[Clock] = None):
        self.config = config or Config()
        self.clock = clock

    def import_text(
        self,
        text: str,
        fmt: str,
        dialect: Optional[str] = None,
        agent_id: Optional[str] = None,
        known_ids: Iterable[str] = (),
    ) -> ImportReport:
        """Parse, validate and normalize one upload.

        Raises ImportFormatError when the upload as a whole is unreadable.
        Every input record ends up as a leg, a duplicate or an error.
        """
        if fmt == "csv":
            batch = parse_csv(text, dialect=dialect, clock=self.clock)
        elif fmt == "json":
            batch = parse_json(text, dialect=dialect, clock=self.clock)
        else:
            raise ImportFormatError(f"Unsupported format: {fmt}")

        validation = validate_batch(batch)
        normalized = normalize_records(
            validation.valid,
            agent_id=agent_id or self.config.IMPORT_AGENT_ID,
            clock=self.clock,
        )
        dedup = partition_known(normalized.legs, known_ids)

        report = ImportReport(
            dialect=batch.detected_dialect,
            legs=dedup.fresh,
            duplicates=dedup.duplicates,
            errors=sorted(validation.errors + normalized.errors, key=lambda e: e.index),
            total_records=batch.total_records,
        )
        logger.info(
            "Import complete",
            extra={
                "dialect": report.dialect,
                "total": report.total_records,
                "legs": len(report.legs),
                "duplicates": len(report.duplicates),
                "errors": report.error_count,
            },
        )
        return report

    def ingest_webhook(
        self,
        payload: Any,
        settings: Optional[Mapping[str, Any]] = None,
        received_at: Optional[int] = None,
        known_ids: Iterable[str] = (),
    ) -> WebhookReport:
        """Gate, parse and normalize one webhook delivery.

        An accepted signal without a usable price yields no leg; the
        problems are listed in ``errors``.
        """
        reason = webhook_gate(settings)
        if reason:
            logger.info("Webhook delivery refused", extra={"reason": reason})
            return WebhookReport(accepted=False, reason=reason)

        try:
            signal = parse_signal(payload, received_at=received_at, clock=self.clock)
        except SignalError as e:
            logger.warning("Invalid webhook payload", extra={"error": str(e)})
            return WebhookReport(accepted=False, reason="invalid_signal", errors=[str(e)])

        problems = validate_signal(signal)
        if problems:
            logger.warning(
                "Webhook signal failed validation",
                extra={"signal_id": signal.id, "errors": problems},
            )
            return WebhookReport(
                accepted=False, reason="invalid_signal", signal=signal, errors=problems
            )

        agent_id = (settings or {}).get("agentId") or self.config.DEFAULT_AGENT_ID
        leg = normalize_record(signal_to_record(signal), agent_id=agent_id, clock=self.clock)
        if is_duplicate(leg.id, known_ids):
            return WebhookReport(accepted=False, reason="duplicate", signal=signal, leg=leg)

        reasons = check_leg(leg)
        if reasons:
            return WebhookReport(accepted=True, signal=signal, errors=reasons)

        logger.info(
            "Webhook signal accepted",
            extra={"signal_id": signal.id, "action": signal.action.value},
        )
        return WebhookReport(accepted=True, signal=signal, leg=leg)

    def reconcile(
        self,
        legs: Iterable[TradeLeg],
        live_prices: Optional[Mapping[str, float]] = None,
        include_failed: Optional[bool] = None,
    ) -> ReconcileReport:
        """Unify legs into trades; the summary always covers failed trades."""
        trades = unify_legs(
            legs, live_prices=live_prices, display_rate=self.config.QUOTE_DISPLAY_RATE
        )
        summary = summarize(trades)
        metrics = performance_metrics(trades, starting_balance=self.config.STARTING_BALANCE)
        if include_failed is None:
            include_failed = self.config.INCLUDE_FAILED
        if not include_failed:
            trades = filter_failed(trades)
        return ReconcileReport(trades=trades, summary=summary, metrics=metrics)


def _parse_live_prices(pairs: list[str]) -> dict[str, float]:
    prices = {}
    for pair in pairs:
        token, sep, price = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected TOKEN=PRICE, got {pair!r}")
        prices[token.strip()] = float(price)
    return prices


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile a CSV/JSON trade export into a unified ledger."
    )
    parser.add_argument("file", type=Path)
    parser.add_argument("--format", choices=FORMATS, help="default: from file extension")
    parser.add_argument("--dialect", help="skip detection (nexgent, generic)")
    parser.add_argument("--agent-id")
    parser.add_argument("--include-failed", action="store_true", default=None)
    parser.add_argument(
        "--live-price", action="append", default=[], metavar="TOKEN=PRICE",
        help="current price for open positions, repeatable",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    config = Config.from_env()
    setup_logging("trade-ledger", config.log_level)

    args = build_parser().parse_args(argv)
    fmt = args.format or args.file.suffix.lstrip(".").lower()

    try:
        text = args.file.read_text(encoding="utf-8")
        live_prices = _parse_live_prices(args.live_price)
        ledger = TradeLedger(config)
        report = ledger.import_text(
            text, fmt, dialect=args.dialect, agent_id=args.agent_id
        )
    except (OSError, ValueError) as e:
        logger.error("Import failed", extra={"file": str(args.file), "error": str(e)})
        return 1

    result = ledger.reconcile(
        report.legs, live_prices=live_prices, include_failed=args.include_failed
    )
    output = {
        "import": {
            "dialect": report.dialect,
            "total_records": report.total_records,
            "valid_count": report.valid_count,
            "error_count": report.error_count,
            "errors": [e.model_dump(exclude={"record"}) for e in report.errors],
        },
        "ledger": result.model_dump(mode="json"),
    }
    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
