#!/usr/bin/env python3
"""Command-line interface for eventfusion.

Commands:
  - eventfusion dedupe          : Normalize a JSON file of raw payloads and deduplicate it
  - eventfusion validate-config : Validate a deduplication YAML config

Typical usage:
  eventfusion dedupe --input ticketmaster.json --source ticketmaster --timezone America/Toronto
  eventfusion validate-config --config eventfusion/configs/dedup.yaml
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from eventfusion import __version__
from eventfusion.configs.config import load_dedup_config
from eventfusion.configs.settings import get_settings
from eventfusion.exceptions import EventFusionError
from eventfusion.ingestion.deduplication.engine import DeduplicationEngine
from eventfusion.ingestion.normalization.normalizer import normalize_batch
from eventfusion.ingestion.persist import EventDataWriter, connect, persist_report
from eventfusion.monitoring.logging import setup_logging
from eventfusion.schemas.event import EventSource


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="eventfusion", description="Event ingestion and deduplication CLI")
    p.add_argument("--version", action="store_true", help="Print version and exit")
    sub = p.add_subparsers(dest="cmd")

    # dedupe
    pd = sub.add_parser("dedupe", help="Normalize and deduplicate raw payloads from a JSON file")
    pd.add_argument("--input", "-i", required=True, help="Path to a JSON array of raw source payloads")
    pd.add_argument(
        "--source",
        "-s",
        required=True,
        choices=[s.value for s in EventSource],
        help="Source the payloads come from",
    )
    pd.add_argument("--timezone", "-t", default=None, help="Fallback IANA timezone for naive local times")
    pd.add_argument("--config", "-c", default=None, help="Dedup YAML config (default: bundled dedup.yaml)")
    pd.add_argument("--persist", action="store_true", help="Write results to DATABASE_URL")
    pd.add_argument("--json-logs", action="store_true", help="Emit JSON logs")

    # validate-config
    pv = sub.add_parser("validate-config", help="Validate a dedup config file")
    pv.add_argument("--config", "-c", required=True, help="Path to dedup YAML config")

    return p.parse_args(argv)


def _read_payloads(path: str) -> list[dict[str, Any]]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input not found: {p}")
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of payloads in {p}")
    return data


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with the given arguments."""
    try:
        return _main_impl(argv)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in input: {e}", file=sys.stderr)
        return 1
    except (EventFusionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _main_impl(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    if args.version:
        print(f"eventfusion version {__version__}")
        return 0

    if not args.cmd:
        print("Error: Command required. Use --help for usage info.", file=sys.stderr)
        return 1

    settings = get_settings()

    if args.cmd == "validate-config":
        config = load_dedup_config(args.config, settings=settings)
        print(
            json.dumps(
                {
                    "ok": True,
                    "thresholds": config.thresholds.model_dump(),
                    "auto_merge_threshold": config.quality.auto_merge_threshold,
                    "merge_strategy": config.merge_strategy.value,
                },
                indent=2,
            )
        )
        return 0

    if args.cmd == "dedupe":
        setup_logging(settings.LOG_LEVEL, json_logs=args.json_logs or settings.LOG_JSON)
        config = load_dedup_config(args.config, settings=settings)
        payloads = _read_payloads(args.input)

        batch = normalize_batch(payloads, args.source, args.timezone or settings.DEFAULT_TIMEZONE)
        report = DeduplicationEngine(config).deduplicate(batch.events)

        output = report.summary()
        output["skipped"] = [{"record_id": s.record_id, "reason": s.reason} for s in batch.skipped]
        output["decisions"] = [d.to_audit_record() for d in report.decisions]
        output["review_queue"] = [d.to_audit_record() for d in report.review_queue]

        if args.persist:
            conn = connect(settings)
            try:
                output["persisted"] = persist_report(EventDataWriter(conn), report)
            finally:
                conn.close()

        print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
        return 0

    print(f"Error: Unknown command {args.cmd}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
