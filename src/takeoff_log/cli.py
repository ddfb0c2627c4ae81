from __future__ import annotations
import argparse
import datetime as dt
import logging
import os
import sys
from typing import Optional

import requests

from .client import TakeoffClient
from .config import DEFAULT_CONFIG_PATH, load_config
from .export import load_records_file, write_report_json, write_report_markdown, write_summary_csv
from .periods import REPORT_TYPES, today_utc8
from .records import ensure_not_future, in_range, next_count, parse_date, to_date_map, validate_count
from .report import build_report_context
from .sync import LocalLog, open_store, reconcile

log = logging.getLogger("takeoff_log")


def _parse_day(value: Optional[str]) -> dt.date:
    return parse_date(value) if value else today_utc8()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="takeoff", description="Takeoff log: daily counts, stats and reports")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("mark", help="Set the count for a day")
    p.add_argument("date", nargs="?", help="YYYY-MM-DD (default: today, UTC+8)")
    g = p.add_mutually_exclusive_group(required=True)
    g.add_argument("--count", type=int, help="0-5")
    g.add_argument("--clear", action="store_true", help="Remove the record")

    p = sub.add_parser("toggle", help="Advance a day through unset -> 1..5 -> 0 -> unset")
    p.add_argument("date", nargs="?", help="YYYY-MM-DD (default: today, UTC+8)")

    sub.add_parser("sync", help="Push locally cached days to the server")
    sub.add_parser("pending", help="List reports not viewed yet")

    p = sub.add_parser("report", help="Request a report from the server")
    p.add_argument("--type", choices=REPORT_TYPES, default="week")
    p.add_argument("--offset", type=int, default=0, help="0 = current period, -1 = previous, ...")
    p.add_argument("--force-refresh", action="store_true")
    p.add_argument("--mark-viewed", action="store_true")
    p.add_argument("--stats-only-fallback", action="store_true", help="Return statistics if the AI call fails")

    p = sub.add_parser("summary", help="Offline statistics from a records JSON file")
    p.add_argument("records", help='JSON file: {"YYYY-MM-DD": count} or the /records response')
    p.add_argument("--type", choices=REPORT_TYPES, default="week")
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--for-date", help="YYYY-MM-DD; treat this as today (optional)")
    p.add_argument("--outdir", default="reports", help="Directory for outputs")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    try:
        cfg = load_config(args.config)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    if args.command == "summary":
        return _summary(args)

    client = TakeoffClient(cfg.client.base_url, cfg.client.token, timeout=cfg.client.timeout)
    local = LocalLog(cfg.client.cache_path)

    try:
        if args.command in ("mark", "toggle"):
            store = open_store(cfg.client.authenticated, local, client if cfg.client.authenticated else None)
            day = _parse_day(args.date)
            ensure_not_future(day, today_utc8())
            if args.command == "toggle":
                current = store.read().get(day)
                count = next_count(current)
            else:
                count = None if args.clear else validate_count(args.count)
            entry = store.write(day, count)
            shown = "cleared" if count is None else count
            print(f"{day.isoformat()}: {shown} ({entry.status})")
            return 0

        if not cfg.client.authenticated:
            print("ERROR: Set TAKEOFF_TOKEN or client.token in the config to talk to the server", file=sys.stderr)
            return 2

        if args.command == "sync":
            result = reconcile(local, client)
            print(f"Synced: {result.synced}  Skipped: {result.skipped}  Failed: {result.failed}")
            return 0 if result.failed == 0 else 1

        if args.command == "pending":
            reports = client.check_pending()
            if not reports:
                print("No new reports.")
            for r in reports:
                print(f"{r['type']:8} {r['periodKey']:10} {r['label']}")
            return 0

        if args.command == "report":
            body = client.request_report(
                args.type,
                period_offset=args.offset,
                force_refresh=args.force_refresh,
                mark_viewed=args.mark_viewed,
                allow_stats_only=args.stats_only_fallback,
            )
            print(body.get("report", ""))
            return 0
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except requests.RequestException as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    return 2


def _summary(args: argparse.Namespace) -> int:
    try:
        records = to_date_map(load_records_file(args.records))
        today = parse_date(args.for_date) if args.for_date else today_utc8()
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to read records: {e}", file=sys.stderr)
        return 2

    def fetch_range(start: dt.date, end: dt.date):
        return in_range(records.items(), start, end)

    ctx = build_report_context(args.type, today, fetch_range, period_offset=args.offset)
    period = ctx.period
    log.debug("Period %s: %s..%s (effective end %s)", period.key, period.start, period.end, ctx.effective_end)

    outdir = os.path.abspath(args.outdir)
    os.makedirs(outdir, exist_ok=True)
    base = os.path.join(outdir, f"{period.type}-{period.key}")

    md_path = f"{base}.md"
    write_report_markdown(md_path, period.label, ctx.stats, ctx.partial, ctx.previous)

    json_path = f"{base}.json"
    write_report_json(json_path, ctx.model_dump(mode="json"))

    csv_path = f"{base}-summary.csv"
    weekday_csv = write_summary_csv(csv_path, period.key, period.label, period.start, ctx.effective_end, ctx.stats)

    print(f"Wrote {md_path}, {json_path}, {csv_path}, {weekday_csv}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
