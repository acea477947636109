#!/usr/bin/env python3
"""Operator entry point for curtailment reconciliation.

Runs one reconciliation action over a single date or a date range and
prints a per-date summary table. The heavy lifting is done by
``ReconciliationOrchestrator``; this script only wires the Elexon and
difficulty connectors, the store and the CLI flags together.

Actions:
- validate        report missing settlement periods
- backfill        fetch missing (or ``--periods``) settlement periods
- recompute       rebuild bitcoin calculations and every summary tier
- audit           compare each tier with the sum of the tier below
- full-reconcile  all of the above, in order

Ctrl-C stops scheduling further dates; dates already finished keep their
writes.

Usage::

    python scripts/reconcile.py --date 2025-03-28
    python scripts/reconcile.py --start-date 2025-03-01 --end-date 2025-03-31 --concurrency 4
    python scripts/reconcile.py --date 2025-03-28 --action backfill --periods 1-24,30
    python scripts/reconcile.py --start-date 2025-01-01 --end-date 2025-12-31 --action audit
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
import time
from datetime import date, datetime
from pathlib import Path

# Ensure project root is on sys.path so ``curtailment_recon.*`` imports work
# when this script is executed directly.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from curtailment_recon.connectors import (
    BmuMapping,
    DifficultyConnector,
    ElexonConnector,
    load_bmu_mapping,
)
from curtailment_recon.core.config import settings
from curtailment_recon.core.database import get_sync_engine
from curtailment_recon.core.enums import ReconcileAction
from curtailment_recon.core.utils.logging_config import configure_logging
from curtailment_recon.core.utils.periods import validate_periods
from curtailment_recon.pipeline import RangeReport, ReconciliationOrchestrator
from curtailment_recon.storage import SettlementStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string into a date object."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def _parse_periods(value: str) -> list[int]:
    """Parse ``"1-24,30,47"`` into a sorted list of settlement periods."""
    periods: list[int] = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            lo, hi = part.split("-", 1)
            periods.extend(range(int(lo), int(hi) + 1))
        else:
            periods.append(int(part))
    return validate_periods(periods)


def _format_seconds(s: float) -> str:
    """Return seconds as a human-friendly string."""
    if s < 60:
        return f"{s:.1f}s"
    minutes = int(s // 60)
    secs = s % 60
    return f"{minutes}m{secs:.0f}s"


def _load_mapping(path: str) -> BmuMapping | None:
    if not Path(path).exists():
        print(f"  Warning: BMU mapping {path} not found; every unit counts as a wind farm")
        return None
    return load_bmu_mapping(path)


def _print_summary(result: RangeReport, elapsed: float) -> None:
    print()
    print("=" * 72)
    print(f" RECONCILIATION SUMMARY  ({result.action.value}, run {result.run_id[:8]})")
    print("=" * 72)
    header = f" {'Date':<10} | {'State':<16} | {'Missing':>7} | {'Failed':>6} | {'Discr.':>6}"
    print(header)
    print(" " + "-" * (len(header) - 1))

    for report in result.reports:
        state = report.state.value
        state_str = state if report.is_done else f"\033[91m{state:<16}\033[0m"
        print(
            f" {report.settlement_date.isoformat():<10} | "
            f"{state_str:<16} | "
            f"{len(report.missing_periods):>7} | "
            f"{len(report.failed_periods):>6} | "
            f"{len(report.discrepancies):>6}"
        )
        if report.error:
            print(f"   -> {report.error}")
    for d, msg in sorted(result.errors.items()):
        print(f" {d.isoformat():<10} | \033[91m{'ERROR':<16}\033[0m | {msg}")
    for d in result.skipped:
        print(f" {d.isoformat():<10} | {'SKIPPED':<16} |")

    print(" " + "-" * (len(header) - 1))
    overall = "ALL DONE" if not result.failed_dates and not result.skipped else "NEEDS ATTENTION"
    print(
        f" {len(result.done_dates)} done, {len(result.failed_dates)} failed, "
        f"{len(result.skipped)} skipped in {_format_seconds(elapsed)} -- {overall}"
    )
    print("=" * 72)
    print()


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------
async def reconcile(
    start_date: date,
    end_date: date,
    action: ReconcileAction,
    periods: list[int] | None = None,
    farm_ids: list[str] | None = None,
    concurrency: int | None = None,
    create_schema: bool = False,
) -> RangeReport:
    """Run *action* over ``start_date..end_date`` against the configured sources."""
    store = SettlementStore.from_engine(get_sync_engine())
    if create_schema:
        store.create_schema()

    mapping = _load_mapping(settings.bmu_mapping_path)
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        pass

    async with ElexonConnector(bmu_mapping=mapping) as elexon, DifficultyConnector() as difficulty:
        orchestrator = ReconciliationOrchestrator(
            store,
            elexon,
            difficulty,
            max_concurrency=concurrency,
        )
        return await orchestrator.run_range(
            start_date,
            end_date,
            action,
            periods,
            farm_ids,
            cancel_event=cancel_event,
        )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description=f"{settings.project_name} -- validate, backfill, recompute, audit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/reconcile.py --date 2025-03-28\n"
            "  python scripts/reconcile.py --start-date 2025-03-01 --end-date 2025-03-31\n"
            "  python scripts/reconcile.py --date 2025-03-28 --action backfill --periods 1-24\n"
        ),
    )
    parser.add_argument("--date", type=str, default=None, help="Single date (YYYY-MM-DD)")
    parser.add_argument("--start-date", type=str, default=None, help="Range start (YYYY-MM-DD)")
    parser.add_argument("--end-date", type=str, default=None, help="Range end (default: start)")
    parser.add_argument(
        "--action",
        type=str,
        default=ReconcileAction.FULL_RECONCILE.value,
        choices=[a.value for a in ReconcileAction],
        help="Reconciliation action (default: full-reconcile)",
    )
    parser.add_argument(
        "--periods",
        type=str,
        default=None,
        help="Period override for backfilling, e.g. '1-24,30' (default: missing periods)",
    )
    parser.add_argument(
        "--farm-ids",
        type=str,
        default=None,
        help="Comma-separated BMU ids to restrict backfilling to",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help=f"Dates processed in parallel (default: {settings.max_concurrent_dates})",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        default=False,
        help="Create missing tables before running",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit JSON logs and print the report as JSON",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point: parse arguments and run the orchestrator."""
    args = parse_args(argv)
    configure_logging(json_output=args.json)

    if args.date and (args.start_date or args.end_date):
        print("Error: use either --date or --start-date/--end-date")
        sys.exit(2)
    if args.date:
        start_date = end_date = _parse_date(args.date)
    elif args.start_date:
        start_date = _parse_date(args.start_date)
        end_date = _parse_date(args.end_date) if args.end_date else start_date
    else:
        print("Error: --date or --start-date is required")
        sys.exit(2)

    if start_date > end_date:
        print(f"Error: start-date ({start_date}) is after end-date ({end_date})")
        sys.exit(2)

    try:
        periods = _parse_periods(args.periods) if args.periods else None
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(2)
    farm_ids = [f.strip() for f in args.farm_ids.split(",") if f.strip()] if args.farm_ids else None

    t0 = time.monotonic()
    result = asyncio.run(
        reconcile(
            start_date,
            end_date,
            ReconcileAction(args.action),
            periods=periods,
            farm_ids=farm_ids,
            concurrency=args.concurrency,
            create_schema=args.create_schema,
        )
    )
    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _print_summary(result, time.monotonic() - t0)

    sys.exit(0 if not result.failed_dates and not result.skipped else 1)


if __name__ == "__main__":
    main()
