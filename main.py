"""
main.py
--------
Entry point for the Gambling Pattern Engine.

Reads a transaction CSV, classifies every transaction, computes each user's
gambling baseline over a date range and writes the results to outputs/.

Usage (from the project root):
    python main.py --input path/to/transactions.csv

    # With optional arguments:
    python main.py --input txns.csv --months 6
    python main.py --input txns.csv --start 2024-01-01 --end 2024-12-31
    python main.py --input txns.csv --min-confidence 80 --workers 4
"""

import sys
import os
import argparse
import logging
import pandas as pd
from dataclasses import asdict
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from config.config_loader import load_config
from core.collaborators import StaticAllowList
from core.policy import PolicyConstants
from pipeline import GamblingDetectionPipeline


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")

WEEKS_PER_MONTH = 4.33


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Gambling Pattern Engine: classify gambling transactions and compute loss baselines."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to input transactions CSV."
    )
    parser.add_argument(
        "--start", type=str, default=None,
        help="Baseline range start (YYYY-MM-DD). Defaults to --months before --end."
    )
    parser.add_argument(
        "--end", type=str, default=None,
        help="Baseline range end (YYYY-MM-DD). Defaults to the latest transaction."
    )
    parser.add_argument(
        "--months", type=int, default=12,
        help="Baseline length in months when --start is not given. Default: 12."
    )
    parser.add_argument(
        "--min-confidence", type=int, default=None,
        help="Confidence (0-100) at which a transaction counts as gambling. Defaults to config value (70)."
    )
    parser.add_argument(
        "--whitelist", type=str, default=None,
        help="Text file with one whitelisted payee name per line."
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="Number of users classified in parallel. Default: 1."
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Alternative config.yaml."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv=None):
    args = parse_args(argv)

    # --- Resolve paths ---
    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    if args.config:
        load_config(args.config)

    # --- Load transactions ---
    logger.info(f"Loading transactions from: {args.input}")
    if not os.path.exists(args.input):
        logger.error(f"Input file not found: {args.input}")
        sys.exit(1)

    transactions = pd.read_csv(args.input)
    if "user_id" not in transactions.columns:
        transactions["user_id"] = "default"
    logger.info(f"Loaded {len(transactions):,} transactions, {transactions['user_id'].nunique():,} users.")

    # --- Build pipeline ---
    overrides = {}
    if args.min_confidence is not None:
        overrides["action_confidence_threshold"] = args.min_confidence
    policy = PolicyConstants.from_config(**overrides)

    allow_list = None
    if args.whitelist:
        allow_list = _load_allow_list(args.whitelist)
        logger.info(f"Loaded {len(allow_list):,} whitelisted payees from: {args.whitelist}")

    pipeline = GamblingDetectionPipeline(
        policy=policy, allow_list=allow_list, max_workers=args.workers
    )

    # --- Classification ---
    classified = pipeline.classify_all(transactions)
    classifications = pipeline.serialize(classified)
    logger.info(
        f"Classified {len(classifications):,} transactions, "
        f"{int(classifications['actionable'].sum()) if len(classifications) else 0:,} actionable."
    )
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    classifications_path = os.path.join(output_dir, f"classifications_{timestamp}.csv")
    classifications.to_csv(classifications_path, index=False)
    logger.info(f"Classifications saved to: {classifications_path}")

    # --- Baselines ---
    range_start, range_end = _resolve_range(args, transactions)
    logger.info(f"Computing baselines for {range_start.date()} .. {range_end.date()}")
    reports = pipeline.baselines_from_classified(classified, range_start, range_end)

    # --- Whitelist suggestions from non-gambling spend ---
    suggestions = pipeline.resolver.suggest_whitelist(
        c.transaction
        for items in classified.values()
        for c in items
        if not pipeline.classifier.is_actionable(c.classification)
    )
    if suggestions:
        suggestions_path = os.path.join(output_dir, f"whitelist_suggestions_{timestamp}.csv")
        pd.DataFrame([asdict(s) for s in suggestions]).to_csv(suggestions_path, index=False)
        logger.info(f"{len(suggestions):,} whitelist suggestions saved to: {suggestions_path}")

    _print_summary(reports)


def _load_allow_list(path: str) -> StaticAllowList:
    with open(path, "r") as f:
        names = [line.strip() for line in f if line.strip() and not line.startswith("#")]
    return StaticAllowList(names)


def _resolve_range(args: argparse.Namespace, transactions: pd.DataFrame):
    """Closed [start, end] range in UTC from the CLI flags or the data."""
    if args.end:
        end = pd.Timestamp(args.end, tz="UTC") + pd.Timedelta(days=1) - pd.Timedelta(microseconds=1)
    else:
        end = pd.to_datetime(transactions["timestamp"], utc=True).max()

    if args.start:
        start = pd.Timestamp(args.start, tz="UTC")
    else:
        start = end - pd.DateOffset(months=args.months)

    return start.to_pydatetime(), end.to_pydatetime()


def _print_summary(reports: dict):
    """Prints a clean baseline summary per user to the console."""
    if not reports:
        print("\n  No users to summarise.\n")
        return

    print("\n" + "=" * 80)
    print("  GAMBLING BASELINE SUMMARY")
    print("=" * 80)

    for user, report in sorted(reports.items()):
        print(f"\n  User: {user}")
        print("  " + "-" * 60)
        if report is None or report.baseline.transaction_count == 0:
            print("    No gambling detected in range.")
            continue

        b = report.baseline
        print(f"    Total lost:           ${b.total_lost:>12,.2f}  ({b.transaction_count:,} transactions)")
        print(f"    Average weekly:       ${b.average_weekly:>12,.2f}")
        print(f"    Average monthly:      ${b.average_monthly:>12,.2f}")
        if b.worst_week is not None:
            print(
                f"    Worst week:           {b.worst_week.start_date}  "
                f"${b.worst_week.amount:,.2f} ({b.worst_week.transaction_count} transactions)"
            )
        print(f"    Most common type:     {b.most_common_type}")
        print(f"    Primary trigger:      {b.primary_trigger}")
        print(f"    Escalating stakes:    {'yes' if report.has_escalation else 'no'}")
        print(f"    Binge episodes:       {report.binge_count}")
        if report.streaks:
            print(
                f"    Streaks (days):       longest {report.streaks['longest_streak']}, "
                f"current {report.streaks['current_streak']}"
            )

        print("\n    Projected savings if gambling stopped:")
        print(f"      Per month:  ${b.average_weekly * WEEKS_PER_MONTH:>12,.2f}")
        print(f"      Per year:   ${b.projected_yearly_savings:>12,.2f}")
        print(f"      5 years:    ${b.projected_yearly_savings * 5:>12,.2f}")

    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
