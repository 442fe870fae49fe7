"""
baseline_aggregator.py
-----------------------
Baseline & trigger aggregation over a classified transaction set.

compute_baseline() answers: over this date range, how much was lost to
gambling, how often, in which week was it worst, and what usually sets it
off? build_baseline_report() adds the breakdowns shown to the user
(by type, weekday, time of day), streaks, escalation and binge counts.

Only actionable transactions (confidence at or above the policy threshold)
are counted. Averages are normalised by the length of the range, not by
the number of active weeks.
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pandas as pd

from config.config_loader import get_baseline_config
from core.models import Baseline, BaselineReport, ClassifiedTransaction, WorstWeek
from core.pattern_detector import detect_binge, detect_escalation
from core.policy import PolicyConstants

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
UNKNOWN_TRIGGER = "Unknown"


def _as_datetime(value) -> datetime:
    """Dates become midnight; naive datetimes are taken as UTC."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _week_start(ts: datetime) -> date:
    """Sunday on or before the given timestamp's calendar date."""
    day = ts.date()
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _range_days(range_start, range_end) -> float:
    days = (_as_datetime(range_end) - _as_datetime(range_start)).total_seconds() / 86400
    return max(days, 1.0)


def _actionable(
    classified: Sequence[ClassifiedTransaction], policy: PolicyConstants
) -> List[ClassifiedTransaction]:
    threshold = policy.action_confidence_threshold
    return [
        c for c in classified
        if c.classification.is_actionable(threshold) and c.timestamp is not None
    ]


# =============================================================================
# BASELINE
# =============================================================================

def compute_baseline(
    classified: Sequence[ClassifiedTransaction],
    range_start,
    range_end,
    policy: PolicyConstants | None = None,
) -> Optional[Baseline]:
    """
    Compute baseline loss statistics.

    Args:
        classified: Classified transactions for one user over the range.
        range_start, range_end: The closed date range the set covers. Only
            its length is used (for the weekly/monthly normalisation).
        policy: Supplies the actionable confidence threshold.

    Returns:
        Baseline, or None when `classified` is empty. A non-empty input with
        nothing actionable gives an all-zero Baseline.
    """
    if not classified:
        return None

    policy = policy or PolicyConstants.from_config()
    gambling = _actionable(classified, policy)

    if not gambling:
        return Baseline(
            total_lost=0.0,
            transaction_count=0,
            average_weekly=0.0,
            average_monthly=0.0,
            worst_week=None,
            most_common_type=None,
            primary_trigger=UNKNOWN_TRIGGER,
            patterns=[],
            projected_yearly_savings=0.0,
        )

    total_lost = float(sum(c.amount for c in gambling))
    days = _range_days(range_start, range_end)
    average_weekly = total_lost / (days / 7)
    average_monthly = total_lost / (days / 30)

    patterns: List[str] = []
    for c in gambling:
        patterns.extend(p for p in c.patterns if p not in patterns)

    return Baseline(
        total_lost=round(total_lost, 2),
        transaction_count=len(gambling),
        average_weekly=round(average_weekly, 2),
        average_monthly=round(average_monthly, 2),
        worst_week=find_worst_week(gambling),
        most_common_type=most_common_type(gambling),
        primary_trigger=identify_primary_trigger(gambling),
        patterns=patterns,
        projected_yearly_savings=round(average_weekly * 52, 2),
    )


def find_worst_week(gambling: Sequence[ClassifiedTransaction]) -> Optional[WorstWeek]:
    """Sunday-aligned week with the highest summed amount; earliest week wins ties."""
    if not gambling:
        return None

    df = pd.DataFrame({
        "week_start": [_week_start(c.timestamp) for c in gambling],
        "amount": [c.amount for c in gambling],
    })
    weekly = (
        df.groupby("week_start")["amount"]
        .agg(total="sum", count="size")
        .sort_index()
    )
    worst = weekly["total"].idxmax()
    return WorstWeek(
        start_date=worst,
        amount=round(float(weekly.at[worst, "total"]), 2),
        transaction_count=int(weekly.at[worst, "count"]),
    )


def most_common_type(gambling: Sequence[ClassifiedTransaction]) -> Optional[str]:
    """Gambling type with the most transactions; ties go to the type seen first."""
    counts = Counter(c.gambling_type or "unknown" for c in gambling)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def identify_primary_trigger(
    gambling: Sequence[ClassifiedTransaction], trigger_labels: Dict[str, str] | None = None
) -> str:
    """Highest-count pattern that maps to a trigger label; first seen wins ties."""
    labels = trigger_labels if trigger_labels is not None else get_baseline_config()["trigger_labels"]
    counts = Counter(p for c in gambling for p in c.patterns)

    primary, best = UNKNOWN_TRIGGER, 0
    for pattern, count in counts.items():
        if pattern in labels and count > best:
            primary, best = labels[pattern], count
    return primary


# =============================================================================
# FULL REPORT
# =============================================================================

def build_baseline_report(
    classified: Sequence[ClassifiedTransaction],
    range_start,
    range_end,
    policy: PolicyConstants | None = None,
    as_of=None,
) -> Optional[BaselineReport]:
    """
    Baseline plus breakdowns, escalation, binge count and streaks.

    Args:
        as_of: Reference point for the current streak. Defaults to range_end
            so the report is reproducible.

    Returns:
        BaselineReport, or None when `classified` is empty.
    """
    policy = policy or PolicyConstants.from_config()
    baseline = compute_baseline(classified, range_start, range_end, policy)
    if baseline is None:
        return None

    gambling = sorted(_actionable(classified, policy), key=lambda c: c.timestamp)
    binges = detect_binge(gambling, policy.binge_window_hours, policy.binge_min_size)

    report = BaselineReport(
        baseline=baseline,
        has_escalation=detect_escalation(
            gambling, policy.escalation_fraction_threshold, policy.escalation_min_transactions
        ),
        binge_count=len(binges),
        type_breakdown=type_breakdown(gambling),
        day_breakdown=day_breakdown(gambling),
        time_breakdown=time_breakdown(gambling),
        largest_transaction=largest_transaction(gambling),
        streaks=streaks(gambling, as_of if as_of is not None else range_end),
    )
    logger.info(
        f"Baseline: {baseline.transaction_count} gambling transactions, "
        f"${baseline.total_lost:,.2f} lost, trigger={baseline.primary_trigger}, "
        f"escalation={report.has_escalation}, binges={report.binge_count}."
    )
    return report


def type_breakdown(gambling: Sequence[ClassifiedTransaction]) -> Dict[str, dict]:
    breakdown: Dict[str, dict] = {}
    for c in gambling:
        entry = breakdown.setdefault(c.gambling_type or "unknown", {"count": 0, "total": 0.0, "average": 0.0})
        entry["count"] += 1
        entry["total"] += c.amount
    for entry in breakdown.values():
        entry["total"] = round(entry["total"], 2)
        entry["average"] = round(entry["total"] / entry["count"], 2)
    return breakdown


def day_breakdown(gambling: Sequence[ClassifiedTransaction]) -> Dict[str, dict]:
    breakdown = {day: {"count": 0, "total": 0.0} for day in DAY_NAMES}
    for c in gambling:
        day = DAY_NAMES[(c.timestamp.weekday() + 1) % 7]
        breakdown[day]["count"] += 1
        breakdown[day]["total"] = round(breakdown[day]["total"] + c.amount, 2)
    return breakdown


def time_breakdown(gambling: Sequence[ClassifiedTransaction]) -> Dict[str, dict]:
    cfg = get_baseline_config()
    periods = cfg["time_of_day"]
    late_label = cfg["late_night_label"]

    breakdown = {p["label"]: {"count": 0, "total": 0.0} for p in periods}
    breakdown[late_label] = {"count": 0, "total": 0.0}

    for c in gambling:
        hour = c.timestamp.hour
        label = next(
            (p["label"] for p in periods if p["start_hour"] <= hour < p["end_hour"]),
            late_label,
        )
        breakdown[label]["count"] += 1
        breakdown[label]["total"] = round(breakdown[label]["total"] + c.amount, 2)
    return breakdown


def largest_transaction(gambling: Sequence[ClassifiedTransaction]) -> Optional[dict]:
    if not gambling:
        return None
    largest = max(gambling, key=lambda c: c.amount)
    return {
        "amount": round(largest.amount, 2),
        "payee_name": largest.transaction.payee_name,
        "date": largest.timestamp,
        "type": largest.gambling_type,
    }


def streaks(gambling: Sequence[ClassifiedTransaction], as_of) -> Optional[dict]:
    """
    Gambling-free streaks in whole days: the longest gap between consecutive
    gambling transactions, and the days from the last one to `as_of`.
    """
    if not gambling:
        return None
    timestamps = sorted(_as_datetime(c.timestamp) for c in gambling)
    longest = max(
        ((later - earlier).days for earlier, later in zip(timestamps, timestamps[1:])),
        default=0,
    )
    current = max((_as_datetime(as_of) - timestamps[-1]).days, 0)
    return {"longest_streak": longest, "current_streak": current}
