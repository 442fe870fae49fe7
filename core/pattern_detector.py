"""
pattern_detector.py
--------------------
Sequence-level pattern detection over a user's gambling transactions.

Pure functions over a time-ordered list of already-classified gambling
transactions (Transaction or ClassifiedTransaction; anything with `amount`
and `timestamp`). Amounts are compared by absolute value.

    - escalation_fraction / detect_escalation: are stakes trending upward?
    - detect_binge: clusters of >= 3 transactions inside a short window.
    - amount_cv: amount clustering statistic shared with the historical signal.
"""

from datetime import timedelta
from typing import Iterable, List, Sequence

import numpy as np

from core.models import BingeEpisode


def amount_cv(amounts: Iterable[float]) -> float:
    """
    Coefficient of variation (population std / mean) of absolute amounts.
    Lower = more tightly clustered. Undefined (inf) for empty or zero-mean input.
    """
    values = np.abs(np.asarray(list(amounts), dtype=float))
    if values.size == 0:
        return float("inf")
    mean = float(np.mean(values))
    if mean <= 0:
        return float("inf")
    return float(np.std(values)) / mean


def escalation_fraction(transactions: Sequence) -> float:
    """Share of adjacent pairs where the later amount is strictly larger."""
    if len(transactions) < 2:
        return 0.0
    amounts = np.abs(np.asarray([t.amount for t in transactions], dtype=float))
    increasing = int(np.sum(amounts[1:] > amounts[:-1]))
    return increasing / (len(amounts) - 1)


def detect_escalation(
    transactions: Sequence, threshold: float = 0.6, min_transactions: int = 3
) -> bool:
    """
    True when amounts are generally increasing.

    Requires at least `min_transactions` entries; the escalation fraction
    must strictly exceed `threshold`.
    """
    if len(transactions) < min_transactions:
        return False
    return escalation_fraction(transactions) > threshold


def detect_binge(
    transactions: Sequence, hours_threshold: float = 4.0, min_size: int = 3
) -> List[BingeEpisode]:
    """
    Greedy single-pass grouping of time-clustered transactions.

    Walks the list left to right carrying one open group. A transaction
    joins the open group while it falls within `hours_threshold` of the
    group's first transaction; otherwise the group is closed (kept if it
    has at least `min_size` members) and a new one is opened.

    The window is anchored on the group's first member, not the previous
    one: transactions at 0h, 3h and 6h never form a single group, because
    6h is outside the window opened at 0h. A run at t, t+1h, t+4h01m keeps
    only the first two together.

    Entries without a timestamp are ignored.
    """
    window = timedelta(hours=hours_threshold)
    episodes: List[BingeEpisode] = []
    current: list = []

    for txn in transactions:
        if txn.timestamp is None:
            continue
        if current and txn.timestamp - current[0].timestamp > window:
            if len(current) >= min_size:
                episodes.append(BingeEpisode(transactions=current))
            current = []
        current.append(txn)

    if len(current) >= min_size:
        episodes.append(BingeEpisode(transactions=current))

    return episodes
