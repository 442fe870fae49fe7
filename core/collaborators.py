"""
collaborators.py
-----------------
Interfaces to the systems the engine reads from but does not own, plus
in-memory implementations used by the pipeline, the CLI and the tests.

    HistoryProvider : read-only queries over one user's prior transactions.
    MerchantStore   : the crowdsourced merchant registry.
    AllowList       : "is this payee whitelisted?"

Contract shared by every implementation: "not found" is an empty result or
None, while an I/O failure raises LookupUnavailable. The engine degrades on
the latter; it must never have to guess which one it got.
"""

import bisect
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd

from core.models import MerchantEntry, Transaction


# =============================================================================
# INTERFACES
# =============================================================================

class HistoryProvider(ABC):
    """Read-only view over one user's transaction history."""

    @abstractmethod
    def find_by_payee(
        self, payee_name: str, limit: int = 10, before: Optional[datetime] = None
    ) -> List[Transaction]:
        """
        Up to `limit` transactions whose payee matches case-insensitively,
        most recent first. If `before` is given, only strictly earlier rows.

        Raises:
            LookupUnavailable: If the ledger can't be queried.
        """
        ...

    @abstractmethod
    def find_in_window(self, start: datetime, end: datetime) -> List[Transaction]:
        """
        Transactions with start <= timestamp < end, sorted by timestamp.

        Raises:
            LookupUnavailable: If the ledger can't be queried.
        """
        ...


class MerchantStore(ABC):
    """The crowdsourced merchant registry."""

    @abstractmethod
    def find_merchant(self, merchant_name: str) -> Optional[MerchantEntry]:
        """
        Case-insensitive lookup. None when there is no entry.

        Raises:
            LookupUnavailable: If the store can't be queried (including a
                backing table that doesn't exist yet).
        """
        ...

    @abstractmethod
    def upsert_merchant(self, entry: MerchantEntry) -> MerchantEntry:
        """Inserts or replaces the entry keyed by merchant name."""
        ...


class AllowList(ABC):
    @abstractmethod
    def is_whitelisted(self, payee_name: str) -> bool:
        ...


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryLedger(HistoryProvider):
    """
    Chronologically ordered, append-only ledger for a single user.

    The pipeline appends each transaction after classifying it, so a query
    made while classifying transaction N only ever sees transactions 0..N-1.
    """

    def __init__(self, transactions: Iterable[Transaction] = ()):
        self._transactions: List[Transaction] = []
        self._timestamps: List[datetime] = []
        for txn in sorted(
            (t for t in transactions if t.timestamp is not None), key=lambda t: t.timestamp
        ):
            self.append(txn)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "InMemoryLedger":
        """Builds a ledger from a transactions DataFrame (see Transaction.from_record)."""
        return cls(Transaction.from_record(row) for row in df.to_dict(orient="records"))

    def append(self, txn: Transaction) -> None:
        """Adds a transaction, keeping timestamp order. Rows without a timestamp are ignored."""
        if txn.timestamp is None:
            return
        idx = bisect.bisect_right(self._timestamps, txn.timestamp)
        self._timestamps.insert(idx, txn.timestamp)
        self._transactions.insert(idx, txn)

    def find_by_payee(
        self, payee_name: str, limit: int = 10, before: Optional[datetime] = None
    ) -> List[Transaction]:
        target = (payee_name or "").strip().lower()
        if not target:
            return []

        matches: List[Transaction] = []
        for txn in reversed(self._transactions):
            if before is not None and txn.timestamp >= before:
                continue
            if (txn.payee_name or "").strip().lower() == target:
                matches.append(txn)
                if len(matches) >= limit:
                    break
        return matches

    def find_in_window(self, start: datetime, end: datetime) -> List[Transaction]:
        lo = bisect.bisect_left(self._timestamps, start)
        hi = bisect.bisect_left(self._timestamps, end)
        return list(self._transactions[lo:hi])

    def __len__(self) -> int:
        return len(self._transactions)


class InMemoryMerchantStore(MerchantStore):
    """Dict-backed crowdsourced registry keyed by lower-cased merchant name."""

    def __init__(self, entries: Iterable[MerchantEntry] = ()):
        self._entries: Dict[str, MerchantEntry] = {}
        self._lock = threading.Lock()
        for entry in entries:
            self.upsert_merchant(entry)

    def find_merchant(self, merchant_name: str) -> Optional[MerchantEntry]:
        key = (merchant_name or "").strip().lower()
        if not key:
            return None
        with self._lock:
            return self._entries.get(key)

    def upsert_merchant(self, entry: MerchantEntry) -> MerchantEntry:
        key = entry.merchant_name.strip().lower()
        if not key:
            raise ValueError("MerchantEntry.merchant_name must not be empty")
        with self._lock:
            self._entries[key] = entry
        return entry

    def __len__(self) -> int:
        return len(self._entries)


class StaticAllowList(AllowList):
    """Fixed set of approved payee names, compared case-insensitively."""

    def __init__(self, payee_names: Iterable[str] = ()):
        self._names = frozenset(n.strip().lower() for n in payee_names if n and n.strip())

    def is_whitelisted(self, payee_name: str) -> bool:
        return (payee_name or "").strip().lower() in self._names

    def __len__(self) -> int:
        return len(self._names)
