"""
models.py
----------
Core domain models. These are the typed contracts between engine layers.

- Transaction: Read-only ledger row. Owned by the ledger collaborator.
- EnrichmentResult: Output of the merchant identity resolver.
- MerchantEntry: A crowdsourced merchant classification record.
- ClassificationResult: Output of the transaction classifier, one per
  transaction, with the signal tags that explain the decision.
- Baseline / BaselineReport: Aggregate loss statistics over a date range.
- BingeEpisode: A time-clustered run of gambling transactions.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

import pandas as pd

from core.exceptions import MalformedTransaction


class MerchantType(str, Enum):
    """Merchant taxonomy. Registry entries must use one of these values."""

    SPORTS_BETTING = "sports_betting"
    ONLINE_POKER = "online_poker"
    CRYPTO_CASINO = "crypto_casino"
    FANTASY_SPORTS = "fantasy_sports"
    LOTTERY = "lottery"
    GAMING_VENUE = "gaming_venue"
    LEGITIMATE = "legitimate"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Any) -> "MerchantType":
        """Maps a raw value onto the taxonomy, falling back to UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Transaction:
    """
    A single bank-feed transaction.

    amount is signed (debits negative); classification always uses the
    absolute value. flagged_gambling carries a previously stored
    classification of this row, None when it has never been classified.
    """

    id: str
    payee_name: str = ""
    raw_description: str = ""
    amount: Optional[float] = None
    timestamp: Optional[datetime] = None
    whitelisted: bool = False
    user_id: str = ""
    flagged_gambling: Optional[bool] = None

    @property
    def abs_amount(self) -> float:
        return abs(self.amount) if self.amount is not None else 0.0

    @property
    def text(self) -> str:
        """payee + description, the string every keyword rule runs over."""
        return f"{self.payee_name or ''} {self.raw_description or ''}"

    def validate(self) -> None:
        """
        Raises:
            MalformedTransaction: If amount or timestamp is missing.
        """
        if self.amount is None:
            raise MalformedTransaction(f"Transaction {self.id!r} has no amount")
        if self.timestamp is None:
            raise MalformedTransaction(f"Transaction {self.id!r} has no timestamp")

    def with_flag(self, flagged_gambling: bool) -> "Transaction":
        return replace(self, flagged_gambling=flagged_gambling)

    @classmethod
    def from_record(cls, record: dict) -> "Transaction":
        """
        Build a Transaction from a ledger/CSV row.

        Accepts either the ledger's column names (transaction_id, description,
        is_whitelisted) or the model's own. Missing or unparseable amounts and
        timestamps are kept as None so classify() can fail safe on them.
        Naive timestamps are assumed to be UTC.
        """
        def _get(*keys, default=None):
            for key in keys:
                value = record.get(key)
                if value is not None and not (pd.api.types.is_scalar(value) and pd.isna(value)):
                    return value
            return default

        amount = _get("amount")
        try:
            amount = float(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None

        timestamp = _get("timestamp", "transaction_date")
        if timestamp is not None:
            try:
                ts = pd.Timestamp(timestamp)
                if ts.tzinfo is None:
                    ts = ts.tz_localize("UTC")
                timestamp = ts.to_pydatetime()
            except (TypeError, ValueError):
                timestamp = None

        flagged = _get("flagged_gambling")
        whitelisted = _get("whitelisted", "is_whitelisted", default=False)

        return cls(
            id=str(_get("id", "transaction_id", default="")),
            payee_name=str(_get("payee_name", "payee", default="")),
            raw_description=str(_get("raw_description", "description", default="")),
            amount=amount,
            timestamp=timestamp,
            whitelisted=_as_bool(whitelisted),
            user_id=str(_get("user_id", "customer_id", default="")),
            flagged_gambling=_as_bool(flagged) if flagged is not None else None,
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y", "t"}
    return bool(value)


@dataclass
class EnrichmentResult:
    """Resolved merchant identity for one payee/description pair."""

    original_payee_name: str
    original_description: str
    enriched_payee_name: str
    merchant_type: MerchantType = MerchantType.UNKNOWN
    is_gambling: bool = False
    confidence: int = 0
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def copy(self) -> "EnrichmentResult":
        """Detached copy, so cached results can't be mutated by callers."""
        return replace(self, tags=list(self.tags), metadata=dict(self.metadata))

    def summary(self) -> dict:
        return {
            "enriched_payee_name": self.enriched_payee_name,
            "merchant_type": self.merchant_type.value,
            "is_gambling": self.is_gambling,
            "confidence": self.confidence,
            "category": self.category,
        }


@dataclass(frozen=True)
class MerchantEntry:
    """A community-submitted merchant classification."""

    merchant_name: str
    display_name: Optional[str] = None
    type: MerchantType = MerchantType.UNKNOWN
    is_gambling: bool = False
    confidence: int = 0
    category: Optional[str] = None
    tags: tuple[str, ...] = ()
    metadata: dict = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_record(cls, record: dict) -> "MerchantEntry":
        """Builds an entry from a store row (snake_case or camelCase keys)."""
        return cls(
            merchant_name=record.get("merchant_name") or record.get("merchantName") or "",
            display_name=record.get("display_name") or record.get("displayName"),
            type=MerchantType.coerce(record.get("type")),
            is_gambling=_as_bool(record.get("is_gambling", record.get("isGambling", False))),
            confidence=int(record.get("confidence") or 0),
            category=record.get("category"),
            tags=tuple(record.get("tags") or ()),
            metadata=dict(record.get("metadata") or {}),
        )


@dataclass
class ClassificationResult:
    """
    Classifier output for one transaction.

    confidence is only ever raised while signals are fused; patterns keeps
    the contributing signal tags in the order they fired, without repeats.
    """

    is_gambling: bool = False
    confidence: int = 0
    gambling_type: Optional[str] = None
    patterns: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def add_patterns(self, patterns) -> None:
        for pattern in patterns:
            if pattern not in self.patterns:
                self.patterns.append(pattern)

    def is_actionable(self, threshold: int) -> bool:
        """True when this result should trigger an intervention."""
        return self.is_gambling and self.confidence >= threshold


@dataclass
class ClassifiedTransaction:
    """A transaction paired with its classification."""

    transaction: Transaction
    classification: ClassificationResult

    @property
    def amount(self) -> float:
        return self.transaction.abs_amount

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.transaction.timestamp

    @property
    def gambling_type(self) -> Optional[str]:
        return self.classification.gambling_type

    @property
    def patterns(self) -> list[str]:
        return self.classification.patterns


@dataclass
class WorstWeek:
    start_date: date                 # Sunday the week starts on
    amount: float
    transaction_count: int


@dataclass
class Baseline:
    """Aggregate gambling loss statistics over a closed date range."""

    total_lost: float
    transaction_count: int
    average_weekly: float
    average_monthly: float
    worst_week: Optional[WorstWeek]
    most_common_type: Optional[str]
    primary_trigger: str
    patterns: list[str] = field(default_factory=list)
    projected_yearly_savings: float = 0.0


@dataclass
class BingeEpisode:
    """A run of gambling transactions clustered inside the binge window."""

    transactions: list = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.transactions)

    @property
    def start(self) -> datetime:
        return self.transactions[0].timestamp

    @property
    def end(self) -> datetime:
        return self.transactions[-1].timestamp

    @property
    def total_amount(self) -> float:
        return sum(abs(t.amount) for t in self.transactions)


@dataclass
class BaselineReport:
    """Baseline plus the breakdowns used by the baseline CLI report."""

    baseline: Baseline
    has_escalation: bool
    binge_count: int
    type_breakdown: dict = field(default_factory=dict)
    day_breakdown: dict = field(default_factory=dict)
    time_breakdown: dict = field(default_factory=dict)
    largest_transaction: Optional[dict] = None
    streaks: Optional[dict] = None


@dataclass
class WhitelistSuggestion:
    """A payee that looks like a regular bill rather than gambling."""

    merchant_name: str
    category: str
    confidence: int
    reason: str
    count: int
    average_amount: float
    variation: float
