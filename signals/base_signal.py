"""
base_signal.py
---------------
Abstract base class for all classifier signals.

A signal is one independent heuristic check over a transaction. Each
concrete signal (keyword, merchant, historical, sequence, temporal)
inherits from this and implements _evaluate().

Signals declare how their result is fused into a classification:
    - FUSION_MAX:   confidence is a standalone score; the classifier keeps
                    the maximum across signals.
    - FUSION_BONUS: confidence is an additive bonus on top of whatever the
                    base signals produced.

Signals that read the ledger list the exceptions they degrade on; any of
those raised during evaluation makes the signal count as absent.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple, Type
from zoneinfo import ZoneInfo

from core.collaborators import HistoryProvider
from core.models import EnrichmentResult, Transaction
from core.policy import PolicyConstants

logger = logging.getLogger(__name__)

FUSION_MAX = "max"
FUSION_BONUS = "bonus"


@dataclass
class SignalContext:
    """Everything a signal may look at for one transaction."""

    transaction: Transaction
    history: Optional[HistoryProvider]
    enrichment: Optional[EnrichmentResult]
    policy: PolicyConstants

    @property
    def local_time(self) -> datetime:
        """Timestamp in the policy's local timezone, or its own offset if none is set."""
        ts = self.transaction.timestamp
        if self.policy.local_timezone:
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=ZoneInfo("UTC"))
            return ts.astimezone(ZoneInfo(self.policy.local_timezone))
        return ts


@dataclass
class SignalResult:
    name: str
    confidence: int                  # Score for FUSION_MAX, bonus for FUSION_BONUS
    patterns: list[str] = field(default_factory=list)
    gambling_type: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class BaseSignal(ABC):
    """
    Abstract base for classifier signals.

    Subclasses implement _evaluate(). This class handles degradation on
    collaborator failures.
    """

    fusion: str = FUSION_MAX
    degrade_on: Tuple[Type[BaseException], ...] = ()

    def __init__(self, name: str):
        self.name = name

    def evaluate(self, context: SignalContext) -> SignalResult | None:
        """
        Run the signal.

        Returns:
            SignalResult if the signal fired, None otherwise (including when
            a collaborator it depends on failed).
        """
        try:
            return self._evaluate(context)
        except self.degrade_on as e:
            logger.warning(
                f"Signal '{self.name}' skipped for transaction "
                f"{context.transaction.id!r}: {type(e).__name__}: {e}"
            )
            return None

    @abstractmethod
    def _evaluate(self, context: SignalContext) -> SignalResult | None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, fusion={self.fusion!r})"
