"""
transaction_classifier.py
--------------------------
Gambling determination for a single transaction.

Runs every signal independently, then fuses them:

    combine_max  : base signals (merchant, keyword, historical). The result
                   keeps the highest confidence seen; it is never lowered.
    combine_bonus: sequence and temporal signals. A fixed bonus is added on
                   top of the base confidence, capped at 100. Bonuses alone
                   never make a transaction gambling.

Classification is read-only. The history provider is only queried, never
written, and a failing provider only removes the signals that read it.
"""

import logging
from typing import List, Optional

from core.collaborators import AllowList, HistoryProvider
from core.exceptions import MalformedTransaction
from core.merchant_resolver import MerchantIdentityResolver
from core.models import ClassificationResult, MerchantType, Transaction
from core.policy import PolicyConstants
from signals.base_signal import FUSION_BONUS, BaseSignal, SignalContext, SignalResult
from signals.gambling_signals import get_all_signals

logger = logging.getLogger(__name__)


def combine_max(result: ClassificationResult, signal: SignalResult) -> None:
    """Fuses a base signal: maximum confidence, type follows the strongest typed signal."""
    if signal.gambling_type and (result.gambling_type is None or signal.confidence > result.confidence):
        result.gambling_type = signal.gambling_type
    result.is_gambling = True
    result.confidence = max(result.confidence, signal.confidence)
    result.add_patterns(signal.patterns)
    result.metadata.update(signal.metadata)


def combine_bonus(result: ClassificationResult, signal: SignalResult) -> None:
    """Fuses a bonus signal: additive, capped at 100."""
    result.confidence = min(100, result.confidence + signal.confidence)
    result.add_patterns(signal.patterns)
    result.metadata.update(signal.metadata)


class TransactionClassifier:
    """
    Usage:
        classifier = TransactionClassifier()
        result = classifier.classify(transaction, history)
        if result.is_actionable(classifier.policy.action_confidence_threshold):
            ...
    """

    def __init__(
        self,
        resolver: MerchantIdentityResolver | None = None,
        allow_list: AllowList | None = None,
        policy: PolicyConstants | None = None,
        signals: List[BaseSignal] | None = None,
    ):
        self.policy = policy or PolicyConstants.from_config()
        self.resolver = resolver or MerchantIdentityResolver(policy=self.policy)
        self.allow_list = allow_list
        self.signals = signals if signals is not None else get_all_signals(self.policy)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def classify(
        self, transaction: Transaction, history: Optional[HistoryProvider] = None
    ) -> ClassificationResult:
        """
        Classify one transaction.

        Args:
            transaction: The transaction to classify.
            history: Read-only view of the same user's earlier transactions.
                None disables the historical and sequence signals.

        Returns:
            ClassificationResult. Whitelisted, malformed and known
            false-positive transactions come back as is_gambling=False,
            confidence=0 without any signal running.
        """
        result = ClassificationResult()

        if self._is_whitelisted(transaction):
            result.metadata["whitelisted"] = True
            return result

        try:
            transaction.validate()
        except MalformedTransaction as e:
            logger.debug(f"Skipping malformed transaction: {e}")
            result.metadata["malformed"] = str(e)
            return result

        enrichment = self.resolver.resolve_transaction(transaction)
        result.metadata["enrichment"] = enrichment.summary()
        if enrichment.merchant_type == MerchantType.LEGITIMATE and enrichment.metadata.get("false_positive"):
            return result

        context = SignalContext(
            transaction=transaction,
            history=history,
            enrichment=enrichment,
            policy=self.policy,
        )

        # --- Base signals ---
        for signal in self.signals:
            if signal.fusion == FUSION_BONUS:
                continue
            fired = signal.evaluate(context)
            if fired is not None:
                combine_max(result, fired)

        # --- Bonus signals add to whatever the base signals scored ---
        for signal in self.signals:
            if signal.fusion != FUSION_BONUS:
                continue
            fired = signal.evaluate(context)
            if fired is not None:
                combine_bonus(result, fired)

        result.confidence = max(0, min(100, result.confidence))
        logger.debug(
            f"Classified {transaction.id!r}: gambling={result.is_gambling}, "
            f"confidence={result.confidence}, patterns={result.patterns}"
        )
        return result

    def is_actionable(self, result: ClassificationResult) -> bool:
        """Applies the configured intervention threshold."""
        return result.is_actionable(self.policy.action_confidence_threshold)

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _is_whitelisted(self, transaction: Transaction) -> bool:
        if transaction.whitelisted:
            return True
        return self.allow_list is not None and self.allow_list.is_whitelisted(transaction.payee_name)
