"""
gambling_signals.py
--------------------
Concrete classifier signals. One class per heuristic.

Base signals (fused by taking the maximum confidence):
    MerchantSignal  : the resolved merchant identity says gambling.
    KeywordSignal   : gambling vocabulary / operator names in the text.
    HistoricalSignal: this payee was gambling before, or is paid in
                      tightly clustered amounts.

Bonus signals (add a fixed bonus to whatever the base signals scored):
    SequenceSignal  : a cash withdrawal shortly before.
    TemporalSignal  : weekend night, late night or payday timing.

Keyword tables and type rules come from config.yaml; only the matching
structure lives in code.
"""

from datetime import timedelta
from typing import List, Optional

from config.config_loader import get_classifier_config
from core.exceptions import LookupUnavailable
from core.models import Transaction
from core.pattern_detector import amount_cv
from core.policy import PolicyConstants
from signals.base_signal import (
    FUSION_BONUS,
    FUSION_MAX,
    BaseSignal,
    SignalContext,
    SignalResult,
)


# =============================================================================
# MERCHANT IDENTITY
# =============================================================================
class MerchantSignal(BaseSignal):
    """
    Carries the resolver's verdict into the classification.

    Review-only venue guesses (a lone "hotel" with a small amount) stay in
    the enrichment summary but never count as a match.
    """

    fusion = FUSION_MAX

    def __init__(self):
        super().__init__("merchant")
        self.type_map = get_classifier_config()["merchant_type_map"]

    def _evaluate(self, context: SignalContext) -> SignalResult | None:
        enrichment = context.enrichment
        if enrichment is None or not enrichment.is_gambling:
            return None
        if enrichment.metadata.get("venue_details", {}).get("requires_review"):
            return None
        return SignalResult(
            name=self.name,
            confidence=enrichment.confidence,
            patterns=["merchant_match"],
            gambling_type=self.type_map.get(enrichment.merchant_type.value),
        )


# =============================================================================
# KEYWORDS
# =============================================================================
class KeywordSignal(BaseSignal):
    """
    Direct vocabulary match.

    Any gambling keyword → 95, typed from the longest matched keyword (so
    "sportsbet" wins over the generic "bet"). Otherwise two or more venue
    keywords → 70, type venue.
    """

    fusion = FUSION_MAX
    KEYWORD_CONFIDENCE = 95
    VENUE_CONFIDENCE = 70

    def __init__(self):
        super().__init__("keyword")
        cfg = get_classifier_config()
        self.gambling_keywords: List[str] = [k.lower() for k in cfg["gambling_keywords"]]
        self.venue_keywords: List[str] = [k.lower() for k in cfg["venue_keywords"]]
        self.type_rules = cfg["type_rules"]
        self.default_type = cfg["default_type"]

    def _evaluate(self, context: SignalContext) -> SignalResult | None:
        txn = context.transaction
        text = f"{txn.raw_description or ''} {txn.payee_name or ''}".lower()

        matched = [k for k in self.gambling_keywords if k in text]
        if matched:
            keyword = max(matched, key=len)
            return SignalResult(
                name=self.name,
                confidence=self.KEYWORD_CONFIDENCE,
                patterns=["keyword_match"],
                gambling_type=self.determine_gambling_type(keyword),
                metadata={"matched_keyword": keyword},
            )

        venue_hits = [k for k in self.venue_keywords if k in text]
        if len(venue_hits) >= 2:
            return SignalResult(
                name=self.name,
                confidence=self.VENUE_CONFIDENCE,
                patterns=["keyword_match"],
                gambling_type="venue",
                metadata={"venue_keywords": venue_hits},
            )
        return None

    def determine_gambling_type(self, keyword: str) -> str:
        for rule in self.type_rules:
            if any(fragment in keyword for fragment in rule["contains"]):
                return rule["type"]
        return self.default_type


# =============================================================================
# PAYEE HISTORY
# =============================================================================
class HistoricalSignal(BaseSignal):
    """
    Looks at this payee's prior transactions.

    More than half previously gambling → 85. Otherwise three or more priors
    whose amounts cluster tightly (CV below threshold) → 75.
    """

    fusion = FUSION_MAX
    degrade_on = (LookupUnavailable, OSError)
    REPEAT_CONFIDENCE = 85
    AMOUNT_PATTERN_CONFIDENCE = 75

    def __init__(self, policy: PolicyConstants):
        super().__init__("historical")
        self.policy = policy

    def _evaluate(self, context: SignalContext) -> SignalResult | None:
        txn = context.transaction
        if context.history is None or not (txn.payee_name or "").strip():
            return None

        prior = [
            t for t in context.history.find_by_payee(
                txn.payee_name, limit=self.policy.history_limit, before=txn.timestamp
            )
            if t.id != txn.id
        ]
        if not prior:
            return None

        gambling_count = sum(1 for t in prior if self._was_gambling(t))
        if gambling_count / len(prior) > self.policy.historical_gambling_ratio:
            return SignalResult(
                name=self.name,
                confidence=self.REPEAT_CONFIDENCE,
                patterns=["historical_pattern", "repeat_merchant"],
                metadata={"prior_count": len(prior), "prior_gambling_count": gambling_count},
            )

        if len(prior) >= 3:
            cv = amount_cv(t.abs_amount for t in prior)
            if cv < self.policy.amount_cv_threshold:
                return SignalResult(
                    name=self.name,
                    confidence=self.AMOUNT_PATTERN_CONFIDENCE,
                    patterns=["amount_pattern", "repeat_merchant"],
                    metadata={"prior_count": len(prior), "amount_cv": round(cv, 4)},
                )
        return None

    @staticmethod
    def _was_gambling(txn: Transaction) -> bool:
        # Stored verdict when there is one; otherwise anything not whitelisted.
        if txn.flagged_gambling is not None:
            return txn.flagged_gambling or "gambling" in (txn.raw_description or "").lower()
        return "gambling" in (txn.raw_description or "").lower() or not txn.whitelisted


# =============================================================================
# PRE-GAMBLING SEQUENCE
# =============================================================================
class SequenceSignal(BaseSignal):
    """Cash withdrawal within the lookback window before this transaction → bonus."""

    fusion = FUSION_BONUS
    degrade_on = (LookupUnavailable, OSError)

    def __init__(self, policy: PolicyConstants):
        super().__init__("sequence")
        self.policy = policy
        self.patterns = [p.lower() for p in get_classifier_config()["pre_gambling_patterns"]]

    def _evaluate(self, context: SignalContext) -> SignalResult | None:
        txn = context.transaction
        if context.history is None:
            return None

        start = txn.timestamp - timedelta(hours=self.policy.sequence_lookback_hours)
        recent = context.history.find_in_window(start, txn.timestamp)

        for prev in reversed(recent):
            if prev.id == txn.id:
                continue
            if self._is_withdrawal(prev):
                return SignalResult(
                    name=self.name,
                    confidence=self.policy.sequence_bonus,
                    patterns=["sequence_pattern", "pre_gambling_withdrawal"],
                    metadata={"pre_gambling_activity": prev},
                )
        return None

    def _is_withdrawal(self, txn: Transaction) -> bool:
        desc = (txn.raw_description or "").lower()
        payee = (txn.payee_name or "").lower()
        return any(p in desc or p in payee for p in self.patterns)


# =============================================================================
# TIMING
# =============================================================================
class TemporalSignal(BaseSignal):
    """
    Timing bonus. Mutually exclusive, first match wins:
        weekend night (Fri/Sat, 18:00+) → late night (22:00–04:00) → payday.
    """

    fusion = FUSION_BONUS

    def __init__(self, policy: PolicyConstants):
        super().__init__("temporal")
        self.policy = policy

    def _evaluate(self, context: SignalContext) -> SignalResult | None:
        pattern = self.temporal_pattern(context.local_time)
        if pattern is None:
            return None
        return SignalResult(
            name=self.name,
            confidence=self.policy.temporal_bonus,
            patterns=[f"temporal_{pattern}"],
            metadata={"temporal_pattern": pattern},
        )

    @staticmethod
    def temporal_pattern(local_time) -> Optional[str]:
        weekday = local_time.weekday()       # Monday = 0
        hour = local_time.hour
        day = local_time.day

        if weekday in (4, 5) and hour >= 18:
            return "weekend_night"
        if hour >= 22 or hour < 4:
            return "late_night"
        if 14 <= day <= 17 or day >= 28 or day <= 3:
            return "payday"
        return None


# =============================================================================
# REGISTRY
# =============================================================================
def get_all_signals(policy: PolicyConstants) -> List[BaseSignal]:
    """Returns one instance of every signal, base signals first."""
    return [
        MerchantSignal(),
        KeywordSignal(),
        HistoricalSignal(policy),
        SequenceSignal(policy),
        TemporalSignal(policy),
    ]
