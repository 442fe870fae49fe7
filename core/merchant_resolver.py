"""
merchant_resolver.py
---------------------
Merchant identity resolution.

Turns a raw payee/description pair from a bank feed into an enriched
merchant identity: a known operator, a crowdsourced entry, a known false
positive, or an inferred gambling venue.

Resolution order (first decisive match wins, metadata merges cumulatively):
    1. False-positive brands    → legitimate, confidence 100, stop.
    2. Static operator registry → operator type/confidence.
    3. Crowdsourced registry    → overrides/merges step 2.
    4. Venue inference          → only when nothing matched or confidence
                                  is below the venue inference ceiling.
    5. Cache and return.

resolve() never raises for malformed input and never lets a crowdsourced
lookup failure escape; both degrade to "no match".
"""

import logging
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

from config.config_loader import get_whitelist_suggestion_config
from core.collaborators import MerchantStore
from core.exceptions import LookupUnavailable
from core.merchant_cache import MerchantCache
from core.models import (
    EnrichmentResult,
    MerchantEntry,
    MerchantType,
    Transaction,
    WhitelistSuggestion,
)
from core.policy import PolicyConstants
from core.taxonomy import MerchantRegistry

logger = logging.getLogger(__name__)


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and np.isnan(value):
        return ""
    return str(value).strip()


def _clean_amount(value: Any) -> Optional[float]:
    try:
        amount = abs(float(value))
    except (TypeError, ValueError):
        return None
    return None if np.isnan(amount) else amount


class MerchantIdentityResolver:
    """
    Resolves payee/description text to an EnrichmentResult.

    Usage:
        resolver = MerchantIdentityResolver(merchant_store=store)
        enrichment = resolver.resolve("SPORTSBET PTY LTD", "Card purchase")
    """

    def __init__(
        self,
        registry: MerchantRegistry | None = None,
        merchant_store: MerchantStore | None = None,
        cache: MerchantCache | None = None,
        policy: PolicyConstants | None = None,
    ):
        self.policy = policy or PolicyConstants.from_config()
        self.registry = registry or MerchantRegistry()
        self.merchant_store = merchant_store
        self.cache = cache if cache is not None else MerchantCache(self.policy.merchant_cache_size)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def resolve(self, payee_name: Any, description: Any, amount: Any = None) -> EnrichmentResult:
        """
        Resolve a merchant identity.

        Args:
            payee_name: Payee as it appears on the feed. None/NaN treated as empty.
            description: Raw transaction description. None/NaN treated as empty.
            amount: Optional transaction amount; only the small-amount venue
                heuristic reads it.

        Returns:
            EnrichmentResult. Unknown text resolves to merchant_type=unknown,
            confidence 0.
        """
        payee = _clean_text(payee_name)
        desc = _clean_text(description)
        amt = _clean_amount(amount)

        key = self._cache_key(payee, desc, amt)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        enrichment = EnrichmentResult(
            original_payee_name=payee,
            original_description=desc,
            enriched_payee_name=payee,
        )
        text = f"{payee} {desc}"

        # --- Step 1: False positives short-circuit everything ---
        if self.registry.is_false_positive(text):
            enrichment.merchant_type = MerchantType.LEGITIMATE
            enrichment.is_gambling = False
            enrichment.confidence = 100
            enrichment.category = "legitimate"
            enrichment.metadata["false_positive"] = True
            self.cache.put(key, enrichment)
            logger.debug(f"False positive: {text.strip()!r}")
            return enrichment

        matched = False

        # --- Step 2: Static operator registry ---
        operator = self.registry.match_operator(text)
        if operator is not None:
            matched = True
            enrichment.enriched_payee_name = operator.display_name
            enrichment.merchant_type = operator.type
            enrichment.is_gambling = True
            enrichment.confidence = operator.confidence
            enrichment.category = "gambling"
            enrichment.tags.append(operator.type.value)
            enrichment.metadata["registry_key"] = operator.key
            enrichment.metadata["registry_version"] = self.registry.version

        # --- Step 3: Crowdsourced registry ---
        entry = self._check_crowdsourced(payee)
        if entry is not None:
            matched = True
            enrichment.enriched_payee_name = entry.display_name or payee
            enrichment.merchant_type = entry.type
            enrichment.is_gambling = entry.is_gambling
            enrichment.confidence = max(enrichment.confidence, entry.confidence)
            enrichment.category = entry.category
            enrichment.tags.extend(t for t in entry.tags if t not in enrichment.tags)
            enrichment.metadata["crowdsourced"] = True

        # --- Step 4: Venue inference for generic names ---
        if not matched or enrichment.confidence < self.policy.venue_inference_ceiling:
            self._apply_venue_inference(enrichment, text, amt)

        self.cache.put(key, enrichment)
        return enrichment

    def resolve_transaction(self, txn: Transaction) -> EnrichmentResult:
        """Shortcut: resolves a Transaction's payee, description and amount."""
        return self.resolve(txn.payee_name, txn.raw_description, txn.amount)

    def add_merchant_to_database(self, entry: MerchantEntry | dict) -> MerchantEntry:
        """
        Upsert a crowdsourced merchant entry and flush the resolver cache.

        The whole cache is cleared, not just the entry's key: a new entry can
        change the outcome for any text containing the merchant name.

        Raises:
            RuntimeError: If the resolver has no merchant store.
            Whatever the store raises on a failed write.
        """
        if self.merchant_store is None:
            raise RuntimeError("No merchant store configured; cannot add merchant entries.")
        if isinstance(entry, dict):
            entry = MerchantEntry.from_record(entry)

        saved = self.merchant_store.upsert_merchant(entry)
        self.cache.invalidate()
        logger.info(
            f"Merchant entry saved: {saved.merchant_name!r} "
            f"(type={saved.type.value}, gambling={saved.is_gambling}). Cache cleared."
        )
        return saved

    # -------------------------------------------------------------------------
    # MERCHANT STATISTICS & WHITELIST SUGGESTIONS
    # -------------------------------------------------------------------------

    def merchant_stats(self, transactions: Iterable[Transaction]) -> pd.DataFrame:
        """
        Per-payee spend statistics.

        Returns:
            DataFrame indexed by payee_name with count, total_amount,
            average_amount and amount_cv (population std / mean), sorted by
            count descending.
        """
        rows = [
            {"payee_name": t.payee_name or "Unknown", "amount": t.abs_amount}
            for t in transactions
            if t.amount is not None
        ]
        if not rows:
            return pd.DataFrame(
                columns=["count", "total_amount", "average_amount", "amount_cv"]
            ).rename_axis("payee_name")

        df = pd.DataFrame(rows)
        stats = df.groupby("payee_name", sort=False)["amount"].agg(
            count="size",
            total_amount="sum",
            average_amount="mean",
            std_amount=lambda s: float(np.std(s.values)),
        )
        stats["amount_cv"] = np.where(
            stats["average_amount"] > 0, stats["std_amount"] / stats["average_amount"], 0.0
        )
        stats = stats.drop(columns=["std_amount"])
        return stats.sort_values("count", ascending=False, kind="stable")

    def suggest_whitelist(self, transactions: Iterable[Transaction]) -> List[WhitelistSuggestion]:
        """
        Suggests payees that look like regular bills: frequent, near-constant
        amounts, and not resolved as actionable gambling.
        """
        cfg = get_whitelist_suggestion_config()
        stats = self.merchant_stats(transactions)

        suggestions: List[WhitelistSuggestion] = []
        for merchant_name, row in stats.iterrows():
            if row["count"] < cfg["min_occurrences"] or row["amount_cv"] >= cfg["max_amount_cv"]:
                continue

            enrichment = self.resolve(merchant_name, "", row["average_amount"])
            if enrichment.is_gambling and enrichment.confidence >= self.policy.action_confidence_threshold:
                continue

            suggestions.append(WhitelistSuggestion(
                merchant_name=merchant_name,
                category=self._suggest_category(merchant_name, cfg),
                confidence=int(cfg["confidence"]),
                reason=cfg["reason"],
                count=int(row["count"]),
                average_amount=round(float(row["average_amount"]), 2),
                variation=round(float(row["amount_cv"]), 4),
            ))

        suggestions.sort(key=lambda s: (-s.confidence, -s.count))
        return suggestions

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _cache_key(self, payee: str, description: str, amount: Optional[float]) -> tuple:
        # The small-amount venue heuristic makes the result amount-dependent,
        # so the key carries which side of the threshold the amount falls on.
        if amount is None:
            band = None
        else:
            band = amount < self.policy.venue_small_amount_threshold
        return (f"{payee}:{description}".upper(), band)

    def _check_crowdsourced(self, payee: str) -> Optional[MerchantEntry]:
        if self.merchant_store is None or not payee:
            return None
        try:
            return self.merchant_store.find_merchant(payee)
        except (LookupUnavailable, OSError) as e:
            logger.warning(f"Crowdsourced lookup unavailable for {payee!r}: {e}")
            return None

    def _apply_venue_inference(
        self, enrichment: EnrichmentResult, text: str, amount: Optional[float]
    ) -> None:
        """Infers a gaming venue from co-occurring keywords, merging into enrichment."""
        match = self.registry.match_venue_indicator(text)
        if match is not None:
            indicator, hits = match
            self._merge_venue(enrichment, indicator.type, indicator.confidence, {"indicators": hits})
            return

        rule = self.registry.lone_venue
        if rule is None or amount is None:
            return
        lower = text.lower()
        if rule.keyword not in lower or any(k in lower for k in rule.exclude_keywords):
            return
        if amount < self.policy.venue_small_amount_threshold:
            self._merge_venue(enrichment, rule.type, rule.confidence, {
                "reason": f"{rule.keyword.title()} transaction with small amount",
                "requires_review": True,
            })

    @staticmethod
    def _merge_venue(
        enrichment: EnrichmentResult, venue_type: MerchantType, confidence: int, details: dict
    ) -> None:
        enrichment.merchant_type = venue_type
        enrichment.is_gambling = True
        enrichment.confidence = max(enrichment.confidence, confidence)
        enrichment.category = enrichment.category or "gambling"
        for tag in ("venue", venue_type.value):
            if tag not in enrichment.tags:
                enrichment.tags.append(tag)
        enrichment.metadata["venue_details"] = details

    @staticmethod
    def _suggest_category(merchant_name: str, cfg: dict) -> str:
        name = merchant_name.lower()
        for category, keywords in cfg["category_keywords"].items():
            if any(k in name for k in keywords):
                return category
        return cfg["default_category"]
