"""
taxonomy.py
------------
Merchant registry lookup layer.

Loads the registry block from config.yaml (known operators, false-positive
brands, venue indicators) into an immutable, versioned table. Every entry's
type is checked against the MerchantType taxonomy at load time, so a typo in
config fails at startup rather than silently classifying as unknown.

Registry updates happen in config.yaml without code changes.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from config.config_loader import get_registry_config
from core.models import MerchantType


@dataclass(frozen=True)
class OperatorEntry:
    key: str                         # Upper-case substring to match
    type: MerchantType
    confidence: int
    display_name: str
    requires_context: bool = False


@dataclass(frozen=True)
class VenueIndicator:
    keywords: Tuple[str, ...]        # Lower-case; all must co-occur
    type: MerchantType
    confidence: int


@dataclass(frozen=True)
class LoneVenueRule:
    keyword: str
    exclude_keywords: Tuple[str, ...]
    type: MerchantType
    confidence: int


def _merchant_type(value: str, where: str) -> MerchantType:
    try:
        return MerchantType(value)
    except ValueError:
        raise ValueError(
            f"Unknown merchant type '{value}' in {where}. "
            f"Available: {[t.value for t in MerchantType]}"
        ) from None


class MerchantRegistry:
    """
    Immutable lookup tables for merchant identity resolution.

    Built once at init from the config registry block. Thread-safe for reads.
    """

    def __init__(self, registry_config: Optional[Dict] = None):
        config = registry_config if registry_config is not None else get_registry_config()

        self.version: str = str(config.get("version", "unversioned"))
        self._false_positive_patterns: Tuple[re.Pattern, ...] = tuple(
            re.compile(p, re.IGNORECASE) for p in config.get("false_positive_patterns", [])
        )
        self._operators: Tuple[OperatorEntry, ...] = self._load_operators(config.get("operators", []))
        self._context_keywords: Tuple[str, ...] = tuple(
            k.upper() for k in config.get("context_keywords", [])
        )
        self._venue_indicators: Tuple[VenueIndicator, ...] = tuple(
            VenueIndicator(
                keywords=tuple(k.lower() for k in v["keywords"]),
                type=_merchant_type(v["type"], "venue_indicators"),
                confidence=int(v["confidence"]),
            )
            for v in config.get("venue_indicators", [])
        )

        lone = config.get("lone_venue")
        self._lone_venue: Optional[LoneVenueRule] = (
            LoneVenueRule(
                keyword=lone["keyword"].lower(),
                exclude_keywords=tuple(k.lower() for k in lone.get("exclude_keywords", [])),
                type=_merchant_type(lone["type"], "lone_venue"),
                confidence=int(lone["confidence"]),
            )
            if lone
            else None
        )

    @staticmethod
    def _load_operators(entries: list) -> Tuple[OperatorEntry, ...]:
        """Builds the operator table, keeping config order. Duplicate keys keep the first entry."""
        operators: Dict[str, OperatorEntry] = {}
        for entry in entries:
            key = str(entry["key"]).upper()
            if key in operators:
                continue
            operators[key] = OperatorEntry(
                key=key,
                type=_merchant_type(entry["type"], f"operator '{key}'"),
                confidence=int(entry["confidence"]),
                display_name=entry.get("display_name", key.title()),
                requires_context=bool(entry.get("requires_context", False)),
            )
        return tuple(operators.values())

    # -------------------------------------------------------------------------
    # LOOKUPS
    # -------------------------------------------------------------------------

    def is_false_positive(self, text: str) -> bool:
        """True if the text names a known non-gambling brand."""
        return any(p.search(text) for p in self._false_positive_patterns)

    def has_context(self, text: str) -> bool:
        """True if the text carries a secondary gambling context keyword."""
        upper = text.upper()
        return any(k in upper for k in self._context_keywords)

    def match_operator(self, text: str) -> Optional[OperatorEntry]:
        """
        First operator whose key appears in the text.

        Context-gated entries are skipped (not terminal) when the text has no
        context keyword, so a later entry can still match.
        """
        upper = text.upper()
        for entry in self._operators:
            if entry.key not in upper:
                continue
            if entry.requires_context and not self.has_context(upper):
                continue
            return entry
        return None

    def lookup(self, key: str) -> Optional[OperatorEntry]:
        """Exact lookup of an operator by its registry key."""
        key = key.upper()
        return next((e for e in self._operators if e.key == key), None)

    def match_venue_indicator(self, text: str) -> Optional[Tuple[VenueIndicator, list[str]]]:
        """First venue indicator pair fully present in the text, with the hits."""
        lower = text.lower()
        for indicator in self._venue_indicators:
            hits = [k for k in indicator.keywords if k in lower]
            if len(hits) >= 2 and len(hits) == len(indicator.keywords):
                return indicator, hits
        return None

    @property
    def lone_venue(self) -> Optional[LoneVenueRule]:
        return self._lone_venue

    @property
    def operators(self) -> Tuple[OperatorEntry, ...]:
        return self._operators

    def get_all_merchant_types(self) -> set[MerchantType]:
        """Returns all merchant types present in the operator table."""
        return {e.type for e in self._operators}

    def __len__(self) -> int:
        return len(self._operators)

    def __repr__(self) -> str:
        return f"MerchantRegistry(version={self.version!r}, operators={len(self)})"
