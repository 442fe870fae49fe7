"""
policy.py
----------
Policy constants: the externally configurable thresholds every layer reads.

Defaults come from the `policy:` block of config.yaml. Callers can override
individual values without touching the file:

    policy = PolicyConstants.from_config(action_confidence_threshold=80)
"""

from dataclasses import dataclass, fields
from typing import Optional

from config.config_loader import get_policy_config


@dataclass(frozen=True)
class PolicyConstants:
    action_confidence_threshold: int = 70
    binge_window_hours: float = 4.0
    binge_min_size: int = 3
    escalation_fraction_threshold: float = 0.6
    escalation_min_transactions: int = 3
    sequence_lookback_hours: float = 2.0
    sequence_bonus: int = 15
    temporal_bonus: int = 10
    amount_cv_threshold: float = 0.3
    history_limit: int = 10
    historical_gambling_ratio: float = 0.5
    venue_small_amount_threshold: float = 500
    venue_inference_ceiling: int = 80
    merchant_cache_size: int = 10000
    local_timezone: Optional[str] = None

    @classmethod
    def from_config(cls, **overrides) -> "PolicyConstants":
        """
        Builds policy constants from config, applying keyword overrides.

        Raises:
            KeyError: If the config or an override names an unknown constant.
        """
        values = dict(get_policy_config() or {})
        values.update(overrides)

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise KeyError(
                f"Unknown policy constants: {sorted(unknown)}. "
                f"Available: {sorted(known)}"
            )
        return cls(**values)
