"""
pipeline.py
------------
Main orchestration layer. Wires together:
    1. MerchantIdentityResolver  →  enriches payee/description text
    2. TransactionClassifier     →  per-transaction gambling determination
    3. Baseline aggregation      →  per-user loss statistics and patterns
    4. Output serialization      →  one flat row per transaction

Ordering contract: a user's transactions are classified one at a time in
chronological order, against a ledger holding only that user's
already-classified earlier transactions. The historical and sequence
signals depend on it. Different users are independent and can be spread
over a thread pool.

Usage:
    from pipeline import GamblingDetectionPipeline

    pipeline = GamblingDetectionPipeline(max_workers=4)
    results_df = pipeline.run(transactions_df)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import pandas as pd

from config.config_loader import load_config
from core.baseline_aggregator import _as_datetime, build_baseline_report
from core.collaborators import AllowList, InMemoryLedger, MerchantStore
from core.merchant_resolver import MerchantIdentityResolver
from core.models import BaselineReport, ClassifiedTransaction, Transaction
from core.policy import PolicyConstants
from core.transaction_classifier import TransactionClassifier

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = [
    "user_id", "transaction_id", "timestamp", "payee_name", "description",
    "amount", "is_gambling", "confidence", "actionable", "gambling_type",
    "patterns", "enriched_payee_name", "merchant_type", "pre_gambling_activity",
]


def _chronological_key(txn: Transaction):
    # Rows without a timestamp go last; they classify as malformed anyway.
    return (txn.timestamp is None, txn.timestamp.timestamp() if txn.timestamp else 0.0)


class GamblingDetectionPipeline:
    """
    End-to-end gambling detection pipeline.

    Orchestrates enrichment → classification → aggregation without exposing
    internal objects to callers.
    """

    def __init__(
        self,
        policy: PolicyConstants | None = None,
        resolver: MerchantIdentityResolver | None = None,
        merchant_store: MerchantStore | None = None,
        allow_list: AllowList | None = None,
        max_workers: int = 1,
    ):
        """
        Args:
            policy: Override policy constants from config.
            resolver: Shared resolver (and cache). Built from merchant_store if None.
            merchant_store: Crowdsourced registry for the default resolver.
            allow_list: Payees exempted from classification.
            max_workers: Users classified concurrently.
        """
        self.config = load_config()
        self.policy = policy or PolicyConstants.from_config()
        self.resolver = resolver or MerchantIdentityResolver(
            merchant_store=merchant_store, policy=self.policy
        )
        self.classifier = TransactionClassifier(
            resolver=self.resolver, allow_list=allow_list, policy=self.policy
        )
        self.max_workers = max(1, max_workers)

        logger.info(
            f"Pipeline initialized. "
            f"Registry: {self.resolver.registry!r}. "
            f"Signals: {[s.name for s in self.classifier.signals]}. "
            f"Action threshold: {self.policy.action_confidence_threshold}. "
            f"Workers: {self.max_workers}."
        )

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, transactions: pd.DataFrame) -> pd.DataFrame:
        """
        Classify every transaction.

        Args:
            transactions: DataFrame with columns transaction_id (or id),
                payee_name, amount, timestamp and optionally user_id,
                description, is_whitelisted.

        Returns:
            DataFrame with one row per transaction (OUTPUT_COLUMNS), sorted
            by user then time.
        """
        logger.info(f"Pipeline starting. Input: {len(transactions):,} transactions.")

        classified = self.classify_all(transactions)
        total = sum(len(v) for v in classified.values())
        logger.info(f"Classification complete. Users: {len(classified):,}, transactions: {total:,}.")

        output_df = self.serialize(classified)
        logger.info(
            f"Pipeline complete. Actionable: {int(output_df['actionable'].sum()) if len(output_df) else 0:,} "
            f"of {len(output_df):,} rows."
        )
        return output_df

    def classify_all(self, transactions: pd.DataFrame) -> Dict[str, List[ClassifiedTransaction]]:
        """Classifies each user's stream in order; users run in parallel when max_workers > 1."""
        streams = self._split_by_user(transactions)

        if self.max_workers == 1 or len(streams) <= 1:
            return {user: self.classify_stream(txns) for user, txns in streams.items()}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {user: pool.submit(self.classify_stream, txns) for user, txns in streams.items()}
            return {user: future.result() for user, future in futures.items()}

    def classify_stream(
        self, transactions: List[Transaction], history: InMemoryLedger | None = None
    ) -> List[ClassifiedTransaction]:
        """
        Classify one user's transactions in chronological order.

        Args:
            transactions: One user's transactions, in any order.
            history: Earlier, already-classified transactions for this user.
                Appended to as the stream is processed.
        """
        ledger = history if history is not None else InMemoryLedger()
        results: List[ClassifiedTransaction] = []

        for txn in sorted(transactions, key=_chronological_key):
            classification = self.classifier.classify(txn, ledger)
            results.append(ClassifiedTransaction(transaction=txn, classification=classification))
            ledger.append(txn.with_flag(self.classifier.is_actionable(classification)))

        return results

    def run_baselines(
        self,
        transactions: pd.DataFrame,
        range_start,
        range_end,
        as_of=None,
    ) -> Dict[str, Optional[BaselineReport]]:
        """
        Baseline report per user over [range_start, range_end].

        Transactions before the range still feed the classifier's history;
        only those inside the range are aggregated.
        """
        return self.baselines_from_classified(
            self.classify_all(transactions), range_start, range_end, as_of=as_of
        )

    def baselines_from_classified(
        self,
        classified: Dict[str, List[ClassifiedTransaction]],
        range_start,
        range_end,
        as_of=None,
    ) -> Dict[str, Optional[BaselineReport]]:
        """Same as run_baselines, over the output of classify_all()."""
        start, end = _as_datetime(range_start), _as_datetime(range_end)
        reports: Dict[str, Optional[BaselineReport]] = {}

        for user, items in classified.items():
            in_range = [
                c for c in items
                if c.timestamp is not None and start <= _as_datetime(c.timestamp) <= end
            ]
            reports[user] = build_baseline_report(in_range, start, end, self.policy, as_of=as_of)

        return reports

    # -------------------------------------------------------------------------
    # INTERNAL: INPUT PREPARATION
    # -------------------------------------------------------------------------

    def _split_by_user(self, transactions: pd.DataFrame) -> Dict[str, List[Transaction]]:
        """Validates input columns and groups rows into per-user Transaction lists."""
        required_cols = ["payee_name", "amount", "timestamp"]
        missing = [c for c in required_cols if c not in transactions.columns]
        if "transaction_id" not in transactions.columns and "id" not in transactions.columns:
            missing.append("transaction_id")
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

        streams: Dict[str, List[Transaction]] = {}
        for record in transactions.to_dict(orient="records"):
            txn = Transaction.from_record(record)
            streams.setdefault(txn.user_id, []).append(txn)
        return streams

    # -------------------------------------------------------------------------
    # OUTPUT SERIALIZATION
    # -------------------------------------------------------------------------

    def serialize(self, classified: Dict[str, List[ClassifiedTransaction]]) -> pd.DataFrame:
        """Flattens classified transactions into the output schema."""
        rows = []
        for user, items in classified.items():
            for c in items:
                txn, result = c.transaction, c.classification
                enrichment = result.metadata.get("enrichment") or {}
                pre_activity = result.metadata.get("pre_gambling_activity")
                rows.append({
                    "user_id": user,
                    "transaction_id": txn.id,
                    "timestamp": txn.timestamp.isoformat() if txn.timestamp else None,
                    "payee_name": txn.payee_name,
                    "description": txn.raw_description,
                    "amount": txn.amount,
                    "is_gambling": result.is_gambling,
                    "confidence": result.confidence,
                    "actionable": self.classifier.is_actionable(result),
                    "gambling_type": result.gambling_type,
                    "patterns": "|".join(result.patterns),
                    "enriched_payee_name": enrichment.get("enriched_payee_name"),
                    "merchant_type": enrichment.get("merchant_type"),
                    "pre_gambling_activity": pre_activity.id if pre_activity is not None else None,
                })

        if not rows:
            return pd.DataFrame(columns=OUTPUT_COLUMNS)

        # Items within a user are already chronological; keep that order.
        df = pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
        return df.sort_values("user_id", kind="stable").reset_index(drop=True)
