"""
test_pipeline.py
-----------------
Integration tests: pipeline orchestration, collaborators, whitelist
suggestions and the CLI entry point.

Run from the project root:
    python -m pytest tests/test_pipeline.py -v
"""

import sys
import os
import glob
import pytest
import pandas as pd
from datetime import datetime, timedelta, timezone

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
from core.collaborators import InMemoryLedger, InMemoryMerchantStore, StaticAllowList
from core.merchant_resolver import MerchantIdentityResolver
from core.models import MerchantEntry, MerchantType, Transaction
from pipeline import GamblingDetectionPipeline, OUTPUT_COLUMNS
import main as cli


UTC = timezone.utc


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config cache before each test for isolation."""
    reset_config()
    yield
    reset_config()


def _make_txn(payee_name, amount, timestamp, txn_id, raw_description="", flagged_gambling=None):
    return Transaction(
        id=txn_id,
        payee_name=payee_name,
        raw_description=raw_description,
        amount=amount,
        timestamp=timestamp,
        user_id="u1",
        flagged_gambling=flagged_gambling,
    )


def _make_transactions_df() -> pd.DataFrame:
    """
    Helper: two users, rows deliberately out of chronological order.

    u1 withdraws cash then bets twice on consecutive days; u2 bets once and
    buys a coffee.
    """
    rows = [
        ("t5", "u2", "Joe's Cafe", "Flat white", -5.00, "2024-03-13 12:00:00"),
        ("t3", "u1", "Sportsbet", "", -80.00, "2024-03-13 10:00:00"),
        ("t4", "u2", "Sportsbet", "", -20.00, "2024-03-13 11:00:00"),
        ("t2", "u1", "Sportsbet", "", -50.00, "2024-03-12 10:00:00"),
        ("t1", "u1", "ATM", "Cash withdrawal", -200.00, "2024-03-12 09:00:00"),
    ]
    return pd.DataFrame(
        rows, columns=["transaction_id", "user_id", "payee_name", "description", "amount", "timestamp"]
    )


# =============================================================================
# PIPELINE TESTS
# =============================================================================

class TestPipeline:

    def test_output_schema_and_order(self):
        result = GamblingDetectionPipeline().run(_make_transactions_df())
        assert list(result.columns) == OUTPUT_COLUMNS
        assert result["transaction_id"].tolist() == ["t1", "t2", "t3", "t4", "t5"]
        assert result["is_gambling"].tolist() == [False, True, True, True, False]
        assert result["actionable"].tolist() == [False, True, True, True, False]

    def test_sequence_and_history_follow_chronological_order(self):
        result = GamblingDetectionPipeline().run(_make_transactions_df()).set_index("transaction_id")

        first_bet = result.loc["t2"]
        assert first_bet["pre_gambling_activity"] == "t1"
        assert "sequence_pattern" in first_bet["patterns"]
        assert "repeat_merchant" not in first_bet["patterns"]

        second_bet = result.loc["t3"]
        assert "repeat_merchant" in second_bet["patterns"]
        assert second_bet["gambling_type"] == "sports"
        assert second_bet["merchant_type"] == "sports_betting"

    def test_users_do_not_share_history(self):
        result = GamblingDetectionPipeline().run(_make_transactions_df()).set_index("transaction_id")
        assert "repeat_merchant" not in result.loc["t4", "patterns"]

    def test_parallel_matches_sequential(self):
        df = _make_transactions_df()
        sequential = GamblingDetectionPipeline(max_workers=1).run(df)
        parallel = GamblingDetectionPipeline(max_workers=4).run(df)
        pd.testing.assert_frame_equal(sequential, parallel)

    def test_ledger_stores_verdicts_not_raw_rows(self):
        # Irregular amounts at an unknown payee: each verdict is "not gambling",
        # so later rows must not count earlier ones as gambling history.
        start = datetime(2024, 3, 4, 10, 0, tzinfo=UTC)
        txns = [
            _make_txn("Local Bookie", amount, start + timedelta(days=i), f"b{i}")
            for i, amount in enumerate([10, 200, 55, 30])
        ]
        classified = GamblingDetectionPipeline().classify_stream(txns)
        assert [c.classification.is_gambling for c in classified] == [False] * 4

    def test_late_hotel_visit_does_not_taint_later_visits(self):
        late = datetime(2024, 3, 12, 23, 0, tzinfo=UTC)
        next_lunch = datetime(2024, 3, 19, 12, 0, tzinfo=UTC)
        pipeline = GamblingDetectionPipeline()
        classified = pipeline.classify_stream([
            _make_txn("Grand Hotel", 45, late, "h1"),
            _make_txn("Grand Hotel", 45, next_lunch, "h2"),
        ])

        assert [pipeline.classifier.is_actionable(c.classification) for c in classified] == [False, False]
        second = classified[1].classification
        assert second.is_gambling is False
        assert "historical_pattern" not in second.patterns

    def test_classify_stream_appends_to_given_ledger(self):
        start = datetime(2024, 3, 4, 10, 0, tzinfo=UTC)
        prior = [
            _make_txn("Local Bookie", 50, start - timedelta(days=d), f"p{d}", flagged_gambling=True)
            for d in (1, 2, 3)
        ]
        ledger = InMemoryLedger(prior)
        classified = GamblingDetectionPipeline().classify_stream(
            [_make_txn("Local Bookie", 50, start, "new")], history=ledger
        )
        assert classified[0].classification.confidence == 85
        assert len(ledger) == 4
        assert ledger.find_by_payee("local bookie", limit=1)[0].flagged_gambling is True

    def test_allow_list(self):
        pipeline = GamblingDetectionPipeline(allow_list=StaticAllowList(["Sportsbet"]))
        result = pipeline.run(_make_transactions_df())
        assert not result["is_gambling"].any()

    def test_whitelist_column(self):
        df = _make_transactions_df()
        df["is_whitelisted"] = df["transaction_id"] == "t3"
        result = GamblingDetectionPipeline().run(df).set_index("transaction_id")
        assert bool(result.loc["t3", "is_gambling"]) is False
        assert bool(result.loc["t2", "is_gambling"]) is True

    def test_crowdsourced_store(self):
        store = InMemoryMerchantStore([MerchantEntry(
            merchant_name="Joe's Cafe", type=MerchantType.GAMING_VENUE, is_gambling=True, confidence=90,
        )])
        result = GamblingDetectionPipeline(merchant_store=store).run(_make_transactions_df())
        assert bool(result.set_index("transaction_id").loc["t5", "is_gambling"]) is True

    def test_malformed_rows_fail_safe(self):
        df = _make_transactions_df()
        df.loc[df["transaction_id"] == "t2", "amount"] = None
        df.loc[df["transaction_id"] == "t4", "timestamp"] = None
        result = GamblingDetectionPipeline().run(df).set_index("transaction_id")
        assert bool(result.loc["t2", "is_gambling"]) is False
        assert bool(result.loc["t4", "is_gambling"]) is False
        assert bool(result.loc["t3", "is_gambling"]) is True

    def test_empty_input(self):
        df = pd.DataFrame(columns=["transaction_id", "user_id", "payee_name", "amount", "timestamp"])
        result = GamblingDetectionPipeline().run(df)
        assert result.empty
        assert list(result.columns) == OUTPUT_COLUMNS

    def test_missing_columns_raise(self):
        with pytest.raises(ValueError, match="Missing required columns"):
            GamblingDetectionPipeline().run(pd.DataFrame({"payee_name": ["Sportsbet"]}))

    def test_run_baselines(self):
        reports = GamblingDetectionPipeline().run_baselines(
            _make_transactions_df(),
            datetime(2024, 3, 1, tzinfo=UTC),
            datetime(2024, 3, 29, tzinfo=UTC),
        )
        assert set(reports) == {"u1", "u2"}
        assert reports["u1"].baseline.total_lost == 130
        assert reports["u1"].baseline.transaction_count == 2
        assert reports["u1"].baseline.primary_trigger == "Planned/Premeditated"
        assert reports["u2"].baseline.total_lost == 20

    def test_baselines_from_classified_matches_run_baselines(self):
        df = _make_transactions_df()
        start, end = datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 3, 29, tzinfo=UTC)
        pipeline = GamblingDetectionPipeline()

        reused = pipeline.baselines_from_classified(pipeline.classify_all(df), start, end)
        assert reused == pipeline.run_baselines(df, start, end)

    def test_run_baselines_keeps_history_before_range(self):
        reports = GamblingDetectionPipeline().run_baselines(
            _make_transactions_df(),
            datetime(2024, 3, 13, tzinfo=UTC),
            datetime(2024, 3, 31, tzinfo=UTC),
        )
        baseline = reports["u1"].baseline
        assert baseline.transaction_count == 1
        assert baseline.total_lost == 80
        assert "repeat_merchant" in baseline.patterns


# =============================================================================
# COLLABORATOR TESTS
# =============================================================================

class TestCollaborators:

    def _ledger(self):
        start = datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        return InMemoryLedger([
            _make_txn("Sportsbet", 10, start + timedelta(hours=2), "c"),
            _make_txn("SPORTSBET", 20, start + timedelta(hours=1), "b"),
            _make_txn("sportsbet", 30, start, "a"),
            _make_txn("ATM", 100, start + timedelta(hours=3), "d"),
            _make_txn("No Time", 5, None, "e"),
        ])

    def test_ledger_ignores_rows_without_timestamp(self):
        assert len(self._ledger()) == 4

    def test_find_by_payee_most_recent_first(self):
        matches = self._ledger().find_by_payee("Sportsbet")
        assert [t.id for t in matches] == ["c", "b", "a"]

    def test_find_by_payee_limit_and_before(self):
        ledger = self._ledger()
        assert [t.id for t in ledger.find_by_payee("sportsbet", limit=2)] == ["c", "b"]
        cutoff = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        assert [t.id for t in ledger.find_by_payee("sportsbet", before=cutoff)] == ["b", "a"]
        assert ledger.find_by_payee("") == []

    def test_find_in_window_is_half_open(self):
        start = datetime(2024, 3, 1, 11, 0, tzinfo=UTC)
        window = self._ledger().find_in_window(start, start + timedelta(hours=2))
        assert [t.id for t in window] == ["b", "c"]

    def test_ledger_from_dataframe(self):
        ledger = InMemoryLedger.from_dataframe(_make_transactions_df())
        assert len(ledger) == 5

    def test_merchant_store_rejects_empty_name(self):
        with pytest.raises(ValueError):
            InMemoryMerchantStore().upsert_merchant(MerchantEntry(merchant_name="  "))

    def test_allow_list_is_case_insensitive(self):
        allow = StaticAllowList(["Origin Energy", ""])
        assert allow.is_whitelisted("ORIGIN ENERGY ")
        assert not allow.is_whitelisted("Sportsbet")
        assert len(allow) == 1


# =============================================================================
# MERCHANT STATS & WHITELIST SUGGESTION TESTS
# =============================================================================

class TestWhitelistSuggestions:

    def _transactions(self):
        start = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
        series = {
            "Origin Energy": [120.0] * 3,
            "Netflix": [15.99] * 4,
            "Sportsbet": [50.0] * 3,
            "Cafe Roma": [5.0, 12.0, 30.0],
            "Anytime Gym": [20.0] * 2,
        }
        txns = []
        for payee, amounts in series.items():
            for i, amount in enumerate(amounts):
                txns.append(_make_txn(payee, -amount, start + timedelta(days=30 * i), f"{payee}-{i}"))
        return txns

    def test_merchant_stats(self):
        stats = MerchantIdentityResolver().merchant_stats(self._transactions())
        assert stats.index[0] == "Netflix"
        assert stats.loc["Netflix", "count"] == 4
        assert stats.loc["Origin Energy", "total_amount"] == pytest.approx(360.0)
        assert stats.loc["Origin Energy", "amount_cv"] == pytest.approx(0.0)
        assert stats.loc["Cafe Roma", "amount_cv"] > 0.1

    def test_merchant_stats_empty(self):
        stats = MerchantIdentityResolver().merchant_stats([])
        assert stats.empty

    def test_suggestions(self):
        suggestions = MerchantIdentityResolver().suggest_whitelist(self._transactions())
        assert [s.merchant_name for s in suggestions] == ["Netflix", "Origin Energy"]

        netflix, origin = suggestions
        assert netflix.category == "subscriptions"
        assert netflix.count == 4
        assert netflix.average_amount == 15.99
        assert origin.category == "utilities"
        assert origin.confidence == 90


# =============================================================================
# CLI TESTS
# =============================================================================

class TestCli:

    def test_end_to_end(self, tmp_path, capsys):
        input_path = tmp_path / "transactions.csv"
        _make_transactions_df().to_csv(input_path, index=False)
        output_dir = tmp_path / "out"

        cli.main(["--input", str(input_path), "--output-dir", str(output_dir), "--workers", "2"])

        written = glob.glob(str(output_dir / "classifications_*.csv"))
        assert len(written) == 1
        assert len(pd.read_csv(written[0])) == 5

        printed = capsys.readouterr().out
        assert "GAMBLING BASELINE SUMMARY" in printed
        assert "User: u1" in printed

    def test_each_user_is_classified_once(self, tmp_path, monkeypatch):
        input_path = tmp_path / "transactions.csv"
        _make_transactions_df().to_csv(input_path, index=False)

        calls = []
        original = GamblingDetectionPipeline.classify_stream

        def counting_classify_stream(self, transactions, history=None):
            calls.append(transactions[0].user_id)
            return original(self, transactions, history)

        monkeypatch.setattr(GamblingDetectionPipeline, "classify_stream", counting_classify_stream)
        cli.main(["--input", str(input_path), "--output-dir", str(tmp_path / "out")])

        assert sorted(calls) == ["u1", "u2"]

    def test_missing_input_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            cli.main(["--input", str(tmp_path / "nope.csv"), "--output-dir", str(tmp_path)])
        assert exc.value.code == 1
