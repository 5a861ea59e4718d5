"""
Unit tests for the certainty-factor engine, run against in-memory fakes.
"""
import itertools
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from vetadvisor.cf_engine import (
    DiagnosisEngine,
    DiagnosisResult,
    EvidenceRow,
    aggregate,
    best_diagnosis,
    combine,
    combine_all,
    normalize_symptom_ids,
    rank,
)
from vetadvisor.exceptions import InvalidInput, NoMatch, StoreUnavailable


class FakeRuleStore:
    def __init__(self, rules, fail=False):
        # rules: [(disease, symptom, cf)]
        self.rules = rules
        self.fail = fail
        self.calls = []

    def list_rules_for_symptoms(self, symptom_ids):
        self.calls.append(list(symptom_ids))
        if self.fail:
            raise OperationalError("SELECT", {}, Exception("connection refused"))
        wanted = set(symptom_ids)
        return [
            EvidenceRow(disease_id=d, cf=cf, disease_name=f"Disease {d}", description="desc", remedy="rest")
            for d, s, cf in self.rules if s in wanted
        ]


class FakeHistoryStore:
    def __init__(self, fail=False):
        self.inserts = []
        self.fail = fail

    def insert(self, user_id, disease_id, cf, timestamp):
        if self.fail:
            raise OperationalError("INSERT", {}, Exception("disk full"))
        self.inserts.append((user_id, disease_id, cf, timestamp))


FIXED_NOW = datetime(2024, 5, 1, 10, 30)


def make_engine(rules, **kwargs):
    rule_store = FakeRuleStore(rules, fail=kwargs.pop("rules_fail", False))
    history_store = FakeHistoryStore(fail=kwargs.pop("history_fail", False))
    return DiagnosisEngine(rule_store, history_store, clock=lambda: FIXED_NOW), rule_store, history_store


class TestCombination:
    def test_single_weight_is_identity(self):
        for w in (0.0, 0.35, 1.0, -0.4):
            assert combine_all([w]) == w

    def test_two_rules_same_disease(self):
        assert combine_all([0.8, 0.5]) == pytest.approx(0.9, abs=1e-12)

    def test_no_weights_is_zero(self):
        assert combine_all([]) == 0.0

    def test_order_independent(self):
        weights = [0.6, 0.3, -0.2]
        results = [combine_all(p) for p in itertools.permutations(weights)]
        for r in results:
            assert r == pytest.approx(results[0], abs=1e-9)

    def test_associative(self):
        a, b, c = 0.6, 0.3, -0.2
        assert combine(combine(a, b), c) == pytest.approx(a + combine(b, c) * (1 - a), abs=1e-12)

    def test_full_confidence_absorbs(self):
        assert combine_all([1.0, 0.2, 0.7]) == pytest.approx(1.0)


class TestAggregateAndRank:
    def test_groups_by_disease(self):
        rows = [
            EvidenceRow("P01", 0.8, "Anthrax"),
            EvidenceRow("P02", 0.4, "Bloat"),
            EvidenceRow("P01", 0.5, "Anthrax"),
        ]
        results = {r.disease_id: r for r in aggregate(rows)}
        assert results["P01"].cf == pytest.approx(0.9)
        assert results["P02"].cf == pytest.approx(0.4)
        assert results["P01"].name == "Anthrax"

    def test_rank_descending(self):
        ranked = rank([
            DiagnosisResult("P01", "a", "", "", 0.2),
            DiagnosisResult("P02", "b", "", "", 0.9),
            DiagnosisResult("P03", "c", "", "", 0.5),
        ])
        assert [r.cf for r in ranked] == [0.9, 0.5, 0.2]

    def test_ties_broken_by_disease_code(self):
        ranked = rank([
            DiagnosisResult("P03", "c", "", "", 0.5),
            DiagnosisResult("P01", "a", "", "", 0.5),
        ])
        assert [r.disease_id for r in ranked] == ["P01", "P03"]
        assert best_diagnosis(ranked).disease_id == "P01"

    def test_best_of_empty(self):
        assert best_diagnosis([]) is None

    def test_normalize_symptom_ids(self):
        assert normalize_symptom_ids(["G01", "G01", " ", "G02"]) == ["G01", "G02"]
        assert normalize_symptom_ids("G03") == ["G03"]
        assert normalize_symptom_ids(None) == []


class TestDiagnosisEngine:
    RULES = [("D1", "S1", 0.8), ("D1", "S2", 0.5), ("D2", "S2", 0.6), ("D3", "S9", 0.9)]

    def test_expected_combined_value(self):
        engine, _, _ = make_engine([("D1", "S1", 0.8), ("D1", "S2", 0.5)])
        outcome = engine.diagnose({"S1", "S2"}, user_id=1)
        assert outcome.best.disease_id == "D1"
        assert outcome.best.cf == pytest.approx(0.9, abs=1e-9)

    def test_results_sorted_descending(self):
        engine, _, _ = make_engine(self.RULES)
        outcome = engine.diagnose(["S1", "S2"], user_id=1)
        cfs = [r.cf for r in outcome.ranked]
        assert cfs == sorted(cfs, reverse=True)
        assert [r.disease_id for r in outcome.ranked] == ["D1", "D2"]

    def test_empty_input_never_touches_store(self):
        engine, rule_store, history_store = make_engine(self.RULES)
        with pytest.raises(InvalidInput):
            engine.diagnose([], user_id=1)
        assert rule_store.calls == []
        assert history_store.inserts == []

    def test_no_matching_rule(self):
        engine, _, history_store = make_engine([("D1", "S1", 0.8)])
        with pytest.raises(NoMatch):
            engine.diagnose({"S5"}, user_id=1)
        assert history_store.inserts == []

    def test_exactly_one_history_insert_for_best(self):
        engine, _, history_store = make_engine(self.RULES)
        outcome = engine.diagnose(["S1", "S2"], user_id=42)
        assert history_store.inserts == [(42, "D1", outcome.best.cf, FIXED_NOW)]

    def test_duplicates_are_harmless(self):
        engine, rule_store, _ = make_engine(self.RULES)
        once = engine.evaluate(["S1", "S2"])
        twice = engine.evaluate(["S1", "S2", "S1"])
        assert [r.cf for r in once.ranked] == [r.cf for r in twice.ranked]
        assert rule_store.calls[-1] == ["S1", "S2"]

    def test_evaluate_does_not_record(self):
        engine, _, history_store = make_engine(self.RULES)
        engine.evaluate(["S1"])
        assert history_store.inserts == []

    def test_rule_store_failure(self):
        engine, _, history_store = make_engine(self.RULES, rules_fail=True)
        with pytest.raises(StoreUnavailable) as exc:
            engine.diagnose(["S1"], user_id=1)
        assert exc.value.to_dict()["error"] == "STORE_UNAVAILABLE"
        assert history_store.inserts == []

    def test_history_store_failure(self):
        engine, _, _ = make_engine(self.RULES, history_fail=True)
        with pytest.raises(StoreUnavailable):
            engine.diagnose(["S1"], user_id=1)

    def test_storage_order_does_not_matter(self):
        rules = [("D1", "S1", 0.6), ("D1", "S2", 0.3), ("D1", "S3", -0.2)]
        values = []
        for perm in itertools.permutations(rules):
            engine, _, _ = make_engine(list(perm))
            values.append(engine.evaluate(["S1", "S2", "S3"]).best.cf)
        assert max(values) - min(values) < 1e-9
