from datetime import datetime

import pytest

from vetadvisor.database import HistoryEntry
from vetadvisor.repository import (
    SqlHistoryStore,
    SqlRuleStore,
    next_code,
    next_disease_code,
    next_symptom_code,
)


class TestNextCode:
    def test_first_code(self):
        assert next_code("G", []) == "G01"

    def test_follows_highest(self):
        assert next_code("P", ["P01", "P07", "P03"]) == "P08"

    def test_past_two_digits(self):
        assert next_code("G", ["G98", "G99"]) == "G100"
        assert next_code("G", ["G100", "G99"]) == "G101"

    def test_ignores_foreign_codes(self):
        assert next_code("G", ["X12", "Gxx", None, "G02"]) == "G03"


class TestSqlStores:
    def test_rule_rows_carry_disease_fields(self, knowledge_base):
        rows = SqlRuleStore(knowledge_base).list_rules_for_symptoms(["G02"])
        assert sorted((r.disease_id, r.cf) for r in rows) == [("P01", 0.5), ("P02", 0.4)]
        anthrax = next(r for r in rows if r.disease_id == "P01")
        assert anthrax.disease_name == "Anthrax"
        assert anthrax.remedy == "Isolate and call a vet."

    def test_unknown_symptoms(self, knowledge_base):
        assert SqlRuleStore(knowledge_base).list_rules_for_symptoms(["G77"]) == []

    def test_history_insert(self, knowledge_base):
        when = datetime(2024, 1, 2, 3, 4, 5)
        SqlHistoryStore(knowledge_base).insert(1, "P01", 0.9, when)
        entry = knowledge_base.query(HistoryEntry).one()
        assert (entry.user_id, entry.disease_code, entry.created_at) == (1, "P01", when)
        assert entry.cf == pytest.approx(0.9)

    def test_generated_codes(self, knowledge_base):
        assert next_symptom_code(knowledge_base) == "G05"
        assert next_disease_code(knowledge_base) == "P03"
