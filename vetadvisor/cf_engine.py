"""
Certainty-factor diagnosis engine.

Collects the rules matching a symptom selection, folds each disease's
weights with the parallel-combination operator and ranks the diseases.

Usage:
    engine = DiagnosisEngine(rule_store, history_store)
    outcome = engine.diagnose({"G01", "G04"}, user_id=7)
    outcome.best.disease_name, outcome.best.cf
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import reduce
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import InvalidInput, NoMatch, StoreUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvidenceRow:
    """One rule matching a selected symptom, joined with its disease."""
    disease_id: str
    cf: float
    disease_name: str
    description: str = ""
    remedy: str = ""


@dataclass
class DiagnosisResult:
    disease_id: str
    name: str
    description: str
    remedy: str
    cf: float

    def to_dict(self) -> dict:
        return {
            "disease_id": self.disease_id,
            "name": self.name,
            "description": self.description,
            "remedy": self.remedy,
            "cf": self.cf,
        }


@dataclass
class DiagnosisOutcome:
    ranked: List[DiagnosisResult] = field(default_factory=list)
    best: Optional[DiagnosisResult] = None

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.ranked],
            "best": self.best.to_dict() if self.best else None,
        }


class RuleStore(Protocol):
    def list_rules_for_symptoms(self, symptom_ids: Iterable[str]) -> List[EvidenceRow]: ...


class HistoryStore(Protocol):
    def insert(self, user_id: int, disease_id: str, cf: float, timestamp: datetime) -> None: ...


# ── CF algebra ───────────────────────────────────────────────────────────────

def combine(cf_old: float, weight: float) -> float:
    """Parallel combination a (+) b = a + b(1 - a); commutative and associative."""
    return cf_old + weight * (1 - cf_old)


def combine_all(weights: Iterable[float]) -> float:
    """Fold weights with `combine` starting from 0, the operator's identity."""
    return reduce(combine, weights, 0.0)


def aggregate(rows: Iterable[EvidenceRow]) -> List[DiagnosisResult]:
    """Group evidence by disease and fold each group's weights."""
    weights: Dict[str, List[float]] = {}
    first_row: Dict[str, EvidenceRow] = {}
    for row in rows:
        weights.setdefault(row.disease_id, []).append(row.cf)
        first_row.setdefault(row.disease_id, row)

    return [
        DiagnosisResult(
            disease_id=disease_id,
            name=first_row[disease_id].disease_name,
            description=first_row[disease_id].description,
            remedy=first_row[disease_id].remedy,
            cf=combine_all(ws),
        )
        for disease_id, ws in weights.items()
    ]


def rank(results: Iterable[DiagnosisResult]) -> List[DiagnosisResult]:
    """Highest CF first; equal CFs ordered by disease code."""
    return sorted(results, key=lambda r: (-r.cf, r.disease_id))


def best_diagnosis(ranked: List[DiagnosisResult]) -> Optional[DiagnosisResult]:
    """Top entry of a ranked list, or None when the list is empty."""
    if not ranked:
        return None
    return min(ranked, key=lambda r: (-r.cf, r.disease_id))


def normalize_symptom_ids(symptom_ids) -> List[str]:
    """Drop blanks and duplicates while keeping first-seen order."""
    if symptom_ids is None:
        return []
    if isinstance(symptom_ids, str):
        symptom_ids = [symptom_ids]
    cleaned = (str(s).strip() for s in symptom_ids)
    return list(dict.fromkeys(s for s in cleaned if s))


# ── Engine ───────────────────────────────────────────────────────────────────

class DiagnosisEngine:
    """
    Runs one diagnosis request against the rule and history stores.

    Stateless between calls; each request reads rules once and writes at
    most one history entry.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        history_store: HistoryStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.rule_store = rule_store
        self.history_store = history_store
        self.clock = clock

    def evaluate(self, symptom_ids) -> DiagnosisOutcome:
        """
        Rank diseases for a symptom selection without recording history.

        Raises:
            InvalidInput: the selection is empty (no store access happens).
            NoMatch: no rule references any selected symptom.
            StoreUnavailable: the rule store failed.
        """
        selected = normalize_symptom_ids(symptom_ids)
        if not selected:
            raise InvalidInput()

        try:
            rows = self.rule_store.list_rules_for_symptoms(selected)
        except SQLAlchemyError as e:
            logger.error(f"Rule lookup failed: {e}")
            raise StoreUnavailable(details={"operation": "list_rules_for_symptoms"}) from e

        if not rows:
            raise NoMatch(details={"symptoms": selected})

        ranked = rank(aggregate(rows))
        logger.debug(f"{len(rows)} evidence rows for {len(selected)} symptoms -> {len(ranked)} diseases")
        return DiagnosisOutcome(ranked=ranked, best=best_diagnosis(ranked))

    def diagnose(self, symptom_ids, user_id: int) -> DiagnosisOutcome:
        """Evaluate the selection and record the best disease in the user's history."""
        outcome = self.evaluate(symptom_ids)
        best = outcome.best
        try:
            self.history_store.insert(user_id, best.disease_id, best.cf, self.clock())
        except SQLAlchemyError as e:
            logger.error(f"History insert failed: {e}")
            raise StoreUnavailable(details={"operation": "history_insert"}) from e

        logger.info(f"Diagnosis for user {user_id}: {best.disease_id} ({best.name}) cf={best.cf:.4f}")
        return outcome
