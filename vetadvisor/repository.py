import logging
import re
from datetime import datetime
from typing import Iterable, List

from sqlalchemy.orm import Session

from .cf_engine import EvidenceRow
from .database import Disease, HistoryEntry, Rule, Symptom

logger = logging.getLogger(__name__)

SYMPTOM_PREFIX = "G"
DISEASE_PREFIX = "P"


class SqlRuleStore:
    def __init__(self, db: Session):
        self.db = db

    def list_rules_for_symptoms(self, symptom_ids: Iterable[str]) -> List[EvidenceRow]:
        rows = (
            self.db.query(Rule.disease_code, Rule.cf, Disease.name, Disease.description, Disease.remedy)
            .join(Disease, Rule.disease_code == Disease.code)
            .filter(Rule.symptom_code.in_(list(symptom_ids)))
            .order_by(Rule.id)
            .all()
        )
        return [
            EvidenceRow(disease_id=code, cf=cf, disease_name=name, description=desc or "", remedy=remedy or "")
            for code, cf, name, desc, remedy in rows
        ]


class SqlHistoryStore:
    def __init__(self, db: Session):
        self.db = db

    def insert(self, user_id: int, disease_id: str, cf: float, timestamp: datetime) -> None:
        self.db.add(HistoryEntry(user_id=user_id, disease_code=disease_id, cf=cf, created_at=timestamp))
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


# --- CODE GENERATION (G01 / P01) ---
def next_code(prefix: str, existing: Iterable[str], width: int = 2) -> str:
    """Next code after the highest numeric suffix among `existing`."""
    highest = 0
    for code in existing:
        m = re.fullmatch(rf"{re.escape(prefix)}(\d+)", str(code or ""))
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{prefix}{highest + 1:0{width}d}"


def next_symptom_code(db: Session) -> str:
    return next_code(SYMPTOM_PREFIX, (c for (c,) in db.query(Symptom.code).all()))


def next_disease_code(db: Session) -> str:
    return next_code(DISEASE_PREFIX, (c for (c,) in db.query(Disease.code).all()))
