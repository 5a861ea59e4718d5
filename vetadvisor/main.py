import logging
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import FastAPI, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from . import __version__, database
from .cf_engine import DiagnosisEngine
from .config import settings, get_clinic_config
from .database import (
    SessionLocal, User, Symptom, Disease, Rule, HistoryEntry, ROLE_USER, ROLE_ADMIN,
)
from .exceptions import AdvisorError, InvalidInput, StoreUnavailable, NotFound, Conflict
from .logging_config import setup_logging
from .pdf_generator import generate_diagnosis_report
from .repository import SqlRuleStore, SqlHistoryStore, next_symptom_code, next_disease_code
from .security_utils import get_password_hash, verify_password, validate_password_complexity
from .symptom_search import SymptomSearch

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_file or None)
    try:
        database.init_db()
        logger.info("Database connected")
    except SQLAlchemyError as e:
        # keep serving; store-backed endpoints answer 503 until the database is back
        logger.error(f"Database unavailable at startup: {e}")
    yield
    logger.info("VetAdvisor API shut down")


app = FastAPI(title="VetAdvisor API", version=__version__, lifespan=lifespan)
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
symptom_search = SymptomSearch()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.exception_handler(AdvisorError)
async def advisor_error_handler(request: Request, exc: AdvisorError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Constraint violation on {request.method} {request.url.path}: {exc.orig}")
    err = Conflict("Linked Data Conflict")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store failure on {request.method} {request.url.path}: {exc}")
    err = StoreUnavailable()
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


# --- DTOs ---
class RegisterModel(BaseModel):
    name: str
    email: EmailStr
    password: str

class LoginModel(BaseModel):
    role: Literal["user", "admin"] = ROLE_USER
    email: str
    password: str

class DiagnosisInput(BaseModel):
    symptom_ids: List[str] = []

class SymptomModel(BaseModel):
    name: str = Field(min_length=1)

class DiseaseModel(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    remedy: str = ""

class RuleModel(BaseModel):
    disease_code: str
    symptom_code: str
    cf: float = Field(ge=-1.0, le=1.0)

class UserModel(BaseModel):
    name: str
    email: EmailStr
    role: Literal["user", "admin"] = ROLE_USER
    password: str = ""


# --- SESSION GUARDS ---
def _session_user(request: Request, db: Session, role: str) -> dict:
    s = request.session
    if s.get("role") != role or not s.get("user_id"):
        raise HTTPException(401, "Login required")
    # the cookie outlives account deletes and role changes
    u = db.get(User, s["user_id"])
    if not u or u.role != role:
        request.session.clear()
        raise HTTPException(401, "Login required")
    return {"id": u.id, "name": u.name, "role": u.role}

def require_user(request: Request, db: Session = Depends(get_db)) -> dict:
    return _session_user(request, db, ROLE_USER)

def require_admin(request: Request, db: Session = Depends(get_db)) -> dict:
    return _session_user(request, db, ROLE_ADMIN)


def _symptom_dict(s): return {"code": s.code, "name": s.name}
def _disease_dict(d): return {"code": d.code, "name": d.name, "description": d.description or "", "remedy": d.remedy or ""}
def _user_dict(u): return {"id": u.id, "name": u.name, "email": u.email, "role": u.role, "created_at": u.created_at.isoformat() if u.created_at else None}
def _rule_dict(r): return {"id": r.id, "disease_code": r.disease_code, "disease_name": r.disease.name, "symptom_code": r.symptom_code, "symptom_name": r.symptom.name, "cf": r.cf}


def _history_rows(db: Session, user_id: int, entry_id: Optional[int] = None):
    q = (db.query(HistoryEntry, Disease).join(Disease, HistoryEntry.disease_code == Disease.code)
         .filter(HistoryEntry.user_id == user_id))
    if entry_id is not None:
        q = q.filter(HistoryEntry.id == entry_id)
    rows = q.order_by(HistoryEntry.created_at.desc(), HistoryEntry.id.desc()).all()
    return [{"id": h.id, "cf": h.cf, "created_at": h.created_at.isoformat(), "disease_code": d.code,
             "disease_name": d.name, "description": d.description or "", "remedy": d.remedy or ""} for h, d in rows]


# --- PUBLIC ---
@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        ok = True
    except SQLAlchemyError as e:
        logger.warning(f"Health check: database unreachable ({e})")
        ok = False
    return {"status": "healthy" if ok else "degraded", "database": ok, "version": __version__}

@app.get("/config/read")
def config_read():
    return get_clinic_config()


# --- AUTH ---
@app.post("/auth/register")
def register(reg: RegisterModel, db: Session = Depends(get_db)):
    if not validate_password_complexity(reg.password): raise InvalidInput("Password too weak")
    if db.query(User).filter(User.email == reg.email).first(): raise Conflict("Email already registered")
    db.add(User(name=reg.name, email=reg.email, password_hash=get_password_hash(reg.password), role=ROLE_USER))
    db.commit()
    logger.info(f"Registered user {reg.email}")
    return {"msg": "OK"}

@app.post("/auth/login")
def login(creds: LoginModel, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == creds.email, User.role == creds.role).first()
    if not user or not verify_password(creds.password, user.password_hash):
        logger.info(f"Failed {creds.role} login for {creds.email}")
        raise HTTPException(401, "Invalid Credentials")
    request.session.update({"user_id": user.id, "role": user.role, "name": user.name})
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}

@app.post("/auth/logout")
def logout(request: Request):
    request.session.clear()
    return {"msg": "OK"}

@app.get("/auth/me")
def me(request: Request):
    s = request.session
    if not s.get("user_id"): raise HTTPException(401, "Login required")
    return {"id": s["user_id"], "name": s.get("name"), "role": s.get("role")}


# --- CONSULTATION ---
@app.get("/symptoms")
def list_symptoms(user: dict = Depends(require_user), db: Session = Depends(get_db)):
    return [_symptom_dict(s) for s in db.query(Symptom).order_by(Symptom.name.asc()).all()]

@app.get("/symptoms/search")
def search_symptoms(q: str, limit: int = Query(5, ge=1, le=50), user: dict = Depends(require_user), db: Session = Depends(get_db)):
    return [{"score": score, **_symptom_dict(s)} for score, s in symptom_search.search(q, db, limit)]

@app.post("/diagnosis")
def diagnosis(d: DiagnosisInput, user: dict = Depends(require_user), db: Session = Depends(get_db)):
    engine = DiagnosisEngine(SqlRuleStore(db), SqlHistoryStore(db))
    return engine.diagnose(d.symptom_ids, user["id"]).to_dict()


# --- HISTORY ---
@app.get("/history")
def history(user: dict = Depends(require_user), db: Session = Depends(get_db)):
    return _history_rows(db, user["id"])

@app.get("/history/{entry_id}")
def history_detail(entry_id: int, user: dict = Depends(require_user), db: Session = Depends(get_db)):
    rows = _history_rows(db, user["id"], entry_id)
    if not rows: raise NotFound("History entry", entry_id)
    return rows[0]

@app.get("/history/{entry_id}/pdf")
def history_pdf(entry_id: int, user: dict = Depends(require_user), db: Session = Depends(get_db)):
    rows = _history_rows(db, user["id"], entry_id)
    if not rows: raise NotFound("History entry", entry_id)
    r = rows[0]
    b = generate_diagnosis_report(r["id"], user["name"], r["created_at"][:19].replace("T", " "),
                                  r["disease_name"], r["cf"], r["description"], r["remedy"])
    return Response(content=b, media_type="application/pdf")


# --- ADMIN: DASHBOARD ---
@app.get("/admin/dashboard")
def dashboard(admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return {
        "total_users": db.query(User).count(),
        "total_diseases": db.query(Disease).count(),
        "total_symptoms": db.query(Symptom).count(),
        "total_rules": db.query(Rule).count(),
        "total_diagnoses": db.query(HistoryEntry).count(),
    }


# --- ADMIN: SYMPTOMS ---
def _get_symptom(db, code):
    s = db.get(Symptom, code)
    if not s: raise NotFound("Symptom", code)
    return s

@app.get("/admin/symptoms")
def admin_symptoms(admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return [_symptom_dict(s) for s in db.query(Symptom).order_by(Symptom.code.asc()).all()]

@app.post("/admin/symptoms")
def add_symptom(d: SymptomModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    s = Symptom(code=next_symptom_code(db), name=d.name)
    db.add(s); db.commit()
    logger.info(f"Symptom {s.code} added")
    return _symptom_dict(s)

@app.get("/admin/symptoms/{code}")
def get_symptom(code: str, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return _symptom_dict(_get_symptom(db, code))

@app.put("/admin/symptoms/{code}")
def update_symptom(code: str, d: SymptomModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    s = _get_symptom(db, code)
    s.name = d.name
    db.commit(); return _symptom_dict(s)

@app.delete("/admin/symptoms/{code}")
def delete_symptom(code: str, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    db.delete(_get_symptom(db, code)); db.commit()
    logger.info(f"Symptom {code} deleted with its rules")
    return {"msg": "Deleted"}


# --- ADMIN: DISEASES ---
def _get_disease(db, code):
    d = db.get(Disease, code)
    if not d: raise NotFound("Disease", code)
    return d

@app.get("/admin/diseases")
def admin_diseases(admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return [_disease_dict(d) for d in db.query(Disease).order_by(Disease.code.asc()).all()]

@app.post("/admin/diseases")
def add_disease(d: DiseaseModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    p = Disease(code=next_disease_code(db), name=d.name, description=d.description, remedy=d.remedy)
    db.add(p); db.commit()
    logger.info(f"Disease {p.code} added")
    return _disease_dict(p)

@app.get("/admin/diseases/{code}")
def get_disease(code: str, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return _disease_dict(_get_disease(db, code))

@app.put("/admin/diseases/{code}")
def update_disease(code: str, d: DiseaseModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    p = _get_disease(db, code)
    p.name = d.name; p.description = d.description; p.remedy = d.remedy
    db.commit(); return _disease_dict(p)

@app.delete("/admin/diseases/{code}")
def delete_disease(code: str, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    p = _get_disease(db, code)
    if db.query(HistoryEntry).filter(HistoryEntry.disease_code == code).first():
        raise Conflict("Linked Data Conflict", {"disease": code, "linked": "history"})
    db.delete(p); db.commit()
    logger.info(f"Disease {code} deleted with its rules")
    return {"msg": "Deleted"}


# --- ADMIN: RULES ---
def _get_rule(db, rule_id):
    r = db.get(Rule, rule_id)
    if not r: raise NotFound("Rule", rule_id)
    return r

def _check_rule_refs(db, d: RuleModel):
    _get_disease(db, d.disease_code); _get_symptom(db, d.symptom_code)

@app.get("/admin/rules")
def admin_rules(admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    rules = (db.query(Rule).join(Disease, Rule.disease_code == Disease.code).join(Symptom, Rule.symptom_code == Symptom.code)
             .order_by(Disease.name.asc(), Symptom.name.asc(), Rule.id.asc()).all())
    return [_rule_dict(r) for r in rules]

@app.post("/admin/rules")
def add_rule(d: RuleModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    _check_rule_refs(db, d)
    r = Rule(disease_code=d.disease_code, symptom_code=d.symptom_code, cf=d.cf)
    db.add(r); db.commit()
    logger.info(f"Rule {r.id} added: {d.symptom_code} -> {d.disease_code} cf={d.cf}")
    return _rule_dict(r)

@app.get("/admin/rules/{rule_id}")
def get_rule(rule_id: int, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return _rule_dict(_get_rule(db, rule_id))

@app.put("/admin/rules/{rule_id}")
def update_rule(rule_id: int, d: RuleModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    r = _get_rule(db, rule_id)
    _check_rule_refs(db, d)
    r.disease_code = d.disease_code; r.symptom_code = d.symptom_code; r.cf = d.cf
    db.commit(); db.refresh(r)
    return _rule_dict(r)

@app.delete("/admin/rules/{rule_id}")
def delete_rule(rule_id: int, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    db.delete(_get_rule(db, rule_id)); db.commit()
    return {"msg": "Deleted"}


# --- ADMIN: USERS ---
def _get_user(db, user_id):
    u = db.get(User, user_id)
    if not u: raise NotFound("User", user_id)
    return u

@app.get("/admin/users")
def admin_users(admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return [_user_dict(u) for u in db.query(User).order_by(User.id.asc()).all()]

@app.post("/admin/users")
def add_user(d: UserModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    if not validate_password_complexity(d.password): raise InvalidInput("Password too weak")
    if db.query(User).filter(User.email == d.email).first(): raise Conflict("Email already registered")
    u = User(name=d.name, email=d.email, password_hash=get_password_hash(d.password), role=d.role)
    db.add(u); db.commit()
    return _user_dict(u)

@app.get("/admin/users/{user_id}")
def get_user(user_id: int, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    return _user_dict(_get_user(db, user_id))

@app.put("/admin/users/{user_id}")
def update_user(user_id: int, d: UserModel, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    u = _get_user(db, user_id)
    if db.query(User).filter(User.email == d.email, User.id != user_id).first(): raise Conflict("Email already registered")
    u.name = d.name; u.email = d.email; u.role = d.role
    if d.password:
        if not validate_password_complexity(d.password): raise InvalidInput("Password too weak")
        u.password_hash = get_password_hash(d.password)
    db.commit(); return _user_dict(u)

@app.delete("/admin/users/{user_id}")
def delete_user(user_id: int, admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    if user_id == admin["id"]: raise Conflict("Cannot delete the account in use")
    db.delete(_get_user(db, user_id)); db.commit()
    return {"msg": "Deleted"}
