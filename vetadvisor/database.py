import logging
from datetime import datetime

from sqlalchemy import create_engine, Column, Integer, String, ForeignKey, DateTime, Text, Float
from sqlalchemy.orm import declarative_base, sessionmaker, relationship

from .config import settings
from .security_utils import get_password_hash

logger = logging.getLogger(__name__)


def make_engine(url: str, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


engine = make_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

ROLE_USER = "user"
ROLE_ADMIN = "admin"


# --- ENTITIES ---
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default=ROLE_USER, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    history = relationship("HistoryEntry", back_populates="user", cascade="all, delete-orphan")


class Symptom(Base):
    __tablename__ = "symptoms"
    code = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    rules = relationship("Rule", back_populates="symptom", cascade="all, delete-orphan")


class Disease(Base):
    __tablename__ = "diseases"
    code = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    remedy = Column(Text, default="")
    rules = relationship("Rule", back_populates="disease", cascade="all, delete-orphan")
    history = relationship("HistoryEntry", back_populates="disease")


class Rule(Base):
    __tablename__ = "rules"
    id = Column(Integer, primary_key=True)
    disease_code = Column(String, ForeignKey("diseases.code"), nullable=False, index=True)
    symptom_code = Column(String, ForeignKey("symptoms.code"), nullable=False, index=True)
    cf = Column(Float, nullable=False)
    disease = relationship("Disease", back_populates="rules")
    symptom = relationship("Symptom", back_populates="rules")


class HistoryEntry(Base):
    __tablename__ = "history"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    disease_code = Column(String, ForeignKey("diseases.code"), nullable=False)
    cf = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False)
    user = relationship("User", back_populates="history")
    disease = relationship("Disease", back_populates="history")


def ensure_admin_exists(db, email: str, password: str) -> bool:
    """Create the default administrator when no admin account exists."""
    if db.query(User).filter(User.role == ROLE_ADMIN).first():
        return False
    db.add(User(name="Admin", email=email, password_hash=get_password_hash(password), role=ROLE_ADMIN))
    db.commit()
    logger.warning(f"Default admin created ({email})")
    return True


def init_db(bind=None):
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    db = sessionmaker(bind=bind)()
    try:
        ensure_admin_exists(db, settings.admin_email, settings.admin_password)
    finally:
        db.close()
