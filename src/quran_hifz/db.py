"""
User store for authentication, profiles and the teacher directory.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Text, DateTime, JSON
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

ROLES = ("student", "teacher")
TEACHER_FIELDS = ("bio", "hourly_rate", "subjects")
# Never changed through a profile update
PROTECTED_FIELDS = ("id", "email", "password", "password_hash", "created_at")


class User(Base):
    __tablename__ = "users"
    id              = Column(Integer, primary_key=True)
    display_name    = Column(String,  nullable=False)
    email           = Column(String,  nullable=False, unique=True, index=True)
    password_hash   = Column(String,  nullable=False)
    role            = Column(String,  nullable=False, default="student")
    avatar_url      = Column(String,  nullable=True)
    memorized_ayahs = Column(Integer, nullable=False, default=0)
    # Teacher profile
    bio             = Column(Text,    nullable=True)
    hourly_rate     = Column(Float,   nullable=True)
    subjects        = Column(JSON,    nullable=True)
    rating          = Column(Float,   nullable=False, default=5.0)
    reviews_count   = Column(Integer, nullable=False, default=0)
    created_at      = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


def get_engine(database_url: Optional[str] = None):
    url = database_url or get_settings().database_url
    kwargs: Dict[str, Any] = {"echo": False}
    if url.startswith("sqlite"):
        # FastAPI serves sync handlers from a thread pool
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def init_db(engine=None):
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None) -> sessionmaker:
    engine = init_db(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def avatar_url_for(name: str, role: str) -> str:
    background = "0D9488" if role == "student" else "0F172A"
    return f"https://ui-avatars.com/api/?name={name}&background={background}&color=fff"


def create_user(
    db: Session,
    display_name: str,
    email: str,
    password_hash: str,
    role: str = "student",
    bio: Optional[str] = None,
    hourly_rate: Optional[float] = None,
    subjects: Optional[List[str]] = None,
) -> User:
    """Insert a user. Teacher-only fields are dropped for students."""
    is_teacher = role == "teacher"
    user = User(
        display_name=display_name,
        email=email.strip().lower(),
        password_hash=password_hash,
        role=role,
        avatar_url=avatar_url_for(display_name, role),
        bio=bio if is_teacher else None,
        hourly_rate=hourly_rate if is_teacher else None,
        subjects=subjects if is_teacher else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered {role} user {user.id}")
    return user


def update_user(db: Session, user: User, updates: Dict[str, Any]) -> User:
    for key, value in updates.items():
        if key in PROTECTED_FIELDS or not hasattr(User, key):
            continue
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


def list_teachers(db: Session) -> List[User]:
    return db.query(User).filter(User.role == "teacher").order_by(User.rating.desc(), User.id).all()
