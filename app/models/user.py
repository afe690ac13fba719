"""User model."""

from dataclasses import dataclass, fields
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from app.clock import utcnow
from app.database import Base
from app.services.lockout import LockState


class User(Base):
    """Application user."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    email = Column(String(256), unique=True, nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String(128), nullable=True)
    two_factor_secret = Column(String(64), nullable=True)
    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    login_attempts = Column(Integer, nullable=False, default=0)
    lock_until = Column(DateTime, nullable=True)
    last_activity = Column(DateTime, nullable=True, default=utcnow)
    password_reset_token = Column(String(256), nullable=True, index=True)
    password_reset_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


@dataclass
class UserRecord:
    """Storage-agnostic snapshot of a user, shared by the database and memory backends."""

    id: int
    username: str
    email: str
    password_hash: str
    is_email_verified: bool = False
    email_verification_token: str | None = None
    two_factor_secret: str | None = None
    two_factor_enabled: bool = False
    login_attempts: int = 0
    lock_until: datetime | None = None
    last_activity: datetime | None = None
    password_reset_token: str | None = None
    password_reset_expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # Backend that owns the id; ids are only unique within one backend
    storage: str = "database"

    @classmethod
    def from_row(cls, row: User) -> "UserRecord":
        return cls(**{f.name: getattr(row, f.name) for f in fields(cls) if f.name != "storage"})

    @property
    def lock_state(self) -> LockState:
        return LockState(attempts=self.login_attempts or 0, lock_until=self.lock_until)

    def is_locked(self, now: datetime) -> bool:
        return self.lock_state.is_locked(now)
