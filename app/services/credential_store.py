"""User credential storage with a database backend and an in-memory fallback."""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import and_, case, literal, null, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clock import utcnow
from app.errors import ConflictError
from app.models.user import User, UserRecord
from app.services.lockout import LockoutPolicy, LockState

logger = logging.getLogger("mindmaps")


def _conflict(existing_username: str, username: str) -> ConflictError:
    field = "Username" if existing_username == username else "Email"
    return ConflictError(f"{field} already exists")


class UserBackend(Protocol):
    """Operations both storage backends provide."""

    name: str

    def add(self, username: str, email: str, password_hash: str, email_verification_token: str | None) -> UserRecord: ...

    def get(self, user_id: int) -> UserRecord | None: ...

    def find_by_username_or_email(self, identifier: str) -> UserRecord | None: ...

    def find_by_reset_token(self, token: str) -> UserRecord | None: ...

    def update(self, user_id: int, **changes: Any) -> None: ...

    def record_failure(self, user_id: int, policy: LockoutPolicy, now: datetime) -> LockState | None: ...


class Connectivity(Protocol):
    def is_available(self) -> bool: ...


class SqlUserBackend:
    """Users persisted through a SQLAlchemy session."""

    name = "database"

    def __init__(self, db: Session) -> None:
        self.db = db

    def add(self, username: str, email: str, password_hash: str, email_verification_token: str | None) -> UserRecord:
        existing = self.db.query(User).filter(or_(User.username == username, User.email == email)).first()
        if existing:
            raise _conflict(existing.username, username)

        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            email_verification_token=email_verification_token,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Username or email already exists") from None
        self.db.refresh(user)
        return UserRecord.from_row(user)

    def get(self, user_id: int) -> UserRecord | None:
        user = self.db.get(User, user_id)
        return UserRecord.from_row(user) if user else None

    def find_by_username_or_email(self, identifier: str) -> UserRecord | None:
        user = (
            self.db.query(User)
            .filter(or_(User.username == identifier, User.email == identifier.lower()))
            .first()
        )
        return UserRecord.from_row(user) if user else None

    def find_by_reset_token(self, token: str) -> UserRecord | None:
        user = self.db.query(User).filter(User.password_reset_token == token).first()
        return UserRecord.from_row(user) if user else None

    def update(self, user_id: int, **changes: Any) -> None:
        self.db.query(User).filter(User.id == user_id).update(changes)
        self.db.commit()

    def record_failure(self, user_id: int, policy: LockoutPolicy, now: datetime) -> LockState | None:
        """Apply one failed attempt in a single UPDATE so concurrent failures all count.

        The CASE expressions follow ``LockoutPolicy.after_failure`` and read the
        pre-update row, so the increment never depends on a stale read.
        """
        expired = and_(User.lock_until.isnot(None), User.lock_until <= now)
        attempts = case((expired, 1), else_=User.login_attempts + 1)
        lock_until = case(
            (expired, null()),
            (
                and_(User.lock_until.is_(None), User.login_attempts + 1 >= policy.max_attempts),
                literal(now + policy.lock_duration, User.lock_until.type),
            ),
            else_=User.lock_until,
        )
        updated = (
            self.db.query(User)
            .filter(User.id == user_id)
            .update({User.login_attempts: attempts, User.lock_until: lock_until}, synchronize_session=False)
        )
        self.db.commit()
        if not updated:
            return None
        user = self.db.get(User, user_id)
        return LockState(attempts=user.login_attempts, lock_until=user.lock_until)


class InMemoryUserBackend:
    """Process-local user list used while the database is unreachable.

    Owned by the application lifespan and shared by every request. Sync
    endpoints run in a thread pool, so all access goes through a lock.
    Records are copied on the way in and out.
    """

    name = "memory"

    def __init__(self) -> None:
        self._users: list[UserRecord] = []
        self._next_id = 1
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._users)

    def clear(self) -> None:
        with self._lock:
            self._users = []
            self._next_id = 1

    def add(self, username: str, email: str, password_hash: str, email_verification_token: str | None) -> UserRecord:
        with self._lock:
            for existing in self._users:
                if existing.username == username or existing.email == email:
                    raise _conflict(existing.username, username)
            now = utcnow()
            record = UserRecord(
                id=self._next_id,
                username=username,
                email=email,
                password_hash=password_hash,
                email_verification_token=email_verification_token,
                last_activity=now,
                created_at=now,
                updated_at=now,
                storage=self.name,
            )
            self._next_id += 1
            self._users.append(record)
            return replace(record)

    def get(self, user_id: int) -> UserRecord | None:
        return self._find(lambda u: u.id == user_id)

    def find_by_username_or_email(self, identifier: str) -> UserRecord | None:
        email = identifier.lower()
        return self._find(lambda u: u.username == identifier or u.email == email)

    def find_by_reset_token(self, token: str) -> UserRecord | None:
        return self._find(lambda u: u.password_reset_token == token)

    def update(self, user_id: int, **changes: Any) -> None:
        with self._lock:
            for i, user in enumerate(self._users):
                if user.id == user_id:
                    self._users[i] = replace(user, **changes, updated_at=utcnow())
                    return

    def record_failure(self, user_id: int, policy: LockoutPolicy, now: datetime) -> LockState | None:
        """Read, advance and write the lock state under one lock acquisition."""
        with self._lock:
            for i, user in enumerate(self._users):
                if user.id == user_id:
                    state = policy.after_failure(user.lock_state, now)
                    self._users[i] = replace(
                        user, login_attempts=state.attempts, lock_until=state.lock_until, updated_at=utcnow()
                    )
                    return state
        return None

    def _find(self, predicate) -> UserRecord | None:
        with self._lock:
            for user in self._users:
                if predicate(user):
                    return replace(user)
        return None


class CredentialStore:
    """Routes each operation to the database, or to memory when it is unreachable.

    The connectivity check runs per operation. Nothing is copied between the
    two backends when the mode changes.
    """

    def __init__(
        self,
        primary: SqlUserBackend | None,
        fallback: InMemoryUserBackend,
        connectivity: Connectivity,
        lockout: LockoutPolicy | None = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.connectivity = connectivity
        self.lockout = lockout or LockoutPolicy()

    def backend(self) -> UserBackend:
        """Pick the authoritative backend for the next operation."""
        if self.primary is not None and self.connectivity.is_available():
            return self.primary
        return self.fallback

    def create(
        self, username: str, email: str, password_hash: str, email_verification_token: str | None = None
    ) -> UserRecord:
        backend = self.backend()
        user = backend.add(username, email, password_hash, email_verification_token)
        logger.info("Created user %s (id=%s) in %s storage", user.username, user.id, backend.name)
        return user

    def get(self, user_id: int, storage: str | None = None) -> UserRecord | None:
        """Load a user by id. With ``storage``, only a user from that backend is returned."""
        backend = self.backend()
        if storage is not None and backend.name != storage:
            return None
        return backend.get(user_id)

    def find_by_username_or_email(self, identifier: str) -> UserRecord | None:
        return self.backend().find_by_username_or_email(identifier)

    def find_by_reset_token(self, token: str) -> UserRecord | None:
        return self.backend().find_by_reset_token(token)

    def update_activity(self, user_id: int, timestamp: datetime) -> None:
        self.backend().update(user_id, last_activity=timestamp)

    def record_failed_attempt(self, user_id: int, now: datetime) -> LockState:
        """Count a failed login and return the resulting lock state."""
        state = self.backend().record_failure(user_id, self.lockout, now)
        return state or LockState()

    def clear_lock_state(self, user_id: int) -> None:
        state = self.lockout.after_success()
        self.backend().update(user_id, login_attempts=state.attempts, lock_until=state.lock_until)

    def set_two_factor(self, user_id: int, secret: str | None, enabled: bool) -> None:
        self.backend().update(user_id, two_factor_secret=secret, two_factor_enabled=enabled)

    def set_password_reset(self, user_id: int, token: str | None, expires_at: datetime | None) -> None:
        self.backend().update(user_id, password_reset_token=token, password_reset_expires_at=expires_at)

    def update_password(self, user_id: int, password_hash: str) -> None:
        """Store a new hash and invalidate any outstanding reset token."""
        self.backend().update(
            user_id,
            password_hash=password_hash,
            password_reset_token=None,
            password_reset_expires_at=None,
        )
