"""Per-request authorization of bearer tokens."""

import logging
from dataclasses import replace
from datetime import timedelta

from app.clock import Clock, utcnow
from app.config import get_settings
from app.errors import AccountLocked, AppError, SessionExpired, Unauthorized
from app.models.user import UserRecord
from app.services.credential_store import CredentialStore
from app.services.jwt import JWTService, get_jwt_service

logger = logging.getLogger("mindmaps")


class SessionGate:
    """Turns a bearer token into an active, unlocked user or raises."""

    def __init__(self, jwt_service: JWTService, idle_timeout: timedelta | None = None, clock: Clock = utcnow) -> None:
        self.jwt_service = jwt_service
        self.idle_timeout = idle_timeout or timedelta(minutes=get_settings().SESSION_IDLE_MINUTES)
        self._clock = clock

    def authorize(self, store: CredentialStore, token: str | None) -> UserRecord:
        """Validate the token, enforce lockout and idle timeout, then touch ``last_activity``."""
        if not token:
            raise Unauthorized()

        claims = self.jwt_service.decode_token(token)
        user = store.get(claims.user_id, storage=claims.storage)
        if user is None:
            raise Unauthorized("Invalid token - user not found")

        now = self._clock()
        if user.is_locked(now):
            raise AccountLocked("Account is temporarily locked")

        if user.last_activity and now - user.last_activity > self.idle_timeout:
            raise SessionExpired()

        store.update_activity(user.id, now)
        return replace(user, last_activity=now)

    def authorize_optional(self, store: CredentialStore, token: str | None) -> UserRecord | None:
        """Like ``authorize`` but an auth failure means anonymous instead of an error."""
        if not token:
            return None
        try:
            return self.authorize(store, token)
        except AppError as e:
            logger.debug("Optional auth ignored: %s", e.message)
            return None


_session_gate: SessionGate | None = None


def get_session_gate() -> SessionGate:
    """Get singleton session gate instance."""
    global _session_gate
    if _session_gate is None:
        _session_gate = SessionGate(get_jwt_service())
    return _session_gate
