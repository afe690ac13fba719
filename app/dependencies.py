"""Authentication dependencies for FastAPI routes."""

import secrets
from datetime import timedelta

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import DatabaseConnectivity, get_connectivity, get_db
from app.models.user import UserRecord
from app.services.auth import AuthService
from app.services.credential_store import CredentialStore, InMemoryUserBackend, SqlUserBackend
from app.services.lockout import LockoutPolicy
from app.services.session_gate import SessionGate, get_session_gate
from app.services.two_factor import PendingSecretStore, TwoFactorService

SETUP_SESSION_COOKIE = "mm_2fa_session"


def get_memory_backend(request: Request) -> InMemoryUserBackend:
    """In-memory user backend owned by the application lifespan."""
    return request.app.state.memory_users


def get_pending_store(request: Request) -> PendingSecretStore:
    """Pending 2FA secrets owned by the application lifespan."""
    return request.app.state.pending_two_factor


def get_lockout_policy() -> LockoutPolicy:
    settings = get_settings()
    return LockoutPolicy(
        max_attempts=settings.MAX_LOGIN_ATTEMPTS,
        lock_duration=timedelta(minutes=settings.LOCK_DURATION_MINUTES),
    )


def get_credential_store(
    db: Session | None = Depends(get_db),
    memory: InMemoryUserBackend = Depends(get_memory_backend),
    connectivity: DatabaseConnectivity = Depends(get_connectivity),
    lockout: LockoutPolicy = Depends(get_lockout_policy),
) -> CredentialStore:
    """Credential store for this request, database first with memory fallback."""
    primary = SqlUserBackend(db) if db is not None else None
    return CredentialStore(primary, memory, connectivity, lockout)


def get_two_factor_service(pending: PendingSecretStore = Depends(get_pending_store)) -> TwoFactorService:
    return TwoFactorService(pending)


def get_auth_service(two_factor: TwoFactorService = Depends(get_two_factor_service)) -> AuthService:
    return AuthService(two_factor)


def extract_bearer_token(request: Request) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header, if any."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(
    request: Request,
    store: CredentialStore = Depends(get_credential_store),
    gate: SessionGate = Depends(get_session_gate),
) -> UserRecord:
    """Authorize the bearer token. Raises Unauthorized, AccountLocked or SessionExpired."""
    return gate.authorize(store, extract_bearer_token(request))


def get_optional_user(
    request: Request,
    store: CredentialStore = Depends(get_credential_store),
    gate: SessionGate = Depends(get_session_gate),
) -> UserRecord | None:
    """Authorize the bearer token if present; anonymous on any auth failure."""
    return gate.authorize_optional(store, extract_bearer_token(request))


def new_setup_session_id() -> str:
    return secrets.token_urlsafe(32)


def set_setup_session_cookie(response: Response, session_id: str) -> None:
    """Set the cookie that ties a browser to its pending 2FA setup."""
    settings = get_settings()
    response.set_cookie(
        key=SETUP_SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        max_age=settings.TWO_FACTOR_SETUP_TTL_MINUTES * 60,
    )


def clear_setup_session_cookie(response: Response) -> None:
    """Clear the 2FA setup cookie."""
    response.delete_cookie(key=SETUP_SESSION_COOKIE)
