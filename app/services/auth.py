"""Authentication service."""

import logging
import secrets
from dataclasses import dataclass, replace
from datetime import timedelta

from app.clock import Clock, utcnow
from app.config import get_settings
from app.errors import AccountLocked, InvalidCredentials, InvalidTwoFactorCode, ValidationError
from app.models.user import UserRecord
from app.services.credential_store import CredentialStore
from app.services.password import hash_password, require_strong_password, verify_password
from app.services.two_factor import TwoFactorService

logger = logging.getLogger("mindmaps")


@dataclass
class LoginResult:
    """Result of a successful password check."""

    user: UserRecord
    requires_two_factor: bool = False


class AuthService:
    """Handles user registration and authentication."""

    def __init__(self, two_factor: TwoFactorService, clock: Clock = utcnow) -> None:
        self.two_factor = two_factor
        self.reset_expire_minutes = get_settings().PASSWORD_RESET_EXPIRE_MINUTES
        self._clock = clock

    def register(self, store: CredentialStore, username: str, email: str, password: str) -> UserRecord:
        """Register a new user. Raises ValidationError or ConflictError."""
        require_strong_password(password)
        return store.create(
            username=username.strip(),
            email=email.lower().strip(),
            password_hash=hash_password(password),
            email_verification_token=secrets.token_hex(32),
        )

    def authenticate(
        self,
        store: CredentialStore,
        identifier: str,
        password: str,
        two_factor_code: str | None = None,
    ) -> LoginResult:
        """Authenticate by username or email.

        Unknown users and wrong passwords raise the same InvalidCredentials.
        A locked account is rejected before the password is compared and the
        attempt still counts.
        """
        now = self._clock()
        user = store.find_by_username_or_email(identifier.strip())
        if user is None:
            raise InvalidCredentials()

        if user.is_locked(now):
            store.record_failed_attempt(user.id, now)
            logger.warning("Login attempt for locked user %s", user.id)
            raise AccountLocked()

        if not verify_password(password, user.password_hash):
            state = store.record_failed_attempt(user.id, now)
            if state.is_locked(now):
                logger.warning("User %s locked until %s after %d failed attempts", user.id, state.lock_until, state.attempts)
            raise InvalidCredentials()

        if user.login_attempts or user.lock_until:
            store.clear_lock_state(user.id)
        store.update_activity(user.id, now)
        user = replace(user, login_attempts=0, lock_until=None, last_activity=now)

        if user.two_factor_enabled:
            if not two_factor_code:
                return LoginResult(user=user, requires_two_factor=True)
            if not self.two_factor.verify_login(user, two_factor_code):
                raise InvalidTwoFactorCode()

        return LoginResult(user=user)

    def request_password_reset(self, store: CredentialStore, email: str) -> str | None:
        """Generate a password reset token for the given email.

        Returns the token if user exists, None otherwise.
        Caller should not reveal whether the user was found.
        """
        user = store.find_by_username_or_email(email.lower().strip())
        if user is None or user.email != email.lower().strip():
            return None

        token = secrets.token_urlsafe(32)
        store.set_password_reset(user.id, token, self._clock() + timedelta(minutes=self.reset_expire_minutes))
        return token

    def reset_password(self, store: CredentialStore, token: str, new_password: str) -> UserRecord:
        """Reset a user's password using a valid reset token."""
        user = store.find_by_reset_token(token)
        if user is None:
            raise ValidationError("Invalid or expired reset link")

        now = self._clock()
        if not user.password_reset_expires_at or user.password_reset_expires_at < now:
            store.set_password_reset(user.id, None, None)
            raise ValidationError("Reset link has expired. Please request a new one.")

        require_strong_password(new_password)
        store.update_password(user.id, hash_password(new_password))
        store.clear_lock_state(user.id)
        store.update_activity(user.id, now)
        logger.info("Password reset for user %s", user.id)
        return replace(user, login_attempts=0, lock_until=None, last_activity=now)
