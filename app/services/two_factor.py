"""Two-factor authentication: TOTP enrollment and verification."""

import base64
import io
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pyotp
import qrcode

from app.clock import Clock, utcnow
from app.config import get_settings
from app.errors import InvalidTwoFactorCode, NoPendingSetup, ValidationError
from app.models.user import UserRecord
from app.services.credential_store import CredentialStore
from app.services.password import verify_password

logger = logging.getLogger("mindmaps")

SECRET_LENGTH = 32


def generate_totp_secret() -> str:
    return pyotp.random_base32(length=SECRET_LENGTH)


def get_totp_uri(secret: str, username: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=username, issuer_name=issuer)


def verify_totp(secret: str, code: str, now: datetime, valid_window: int) -> bool:
    """Check a code against ``secret`` allowing ``valid_window`` steps either side of ``now``."""
    code = code.replace(" ", "").strip()
    if not code.isdigit():
        return False
    # pyotp reads naive datetimes as local time
    for_time = now.replace(tzinfo=timezone.utc)
    return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=valid_window)


def render_qr_data_url(data: str) -> str:
    """Render ``data`` as a PNG QR code wrapped in a data URL."""
    image = qrcode.make(data)
    buffer = io.BytesIO()
    image.save(buffer)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


@dataclass(frozen=True)
class PendingSecret:
    user_id: int
    secret: str
    expires_at: datetime


class PendingSecretStore:
    """Unconfirmed 2FA secrets keyed by setup-session id.

    Each entry is bound to the user who started setup, so a session id
    presented by another account never sees it.
    """

    def __init__(self, ttl: timedelta) -> None:
        self.ttl = ttl
        self._entries: dict[str, PendingSecret] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def put(self, session_id: str, user_id: int, secret: str, now: datetime) -> None:
        with self._lock:
            self._purge(now)
            self._entries[session_id] = PendingSecret(user_id=user_id, secret=secret, expires_at=now + self.ttl)

    def get(self, session_id: str, user_id: int, now: datetime) -> str | None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[session_id]
                return None
            if entry.user_id != user_id:
                return None
            return entry.secret

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_id, None)

    def _purge(self, now: datetime) -> None:
        for key in [k for k, v in self._entries.items() if v.expires_at <= now]:
            del self._entries[key]


@dataclass(frozen=True)
class TwoFactorSetup:
    secret: str
    provisioning_uri: str
    qr_code: str


class TwoFactorService:
    """Enrollment, confirmation and removal of TOTP second factors."""

    def __init__(
        self,
        pending: PendingSecretStore,
        issuer: str | None = None,
        valid_window: int | None = None,
        clock: Clock = utcnow,
    ) -> None:
        settings = get_settings()
        self.pending = pending
        self.issuer = issuer or settings.TWO_FACTOR_ISSUER
        self.valid_window = settings.TWO_FACTOR_VALID_WINDOW if valid_window is None else valid_window
        self._clock = clock

    def begin_setup(self, user: UserRecord, session_id: str) -> TwoFactorSetup:
        """Generate a secret and park it for this session. The user record is untouched."""
        secret = generate_totp_secret()
        uri = get_totp_uri(secret, user.username, self.issuer)
        qr_code = render_qr_data_url(uri)
        self.pending.put(session_id, user.id, secret, self._clock())
        logger.info("2FA setup started for user %s", user.id)
        return TwoFactorSetup(secret=secret, provisioning_uri=uri, qr_code=qr_code)

    def confirm_setup(self, store: CredentialStore, user: UserRecord, session_id: str | None, code: str) -> None:
        """Promote the pending secret to the user record once ``code`` checks out."""
        now = self._clock()
        secret = self.pending.get(session_id, user.id, now) if session_id else None
        if secret is None:
            raise NoPendingSetup()

        if not verify_totp(secret, code, now, self.valid_window):
            raise InvalidTwoFactorCode("Invalid verification code")

        store.set_two_factor(user.id, secret, enabled=True)
        self.pending.discard(session_id)
        logger.info("2FA enabled for user %s", user.id)

    def verify_login(self, user: UserRecord, code: str) -> bool:
        if not user.two_factor_enabled or not user.two_factor_secret:
            return False
        return verify_totp(user.two_factor_secret, code, self._clock(), self.valid_window)

    def disable(self, store: CredentialStore, user: UserRecord, password: str) -> None:
        """Clear the second factor after re-checking the current password."""
        if not verify_password(password, user.password_hash):
            raise ValidationError("Invalid password")
        store.set_two_factor(user.id, None, enabled=False)
        logger.info("2FA disabled for user %s", user.id)
