"""JWT Token Service."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.clock import Clock, utcnow
from app.config import get_settings
from app.errors import TokenExpired, TokenInvalid


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a session token."""

    user_id: int
    issued_at: datetime | None
    expires_at: datetime
    storage: str = "database"


def _from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


class JWTService:
    """Handles JWT token creation and validation.

    Expiry is checked against the injected clock rather than inside
    ``jwt.decode`` so tests can move time forward.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        expire_minutes: int | None = None,
        clock: Clock = utcnow,
    ) -> None:
        settings = get_settings()
        self.secret_key = secret_key or settings.JWT_SECRET_KEY
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.expire_minutes = expire_minutes or settings.JWT_EXPIRE_MINUTES
        self._clock = clock

    def create_token(self, user_id: int, storage: str = "database") -> str:
        """Create a JWT token for the given user.

        ``store`` names the backend that issued ``sub``; the same id can exist
        in both backends.
        """
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "store": storage,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> TokenClaims:
        """Verify a token. Raises TokenExpired or TokenInvalid."""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            raise TokenInvalid() from None

        try:
            user_id = int(payload["sub"])
            storage = str(payload["store"])
            expires_at = _from_timestamp(payload["exp"])
            issued_at = _from_timestamp(payload["iat"]) if "iat" in payload else None
        except (KeyError, TypeError, ValueError):
            raise TokenInvalid() from None

        if self._clock() >= expires_at:
            raise TokenExpired()
        return TokenClaims(user_id=user_id, issued_at=issued_at, expires_at=expires_at, storage=storage)


_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    """Get singleton JWT service instance."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
