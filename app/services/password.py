"""Password strength policy and hashing."""

import re
from dataclasses import dataclass

import bcrypt

from app.config import get_settings
from app.errors import ValidationError

MIN_LENGTH = 8
SPECIAL_CHARACTERS = "@$!%*?&"

_LOWERCASE = re.compile(r"[a-z]")
_UPPERCASE = re.compile(r"[A-Z]")
_NUMBER = re.compile(r"[0-9]")
_SPECIAL = re.compile(f"[{re.escape(SPECIAL_CHARACTERS)}]")

REQUIREMENTS = {
    "min_length": f"Password must be at least {MIN_LENGTH} characters long",
    "has_lowercase": "Password must contain at least one lowercase letter",
    "has_uppercase": "Password must contain at least one uppercase letter",
    "has_number": "Password must contain at least one number",
    "has_special_char": f"Password must contain at least one special character ({SPECIAL_CHARACTERS})",
}


@dataclass(frozen=True)
class PasswordCriteria:
    min_length: bool
    has_lowercase: bool
    has_uppercase: bool
    has_number: bool
    has_special_char: bool

    def unmet(self) -> list[str]:
        """Names of the criteria the password fails."""
        return [name for name in REQUIREMENTS if not getattr(self, name)]


@dataclass(frozen=True)
class PasswordStrength:
    is_valid: bool
    score: int
    criteria: PasswordCriteria
    strength: str


def validate_strength(password: str) -> PasswordStrength:
    """Score a password against the five criteria. Pure: same input, same report."""
    criteria = PasswordCriteria(
        min_length=len(password) >= MIN_LENGTH,
        has_lowercase=bool(_LOWERCASE.search(password)),
        has_uppercase=bool(_UPPERCASE.search(password)),
        has_number=bool(_NUMBER.search(password)),
        has_special_char=bool(_SPECIAL.search(password)),
    )
    score = len(REQUIREMENTS) - len(criteria.unmet())
    if score <= 2:
        strength = "weak"
    elif score <= 4:
        strength = "medium"
    else:
        strength = "strong"
    return PasswordStrength(is_valid=score == len(REQUIREMENTS), score=score, criteria=criteria, strength=strength)


def require_strong_password(password: str) -> None:
    """Raise ValidationError naming every unmet requirement."""
    report = validate_strength(password)
    if report.is_valid:
        return
    raise ValidationError(
        "Password does not meet security requirements",
        errors=[{"field": "password", "message": REQUIREMENTS[name]} for name in report.criteria.unmet()],
    )


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes
    pw = password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw, bcrypt.gensalt(rounds=get_settings().BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    pw = plain.encode("utf-8")[:72]
    return bcrypt.checkpw(pw, hashed.encode("utf-8"))
