"""Shared rate limiter.

Limits are looked up per request so they follow the current settings.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def register_limit() -> str:
    return get_settings().REGISTER_RATE_LIMIT


def login_limit() -> str:
    return get_settings().LOGIN_RATE_LIMIT


def api_limit() -> str:
    return get_settings().API_RATE_LIMIT


def password_reset_limit() -> str:
    return get_settings().PASSWORD_RESET_RATE_LIMIT
