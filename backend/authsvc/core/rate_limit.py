"""
Request rate limiting (slowapi). Per client IP; login is limited more tightly
than the default to slow down password guessing.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from authsvc.config import settings

DEFAULT_LIMITS = ["200/minute"]

limiter = Limiter(key_func=get_remote_address, default_limits=DEFAULT_LIMITS)


def login_limit() -> str:
    return settings.login_rate_limit
