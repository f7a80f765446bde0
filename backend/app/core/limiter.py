"""Shared slowapi limiter, keyed by client address (login throttling).

Counters live in ``RATE_LIMIT_STORAGE_URI``; point it at a shared store
when running several gunicorn workers, or each worker counts on its own.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)
