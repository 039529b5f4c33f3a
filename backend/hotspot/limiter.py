"""
Shared Rate Limiter Instance

Imported by the routes that accept payments, tokens and logins, so a single
client cannot brute-force tokens or voucher codes.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=["1000/hour"]
)
