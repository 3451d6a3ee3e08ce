"""Per-caller rate limiting for the internal trigger endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from opshub.core.config import settings

# Trigger calls are cheap to make and expensive to run; keyed by caller address.
INTERNAL_TRIGGER_LIMIT = f"{max(1, settings.RATE_LIMIT_INTERNAL)}/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=settings.RATE_LIMIT_INTERNAL > 0,
)
