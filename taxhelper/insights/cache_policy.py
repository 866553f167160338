"""
Insight cache freshness.
A run is served from cache only while it is younger than the TTL and no
transaction changed after it was generated.
"""

from datetime import datetime, timedelta
from typing import Optional

from taxhelper.config import settings

PRODUCTION_TTL_HOURS = 6
DEFAULT_TTL_HOURS = 1


def get_insight_cache_ttl(
    ttl_hours: Optional[float] = None, environment: Optional[str] = None
) -> timedelta:
    """Configured TTL when positive, else 6h in production and 1h elsewhere."""
    ttl_hours = settings.INSIGHT_CACHE_TTL_HOURS if ttl_hours is None else ttl_hours
    if ttl_hours is not None and ttl_hours > 0:
        return timedelta(hours=ttl_hours)

    environment = settings.ENVIRONMENT if environment is None else environment
    if environment.lower() == "production":
        return timedelta(hours=PRODUCTION_TTL_HOURS)
    return timedelta(hours=DEFAULT_TTL_HOURS)


def is_insight_run_fresh(
    generated_at: datetime, now: datetime, ttl: Optional[timedelta] = None
) -> bool:
    ttl = ttl if ttl is not None else get_insight_cache_ttl()
    return now - generated_at < ttl


def is_cache_valid(
    generated_at: datetime,
    now: datetime,
    latest_transaction_update: Optional[datetime],
    ttl: Optional[timedelta] = None,
) -> bool:
    """Fresh, and nothing in the user's transactions changed since generation."""
    if not is_insight_run_fresh(generated_at, now, ttl):
        return False
    return latest_transaction_update is None or latest_transaction_update <= generated_at
