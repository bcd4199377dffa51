"""Expiration classification of secrets, keys and certificates."""
from enum import Enum
from typing import Optional
from datetime import datetime, timedelta, timezone

CRITICAL_DAYS = 30
WARNING_DAYS = 60


class ExpirationStatus(str, Enum):
    NO_EXPIRATION = "no_expiration"
    EXPIRED = "expired"
    CRITICAL = "critical"
    WARNING = "warning"
    SAFE = "safe"

    @property
    def alerting(self) -> bool:
        """True for the statuses shown as alerts."""
        return self in (
            ExpirationStatus.EXPIRED,
            ExpirationStatus.CRITICAL,
            ExpirationStatus.WARNING,
        )


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def classify(
    expires_on: Optional[datetime],
    now: Optional[datetime] = None,
    critical_days: int = CRITICAL_DAYS,
    warning_days: int = WARNING_DAYS,
) -> ExpirationStatus:
    """Map an expiry timestamp to its alert bucket.

    Args:
        expires_on: Expiry of the resource, None when it never expires.
        now: Reference time, defaults to the current UTC time.
        critical_days: Remaining days at or below which status is critical.
        warning_days: Remaining days at or below which status is warning.

    Returns:
        The ExpirationStatus bucket.
    """
    if expires_on is None:
        return ExpirationStatus.NO_EXPIRATION
    now = as_utc(now) if now else datetime.now(timezone.utc)
    remaining = as_utc(expires_on) - now
    if remaining < timedelta(0):
        return ExpirationStatus.EXPIRED
    if remaining <= timedelta(days=critical_days):
        return ExpirationStatus.CRITICAL
    if remaining <= timedelta(days=warning_days):
        return ExpirationStatus.WARNING
    return ExpirationStatus.SAFE


def days_until(expires_on: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left before expiry (negative once expired)."""
    if expires_on is None:
        return None
    now = as_utc(now) if now else datetime.now(timezone.utc)
    return int((as_utc(expires_on) - now).total_seconds() / 86400)
