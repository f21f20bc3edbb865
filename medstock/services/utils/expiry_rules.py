from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from medstock.models.enums import ExpiryState


def is_expired(expiry_date: date, as_of: date) -> bool:
    """
    expiry_date is the last usable day (inclusive):
    as_of <= expiry_date → usable, as_of > expiry_date → expired.
    """
    return expiry_date < as_of


def days_to_expiry(expiry_date: Optional[date], as_of: date) -> Optional[int]:
    """Days left; negative once expired, None when no date is known."""
    if expiry_date is None:
        return None
    return (expiry_date - as_of).days


def classify_expiry(expiry_date: date, as_of: date, soon_days: int) -> ExpiryState:
    """
    - EXPIRED        expiry_date < as_of
    - EXPIRING_SOON  as_of <= expiry_date < as_of + soon_days
    - OK             otherwise

    soon_days=0 disables the "soon" band.
    """
    if soon_days < 0:
        raise ValueError("soon_days must be >= 0")
    if is_expired(expiry_date, as_of):
        return ExpiryState.EXPIRED
    if expiry_date < as_of + timedelta(days=soon_days):
        return ExpiryState.EXPIRING_SOON
    return ExpiryState.OK


_SEVERITY = {
    ExpiryState.OK: 0,
    ExpiryState.EXPIRING_SOON: 1,
    ExpiryState.EXPIRED: 2,
}


def is_escalation(previous: str, current: ExpiryState) -> bool:
    """
    True when ``current`` is a worse state than the last announced one.
    Unknown previous values count as OK.
    """
    try:
        prev = ExpiryState(previous)
    except ValueError:
        prev = ExpiryState.OK
    return _SEVERITY[current] > _SEVERITY[prev]
