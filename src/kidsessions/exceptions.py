"""Custom exception hierarchy for the KidSessions package."""

from __future__ import annotations


class KidSessionsError(Exception):
    """Base class for all KidSessions specific errors."""


class ChildNotFoundError(KidSessionsError):
    """Raised when a child record lookup or update targets a missing id."""


class InvalidChildError(KidSessionsError):
    """Raised when a new child record fails validation."""


class InvalidRenewalAmountError(KidSessionsError):
    """Raised when a renewal amount is not a positive finite number."""


class TotalLockedError(KidSessionsError):
    """Raised when editing a session quota that is fixed at creation."""
