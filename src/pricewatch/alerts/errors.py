# src/pricewatch/alerts/errors.py
from __future__ import annotations


class AlertError(Exception):
    """Base class for rule-lifecycle failures surfaced to callers."""


class ValidationError(AlertError, ValueError):
    """Malformed rule input (non-finite / non-positive target, unknown condition)."""


class PermissionDenied(AlertError):
    """Notification permission not granted; no rule was created."""


class PersistenceFailure(AlertError):
    """The durable store did not accept a write."""
