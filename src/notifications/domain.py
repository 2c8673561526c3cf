"""Notifications elements register with the shared reconciliation domain."""

from shared.domain import domain as notifications

__all__ = ["notifications"]
