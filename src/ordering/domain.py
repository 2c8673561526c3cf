"""Ordering elements register with the shared reconciliation domain."""

from shared.domain import domain as ordering

__all__ = ["ordering"]
