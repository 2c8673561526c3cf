"""Payments elements register with the shared reconciliation domain."""

from shared.domain import domain as payments

__all__ = ["payments"]
