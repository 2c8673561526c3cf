"""Inventory elements register with the shared reconciliation domain."""

from shared.domain import domain as inventory

__all__ = ["inventory"]
