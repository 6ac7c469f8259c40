"""Boundary to the coin ledger and the outcome log."""

from . import gateway, outcomes

__all__ = ["gateway", "outcomes"]
