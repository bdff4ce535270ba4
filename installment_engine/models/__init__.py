"""Domain models for installment financing."""

from installment_engine.models.base import Event

__all__ = ["Event"]
