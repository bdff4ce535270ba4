"""Installment financing engine: schedules, payments and plan renegotiation."""

from installment_engine.engine import InstallmentEngine

__version__ = "0.1.0"

__all__ = ["InstallmentEngine", "__version__"]
