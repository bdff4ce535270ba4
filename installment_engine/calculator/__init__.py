"""Amortization calculator."""

from installment_engine.calculator.amortization import (
    add_months,
    build_schedule,
    calculate_installment_amount,
    calculate_total_interest,
)

__all__ = [
    "add_months",
    "build_schedule",
    "calculate_installment_amount",
    "calculate_total_interest",
]
