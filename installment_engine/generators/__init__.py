"""Sample data generators for installment plans."""

from installment_engine.generators.base import BaseGenerator
from installment_engine.generators.plan import (
    ModificationRequest,
    PaymentBehavior,
    PlanGenerator,
    PlanRequest,
)

__all__ = [
    "BaseGenerator",
    "ModificationRequest",
    "PaymentBehavior",
    "PlanGenerator",
    "PlanRequest",
]
