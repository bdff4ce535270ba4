"""Installment financing domain models."""

from installment_engine.models.installment.enums import (
    ModificationStatus,
    ModificationType,
    PaymentStatus,
    PlanStatus,
)
from installment_engine.models.installment.modification import (
    FinancialImpact,
    InstallmentModification,
    ModificationDetails,
    ModificationParams,
    ModificationPreview,
    PlanSnapshot,
)
from installment_engine.models.installment.plan import InstallmentPlan, Payment, PlanProduct
from installment_engine.models.installment.schedule import AmortizationSchedule, ScheduleEntry

__all__ = [
    "AmortizationSchedule",
    "FinancialImpact",
    "InstallmentModification",
    "InstallmentPlan",
    "ModificationDetails",
    "ModificationParams",
    "ModificationPreview",
    "ModificationStatus",
    "ModificationType",
    "Payment",
    "PaymentStatus",
    "PlanProduct",
    "PlanSnapshot",
    "PlanStatus",
    "ScheduleEntry",
]
