"""Plan lifecycle, modification preview and modification workflow services."""

from installment_engine.services.modification import ModificationEngine, derive_modification
from installment_engine.services.plans import PaymentReceipt, PlanManager
from installment_engine.services.workflow import ModificationWorkflow

__all__ = [
    "ModificationEngine",
    "ModificationWorkflow",
    "PaymentReceipt",
    "PlanManager",
    "derive_modification",
]
