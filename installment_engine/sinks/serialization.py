"""JSON-ready conversion of plans, modifications and events.

Money stays exact as decimal strings, enums become their values and dates
become ISO-8601 text.
"""

from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from installment_engine.models.installment import InstallmentPlan


def to_dict(obj: Any) -> dict:
    """Convert object to dictionary."""
    if isinstance(obj, InstallmentPlan):
        return plan_to_dict(obj)
    elif is_dataclass(obj):
        return dataclass_to_dict(obj)
    elif isinstance(obj, dict):
        return serialize_value(obj)
    else:
        return {"value": str(obj)}


def dataclass_to_dict(obj: Any) -> dict:
    """Convert dataclass to dict with proper serialization."""
    result = {}
    for key, value in asdict(obj).items():
        result[key] = serialize_value(value)
    return result


def plan_to_dict(plan: InstallmentPlan, as_of: date | None = None) -> dict:
    """Serialize a plan together with its derived ledger figures.

    Parameters
    ----------
    plan : InstallmentPlan
        Plan to serialize.
    as_of : date | None
        Date used for status derivation. Defaults to the wall clock; engine
        exports pass the engine clock through ``InstallmentEngine.export_plans``.
    """
    as_of = as_of or date.today()
    result = dataclass_to_dict(plan)
    for payment, data in zip(plan.payments, result["payments"]):
        data["status"] = payment.status_on(as_of).value
    result.update(
        {
            "status": plan.status_on(as_of).value,
            "total_paid": serialize_value(plan.total_paid),
            "remaining_balance": serialize_value(plan.remaining_balance),
            "outstanding_principal": serialize_value(plan.outstanding_principal),
            "paid_installments": plan.paid_installments,
            "pending_installments": plan.count_pending(as_of),
            "overdue_installments": plan.count_overdue(as_of),
            "next_due_date": serialize_value(plan.next_due_date),
        }
    )
    return result


def serialize_value(value: Any) -> Any:
    """Serialize a value for JSON output."""
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, (date, datetime)):
        return value.isoformat()
    elif is_dataclass(value) and not isinstance(value, type):
        return dataclass_to_dict(value)
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value
