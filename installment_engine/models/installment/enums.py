"""Enumeration types for installment financing entities."""

from enum import Enum


class PlanStatus(str, Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    DEFAULTED = "Defaulted"
    CANCELLED = "Cancelled"
    OVERDUE = "Overdue"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    OVERDUE = "Overdue"


class ModificationType(str, Enum):
    CHANGE_INSTALLMENT_COUNT = "ChangeInstallmentCount"
    CHANGE_INTEREST_RATE = "ChangeInterestRate"
    CHANGE_DOWN_PAYMENT = "ChangeDownPayment"
    ADD_PRODUCTS = "AddProducts"


class ModificationStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    APPLIED = "Applied"


# Statuses an operator may set by hand; the rest are derived from payments.
ADMINISTRATIVE_STATUSES = frozenset({PlanStatus.DEFAULTED, PlanStatus.CANCELLED})
