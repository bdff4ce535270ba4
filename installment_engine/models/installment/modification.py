"""Modification request, snapshot and preview models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from installment_engine.models.installment.enums import ModificationStatus, ModificationType
from installment_engine.models.installment.plan import PlanProduct
from installment_engine.models.installment.schedule import ScheduleEntry


@dataclass
class ModificationParams:
    """Type-specific values a caller asks for.

    Only the field matching the modification type is read, except for
    AddProducts which also honours an installment count or rate override.
    """

    new_installment_count: int | None = None
    new_interest_rate: Decimal | None = None
    additional_down_payment: Decimal | None = None
    additional_products: list[PlanProduct] = field(default_factory=list)


@dataclass
class PlanSnapshot:
    """Point-in-time summary of a plan, enough to render before/after views.

    ``remaining_installments``, ``outstanding_principal`` and
    ``outstanding_payable`` describe the installments with no payment
    recorded, which are the ones a modification reschedules.
    """

    total_price: Decimal
    down_payment: Decimal
    number_of_installments: int
    installment_amount: Decimal
    interest_rate: Decimal
    remaining_balance: Decimal
    paid_installments: int
    total_paid: Decimal
    products: list[PlanProduct]
    next_due_date: date | None
    start_date: date
    end_date: date
    remaining_installments: int
    outstanding_principal: Decimal
    outstanding_payable: Decimal

    @property
    def kept_installments(self) -> int:
        """Installments left untouched by a reschedule."""
        return self.number_of_installments - self.remaining_installments


@dataclass
class FinancialImpact:
    """Delta between the current and proposed terms."""

    old_monthly_emi: Decimal
    new_monthly_emi: Decimal
    emi_difference: Decimal
    old_total_payable: Decimal
    new_total_payable: Decimal
    total_payable_difference: Decimal
    old_end_date: date
    new_end_date: date
    time_difference_months: int

    @property
    def is_financially_beneficial(self) -> bool:
        return self.total_payable_difference <= 0


@dataclass
class ModificationDetails:
    """Requested values plus the computed financial impact."""

    financial_impact: FinancialImpact
    new_installment_count: int | None = None
    new_interest_rate: Decimal | None = None
    additional_down_payment: Decimal | None = None
    additional_products: list[PlanProduct] = field(default_factory=list)

    @property
    def params(self) -> ModificationParams:
        return ModificationParams(
            new_installment_count=self.new_installment_count,
            new_interest_rate=self.new_interest_rate,
            additional_down_payment=self.additional_down_payment,
            additional_products=list(self.additional_products),
        )


@dataclass
class ModificationPreview:
    """Side-by-side comparison returned before anything is committed."""

    plan_id: str
    modification_type: ModificationType
    current_monthly_emi: Decimal
    current_remaining_balance: Decimal
    current_outstanding_principal: Decimal
    current_remaining_installments: int
    current_end_date: date
    current_total_payable: Decimal
    new_monthly_emi: Decimal
    new_remaining_balance: Decimal
    new_outstanding_principal: Decimal
    new_remaining_installments: int
    new_end_date: date
    new_total_payable: Decimal
    emi_difference: Decimal
    total_payable_difference: Decimal
    time_difference_months: int
    is_financially_beneficial: bool
    recommendation_note: str
    new_payment_schedule: list[ScheduleEntry]
    previous_plan: PlanSnapshot
    new_plan: PlanSnapshot
    modification_details: ModificationDetails


@dataclass
class InstallmentModification:
    """A proposed or completed change to a plan."""

    modification_id: str
    plan_id: str
    customer_id: str
    modification_type: ModificationType
    requested_by: str
    reason: str
    previous_plan: PlanSnapshot
    new_plan: PlanSnapshot
    modification_details: ModificationDetails
    status: ModificationStatus = ModificationStatus.PENDING
    plan_version: int = 0  # Plan version the snapshots were taken from
    approved_by: str | None = None
    approval_notes: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    rejected_at: datetime | None = None
    applied_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
