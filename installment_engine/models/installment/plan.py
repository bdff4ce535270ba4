"""Installment plan aggregate and its embedded payments."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from installment_engine.models.installment.enums import (
    ADMINISTRATIVE_STATUSES,
    PaymentStatus,
    PlanStatus,
)

ZERO = Decimal("0.00")


@dataclass
class PlanProduct:
    """Financed line item, snapshotted when the plan is created."""

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    category: str = ""
    description: str = ""
    line_total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        self.line_total = (self.unit_price * self.quantity).quantize(Decimal("0.01"))


@dataclass
class Payment:
    """One scheduled installment of a plan.

    Status is derived from the settled amount and the due date, so a
    payment never has to be "refreshed": once ``amount_paid`` covers
    ``amount_due`` and a payment date is recorded it reads as Paid forever.
    """

    installment_number: int
    install_date: date
    due_date: date
    amount_due: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    amount_paid: Decimal = ZERO
    payment_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_date is not None and self.amount_paid >= self.amount_due

    @property
    def has_payment(self) -> bool:
        """True once any amount has been recorded against this installment."""
        return self.amount_paid > ZERO

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, self.amount_due - self.amount_paid)

    def status_on(self, as_of: date) -> PaymentStatus:
        """Payment status as observed on ``as_of``."""
        if self.is_paid:
            return PaymentStatus.PAID
        if self.due_date < as_of:
            return PaymentStatus.OVERDUE
        return PaymentStatus.PENDING


@dataclass
class InstallmentPlan:
    """Financed purchase with its full payment schedule.

    ``total_amount_with_interest`` includes the down payment, so the
    schedule always satisfies
    ``sum(amount_due) == total_amount_with_interest - down_payment``.
    Plan status is derived from the payments unless an operator set
    ``status_override`` to Defaulted or Cancelled.
    """

    plan_id: str
    customer_id: str
    products: list[PlanProduct]
    total_price: Decimal
    down_payment: Decimal
    number_of_installments: int
    installment_amount: Decimal  # Recurring (EMI) amount
    interest_rate: Decimal  # Annual percent, flat over the term
    total_amount_with_interest: Decimal
    start_date: date
    end_date: date
    payments: list[Payment] = field(default_factory=list)
    sale_id: str | None = None
    status_override: PlanStatus | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount_paid for p in self.payments), ZERO)

    @property
    def remaining_balance(self) -> Decimal:
        """Amount still owed, interest included."""
        return sum((p.outstanding for p in self.payments if not p.is_paid), ZERO)

    @property
    def open_payments(self) -> list[Payment]:
        """Installments with nothing recorded against them and an amount still due."""
        return [p for p in self.payments if not p.has_payment and not p.is_paid]

    @property
    def outstanding_principal(self) -> Decimal:
        """Principal carried by installments that have not been touched."""
        return sum((p.principal_amount for p in self.open_payments), ZERO)

    @property
    def paid_installments(self) -> int:
        return sum(1 for p in self.payments if p.is_paid)

    def count_pending(self, as_of: date) -> int:
        return sum(1 for p in self.payments if p.status_on(as_of) == PaymentStatus.PENDING)

    def count_overdue(self, as_of: date) -> int:
        return sum(1 for p in self.payments if p.status_on(as_of) == PaymentStatus.OVERDUE)

    @property
    def next_payment(self) -> Payment | None:
        """Earliest unpaid installment in due-date order."""
        unpaid = [p for p in self.payments if not p.is_paid]
        return min(unpaid, key=lambda p: (p.due_date, p.installment_number), default=None)

    @property
    def next_due_date(self) -> date | None:
        payment = self.next_payment
        return payment.due_date if payment else None

    @property
    def is_completed(self) -> bool:
        return bool(self.payments) and all(p.is_paid for p in self.payments)

    def status_on(self, as_of: date) -> PlanStatus:
        """Plan status as observed on ``as_of``."""
        if self.status_override in ADMINISTRATIVE_STATUSES:
            return self.status_override
        if self.is_completed:
            return PlanStatus.COMPLETED
        if any(p.status_on(as_of) == PaymentStatus.OVERDUE for p in self.payments):
            return PlanStatus.OVERDUE
        return PlanStatus.ACTIVE

    def get_payment(self, installment_number: int) -> Payment | None:
        for payment in self.payments:
            if payment.installment_number == installment_number:
                return payment
        return None

    def reconciles(self) -> bool:
        """Check the schedule invariants the engine maintains."""
        due = sum((p.amount_due for p in self.payments), ZERO)
        numbers = [p.installment_number for p in self.payments]
        return (
            self.number_of_installments == len(self.payments)
            and due == self.total_amount_with_interest - self.down_payment
            and numbers == sorted(numbers)
            and [p.due_date for p in self.payments] == sorted(p.due_date for p in self.payments)
            and self.remaining_balance >= ZERO
        )
