"""Amortization schedule value types."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from installment_engine.models.installment.enums import PaymentStatus


@dataclass(frozen=True)
class ScheduleEntry:
    """One row of an amortization schedule."""

    installment_number: int
    install_date: date
    due_date: date
    opening_balance: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    remaining_balance: Decimal
    status: PaymentStatus = PaymentStatus.PENDING


@dataclass(frozen=True)
class AmortizationSchedule:
    """Full output of one calculator run."""

    principal: Decimal
    interest_rate: Decimal
    total_interest: Decimal
    total_payable: Decimal
    installment_amount: Decimal
    entries: tuple[ScheduleEntry, ...] = field(default_factory=tuple)

    @property
    def number_of_installments(self) -> int:
        return len(self.entries)

    @property
    def first_due_date(self) -> date:
        return self.entries[0].due_date

    @property
    def end_date(self) -> date:
        return self.entries[-1].due_date
