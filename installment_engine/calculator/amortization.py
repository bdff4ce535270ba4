"""Flat-interest amortization calculator.

Interest is a single charge of ``principal * rate / 100`` for the whole
term. The principal and interest shares of every installment but the
last are truncated to the cent; the last installment absorbs whatever
remains, so a schedule always sums exactly to ``principal + interest``
and no row ever carries a negative share.
"""

import calendar
from datetime import date, datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from installment_engine.exceptions import InvalidParameterError
from installment_engine.models.installment.schedule import AmortizationSchedule, ScheduleEntry

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str) -> Decimal:
    """Convert caller input to Decimal, rejecting non-numeric values."""
    if isinstance(value, bool) or value is None:
        raise InvalidParameterError(
            f"{field} must be a number", field=field, details={"value": value}
        )
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidParameterError(
            f"{field} must be a number", field=field, details={"value": str(value)}
        ) from exc
    if not result.is_finite():
        raise InvalidParameterError(
            f"{field} must be a finite number", field=field, details={"value": str(value)}
        )
    return result


def to_money(value: Any, field: str) -> Decimal:
    """Convert caller input to a cent-quantized amount."""
    return to_decimal(value, field).quantize(CENT, rounding=ROUND_HALF_UP)


def to_date(value: date | datetime, field: str = "start_date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise InvalidParameterError(
        f"{field} must be a date", field=field, details={"value": str(value)}
    )


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end`` (negative if earlier)."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def calculate_total_interest(principal: Decimal, annual_interest_rate: Decimal) -> Decimal:
    return (principal * annual_interest_rate / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def _validate(principal: Any, annual_interest_rate: Any, number_of_installments: Any) -> tuple[Decimal, Decimal, int]:
    if isinstance(number_of_installments, bool) or not isinstance(number_of_installments, int):
        raise InvalidParameterError(
            "number_of_installments must be an integer",
            field="number_of_installments",
            details={"value": str(number_of_installments)},
        )
    if number_of_installments <= 0:
        raise InvalidParameterError(
            "number_of_installments must be at least 1",
            field="number_of_installments",
            details={"value": number_of_installments},
        )

    amount = to_money(principal, "principal")
    if amount < 0:
        raise InvalidParameterError(
            "principal cannot be negative (down payment exceeds total price)",
            field="principal",
            details={"value": str(amount)},
        )

    rate = to_decimal(annual_interest_rate, "interest_rate")
    if rate < 0:
        raise InvalidParameterError(
            "interest_rate cannot be negative",
            field="interest_rate",
            details={"value": str(rate)},
        )
    return amount, rate, number_of_installments


def _shares(principal: Decimal, total_interest: Decimal, n: int) -> tuple[Decimal, Decimal]:
    principal_share = (principal / n).quantize(CENT, rounding=ROUND_DOWN)
    interest_share = (total_interest / n).quantize(CENT, rounding=ROUND_DOWN)
    return principal_share, interest_share


def calculate_installment_amount(
    principal: Any,
    annual_interest_rate: Any,
    number_of_installments: int,
) -> Decimal:
    """Recurring installment (EMI) for the given terms.

    Parameters
    ----------
    principal : Decimal | int | float | str
        Amount financed (total price minus down payment).
    annual_interest_rate : Decimal | int | float | str
        Flat interest rate in percent.
    number_of_installments : int
        Number of monthly installments.

    Returns
    -------
    Decimal
        Amount due on every installment except possibly the last.
    """
    amount, rate, n = _validate(principal, annual_interest_rate, number_of_installments)
    principal_share, interest_share = _shares(amount, calculate_total_interest(amount, rate), n)
    return principal_share + interest_share


def build_schedule(
    principal: Any,
    annual_interest_rate: Any,
    number_of_installments: int,
    start_date: date | datetime,
    first_installment_number: int = 1,
) -> AmortizationSchedule:
    """Build the full payment schedule for a loan.

    Parameters
    ----------
    principal : Decimal | int | float | str
        Amount financed, must be >= 0.
    annual_interest_rate : Decimal | int | float | str
        Flat interest rate in percent, must be >= 0.
    number_of_installments : int
        Number of installments, must be >= 1.
    start_date : date
        Anchor date; installment ``k`` is due ``start_date + k months``.
    first_installment_number : int
        Number given to the first row. Rescheduling a plan passes the
        number of the first installment being replaced so numbering and
        due dates continue from the original anchor.

    Returns
    -------
    AmortizationSchedule
        Schedule with totals and one entry per installment.

    Raises
    ------
    InvalidParameterError
        If any parameter is out of range.
    """
    amount, rate, n = _validate(principal, annual_interest_rate, number_of_installments)
    anchor = to_date(start_date)
    if first_installment_number < 1:
        raise InvalidParameterError(
            "first_installment_number must be at least 1",
            field="first_installment_number",
            details={"value": first_installment_number},
        )

    total_interest = calculate_total_interest(amount, rate)
    principal_share, interest_share = _shares(amount, total_interest, n)

    entries = []
    balance = amount
    interest_left = total_interest
    for offset in range(n):
        number = first_installment_number + offset
        if offset == n - 1:
            principal_amount = balance
            interest_amount = interest_left
        else:
            principal_amount = principal_share
            interest_amount = interest_share

        entries.append(
            ScheduleEntry(
                installment_number=number,
                install_date=add_months(anchor, number - 1),
                due_date=add_months(anchor, number),
                opening_balance=balance,
                principal_amount=principal_amount,
                interest_amount=interest_amount,
                total_amount=principal_amount + interest_amount,
                remaining_balance=balance - principal_amount,
            )
        )
        balance -= principal_amount
        interest_left -= interest_amount

    return AmortizationSchedule(
        principal=amount,
        interest_rate=rate,
        total_interest=total_interest,
        total_payable=amount + total_interest,
        installment_amount=principal_share + interest_share,
        entries=tuple(entries),
    )
