"""Plan creation, payment recording and administrative status changes."""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from installment_engine.calculator.amortization import (
    build_schedule,
    calculate_installment_amount,
    to_date,
    to_decimal,
    to_money,
)
from installment_engine.config import PlanConfig
from installment_engine.events import EventPublisher
from installment_engine.exceptions import (
    EntityNotFoundError,
    InvalidParameterError,
    StateConflictError,
)
from installment_engine.logging import log_context
from installment_engine.models.installment import (
    InstallmentPlan,
    Payment,
    PaymentStatus,
    PlanProduct,
    PlanStatus,
)
from installment_engine.models.installment.plan import ZERO
from installment_engine.store import InstallmentDataStore

logger = logging.getLogger(__name__)

# Statuses an operator may set by hand; the rest are derived from payments
SETTABLE_STATUSES = frozenset({PlanStatus.ACTIVE, PlanStatus.DEFAULTED, PlanStatus.CANCELLED})

CLOSED_STATUSES = frozenset({PlanStatus.COMPLETED, PlanStatus.CANCELLED})


@dataclass
class PaymentReceipt:
    """Outcome of recording a payment.

    ``excess_amount`` is the part of the tendered amount that exceeded the
    installment's outstanding balance; it is not kept on the plan.
    """

    plan: InstallmentPlan
    installment_number: int
    amount_applied: Decimal
    excess_amount: Decimal
    payment_status: PaymentStatus

    @property
    def has_excess(self) -> bool:
        return self.excess_amount > ZERO


def require_text(value: Any, field: str) -> str:
    """Reject missing or blank free-text input."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidParameterError(f"{field} is required", field=field, details={"value": value})
    return value.strip()


def validate_product(product: PlanProduct, field: str = "products") -> PlanProduct:
    """Check a line item and return a copy with normalized money values."""
    if not isinstance(product, PlanProduct):
        raise InvalidParameterError(
            f"{field} must contain PlanProduct items",
            field=field,
            details={"value": repr(product)},
        )
    require_text(product.product_id, f"{field}.product_id")
    if isinstance(product.quantity, bool) or not isinstance(product.quantity, int) or product.quantity < 1:
        raise InvalidParameterError(
            "quantity must be a positive integer",
            field=f"{field}.quantity",
            details={"product_id": product.product_id, "value": product.quantity},
        )
    unit_price = to_money(product.unit_price, f"{field}.unit_price")
    if unit_price <= 0:
        raise InvalidParameterError(
            "unit_price must be greater than zero",
            field=f"{field}.unit_price",
            details={"product_id": product.product_id, "value": str(unit_price)},
        )
    return PlanProduct(
        product_id=product.product_id,
        name=product.name,
        unit_price=unit_price,
        quantity=product.quantity,
        category=product.category,
        description=product.description,
    )


def validate_rate(value: Any, config: PlanConfig, field: str = "interest_rate") -> Decimal:
    rate = to_decimal(value, field)
    if rate < 0 or rate > config.max_interest_rate:
        raise InvalidParameterError(
            f"{field} must be between 0 and {config.max_interest_rate}",
            field=field,
            details={"value": str(rate), "max": str(config.max_interest_rate)},
        )
    return rate


def validate_installment_count(
    value: Any, config: PlanConfig, field: str = "number_of_installments", already_used: int = 0
) -> int:
    """Check an installment count against the configured term limit.

    ``already_used`` counts installments that stay on the plan, so a
    reschedule cannot push the whole plan past ``max_installments``.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameterError(
            f"{field} must be an integer", field=field, details={"value": str(value)}
        )
    limit = config.max_installments - already_used
    if value < 1 or value > limit:
        raise InvalidParameterError(
            f"{field} must be between 1 and {limit}",
            field=field,
            details={"value": value, "max": limit},
        )
    return value


class PlanManager:
    """Own the plan lifecycle: creation, payments and status transitions.

    Parameters
    ----------
    store : InstallmentDataStore
        Plan storage with per-plan locking.
    config : PlanConfig
        Term and rate limits.
    publisher : EventPublisher
        Receives ``plan.*`` and ``payment.*`` events after each commit.
    clock : Callable[[], datetime]
        Source of "now"; status derivation uses its date.
    id_factory : Callable[[], str]
        Generates plan ids.
    """

    def __init__(
        self,
        store: InstallmentDataStore,
        config: PlanConfig | None = None,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.store = store
        self.config = config or PlanConfig()
        self.publisher = publisher or EventPublisher()
        self.clock = clock
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def today(self) -> date:
        return self.clock().date()

    # Creation
    def create_plan(
        self,
        customer_id: str,
        products: list[PlanProduct],
        total_price: Any,
        down_payment: Any,
        number_of_installments: int,
        interest_rate: Any,
        start_date: date | datetime,
        sale_id: str | None = None,
    ) -> InstallmentPlan:
        """Create a plan together with its full payment schedule.

        Parameters
        ----------
        customer_id : str
            Opaque customer reference.
        products : list[PlanProduct]
            Financed line items; snapshotted on the plan.
        total_price : Decimal | int | float | str
            Price of the purchase, must be > 0.
        down_payment : Decimal | int | float | str
            Upfront amount, ``0 <= down_payment < total_price``.
        number_of_installments : int
            Term in months, ``1..max_installments``.
        interest_rate : Decimal | int | float | str
            Flat rate in percent, ``0..max_interest_rate``.
        start_date : date
            Schedule anchor; the first installment is due one month later.
        sale_id : str | None
            Originating sale, if any.

        Returns
        -------
        InstallmentPlan
            The stored plan.

        Raises
        ------
        InvalidParameterError
            If any input is out of range. Nothing is stored.
        """
        customer_id = require_text(customer_id, "customer_id")
        if not products:
            raise InvalidParameterError(
                "At least one product is required", field="products", details={"count": 0}
            )
        items = [validate_product(p) for p in products]

        price = to_money(total_price, "total_price")
        if price <= 0:
            raise InvalidParameterError(
                "total_price must be greater than zero",
                field="total_price",
                details={"value": str(price)},
            )
        down = to_money(down_payment, "down_payment")
        if down < 0 or down >= price:
            raise InvalidParameterError(
                "down_payment must be at least 0 and less than total_price",
                field="down_payment",
                details={"value": str(down), "total_price": str(price)},
            )
        count = validate_installment_count(number_of_installments, self.config)
        rate = validate_rate(interest_rate, self.config)
        anchor = to_date(start_date)

        schedule = build_schedule(price - down, rate, count, anchor)
        now = self.clock()
        plan = InstallmentPlan(
            plan_id=self.id_factory(),
            customer_id=customer_id,
            products=items,
            total_price=price,
            down_payment=down,
            number_of_installments=count,
            installment_amount=schedule.installment_amount,
            interest_rate=rate,
            total_amount_with_interest=down + schedule.total_payable,
            start_date=anchor,
            end_date=schedule.end_date,
            payments=[
                Payment(
                    installment_number=entry.installment_number,
                    install_date=entry.install_date,
                    due_date=entry.due_date,
                    amount_due=entry.total_amount,
                    principal_amount=entry.principal_amount,
                    interest_amount=entry.interest_amount,
                    created_at=now,
                    updated_at=now,
                )
                for entry in schedule.entries
            ],
            sale_id=sale_id,
            created_at=now,
            updated_at=now,
        )
        self.store.add_plan(plan)

        logger.info(
            "Created plan %s for customer %s: %s financed over %d installments at %s%%",
            plan.plan_id,
            customer_id,
            schedule.principal,
            count,
            rate,
            extra=log_context(plan_id=plan.plan_id, customer_id=customer_id),
        )
        self.publisher.publish(
            "plan.created",
            plan.plan_id,
            {
                "plan_id": plan.plan_id,
                "customer_id": customer_id,
                "sale_id": sale_id,
                "total_price": price,
                "down_payment": down,
                "number_of_installments": count,
                "installment_amount": plan.installment_amount,
                "interest_rate": rate,
                "total_amount_with_interest": plan.total_amount_with_interest,
            },
        )
        return self.store.get_plan(plan.plan_id)

    def calculate_installment_amount(
        self, principal: Any, interest_rate: Any, number_of_installments: int
    ) -> Decimal:
        """EMI for prospective terms, under the same limits as ``create_plan``."""
        count = validate_installment_count(number_of_installments, self.config)
        rate = validate_rate(interest_rate, self.config)
        return calculate_installment_amount(principal, rate, count)

    # Reads
    def get_plan(self, plan_id: str) -> InstallmentPlan:
        return self.store.get_plan(plan_id)

    def get_customer_plans(self, customer_id: str) -> list[InstallmentPlan]:
        return self.store.get_customer_plans(customer_id)

    def list_plans(
        self,
        customer_id: str | None = None,
        status: PlanStatus | str | None = None,
        sort_by: str = "created_at",
        descending: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> list[InstallmentPlan]:
        """List plans, optionally filtered by customer and derived status."""
        predicate = None
        if status is not None:
            wanted = _to_status(status)
            as_of = self.today()
            predicate = lambda plan: plan.status_on(as_of) == wanted  # noqa: E731
        return self.store.list_plans(
            customer_id=customer_id,
            predicate=predicate,
            sort_by=sort_by,
            descending=descending,
            page=page,
            page_size=page_size,
        )

    def get_overdue_plans(self, as_of: date | None = None) -> list[InstallmentPlan]:
        """Plans with at least one installment past due and unpaid."""
        as_of = as_of or self.today()
        return [p for p in self.store.iter_plans() if p.status_on(as_of) == PlanStatus.OVERDUE]

    # Payments
    def record_payment(
        self,
        plan_id: str,
        amount: Any,
        installment_number: int | None = None,
        payment_date: date | datetime | None = None,
    ) -> PaymentReceipt:
        """Record a payment against one installment.

        Parameters
        ----------
        plan_id : str
            Target plan.
        amount : Decimal | int | float | str
            Amount tendered, must be > 0.
        installment_number : int | None
            Installment to settle. Defaults to the earliest unpaid one.
        payment_date : date | None
            Date the money was received (default: today).

        Returns
        -------
        PaymentReceipt
            Updated plan plus what was applied and what was left over.

        Raises
        ------
        InvalidParameterError
            Non-positive amount.
        EntityNotFoundError
            Unknown plan or installment number.
        StateConflictError
            Plan is Completed or Cancelled, the installment is already
            paid, or an earlier installment is still unpaid.
        """
        value = to_money(amount, "amount")
        if value <= 0:
            raise InvalidParameterError(
                "amount must be greater than zero", field="amount", details={"value": str(value)}
            )
        as_of = self.today()
        paid_on = to_date(payment_date, "payment_date") if payment_date is not None else as_of

        with self.store.plan_transaction(plan_id) as plan:
            old_status = plan.status_on(as_of)
            if old_status in CLOSED_STATUSES:
                raise StateConflictError(
                    f"Cannot record a payment on a {old_status.value} plan",
                    field="status",
                    details={"plan_id": plan_id, "status": old_status.value},
                )

            payment = self._target_payment(plan, installment_number)
            applied = min(value, payment.outstanding)
            excess = value - applied

            now = self.clock()
            payment.amount_paid += applied
            payment.payment_date = paid_on
            payment.updated_at = now
            if plan.is_completed and plan.status_override == PlanStatus.DEFAULTED:
                # A fully recovered defaulted plan reads as completed
                plan.status_override = None
            new_status = plan.status_on(as_of)
            number = payment.installment_number
            payment_status = payment.status_on(as_of)

        if excess > 0:
            logger.warning(
                "Payment on plan %s installment %d exceeded the amount due by %s",
                plan_id,
                number,
                excess,
                extra=log_context(plan_id=plan_id, installment_number=number),
            )
        logger.info(
            "Recorded %s on plan %s installment %d (%s)",
            applied,
            plan_id,
            number,
            payment_status.value,
            extra=log_context(plan_id=plan_id, installment_number=number),
        )

        self.publisher.publish(
            "payment.recorded",
            plan_id,
            {
                "plan_id": plan_id,
                "installment_number": number,
                "amount_applied": applied,
                "excess_amount": excess,
                "payment_date": paid_on,
                "payment_status": payment_status,
            },
        )
        self._publish_status_change(plan_id, old_status, new_status)

        return PaymentReceipt(
            plan=self.store.get_plan(plan_id),
            installment_number=number,
            amount_applied=applied,
            excess_amount=excess,
            payment_status=payment_status,
        )

    def _target_payment(self, plan: InstallmentPlan, installment_number: int | None) -> Payment:
        next_payment = plan.next_payment
        if installment_number is None:
            if next_payment is None:
                raise StateConflictError(
                    f"Plan {plan.plan_id} has no unpaid installments",
                    field="installment_number",
                    details={"plan_id": plan.plan_id},
                )
            return next_payment

        payment = plan.get_payment(installment_number)
        if payment is None:
            raise EntityNotFoundError(
                f"Installment {installment_number} not found on plan {plan.plan_id}",
                field="installment_number",
                details={"plan_id": plan.plan_id, "installment_number": installment_number},
            )
        if payment.is_paid:
            raise StateConflictError(
                f"Installment {installment_number} is already paid",
                field="installment_number",
                details={"plan_id": plan.plan_id, "installment_number": installment_number},
            )
        if next_payment is not None and next_payment is not payment:
            raise StateConflictError(
                f"Installment {next_payment.installment_number} must be paid first",
                field="installment_number",
                details={
                    "plan_id": plan.plan_id,
                    "installment_number": installment_number,
                    "next_installment_number": next_payment.installment_number,
                },
            )
        return payment

    # Administrative transitions
    def update_plan_status(
        self, plan_id: str, status: PlanStatus | str, reason: str | None = None
    ) -> InstallmentPlan:
        """Set an administrative status.

        ``Defaulted`` and ``Cancelled`` are set by hand; ``Active`` reinstates
        a defaulted plan. ``Completed`` and ``Overdue`` are derived and cannot
        be set. Cancelled and completed plans are final.
        """
        target = _to_status(status)
        if target not in SETTABLE_STATUSES:
            raise InvalidParameterError(
                f"{target.value} is derived from payments and cannot be set",
                field="status",
                details={"value": target.value, "allowed": sorted(s.value for s in SETTABLE_STATUSES)},
            )
        as_of = self.today()

        with self.store.plan_transaction(plan_id) as plan:
            current = plan.status_on(as_of)
            if current in CLOSED_STATUSES or current == target:
                raise StateConflictError(
                    f"Cannot change plan status from {current.value} to {target.value}",
                    field="status",
                    details={"plan_id": plan_id, "from": current.value, "to": target.value},
                )
            if target == PlanStatus.ACTIVE:
                if current != PlanStatus.DEFAULTED:
                    raise StateConflictError(
                        "Only a Defaulted plan can be reinstated",
                        field="status",
                        details={"plan_id": plan_id, "from": current.value, "to": target.value},
                    )
                plan.status_override = None
            else:
                plan.status_override = target
            new_status = plan.status_on(as_of)

        logger.info(
            "Plan %s status changed %s -> %s%s",
            plan_id,
            current.value,
            new_status.value,
            f" ({reason})" if reason else "",
            extra=log_context(plan_id=plan_id),
        )
        self._publish_status_change(plan_id, current, new_status, reason)
        return self.store.get_plan(plan_id)

    def complete_plan(
        self, plan_id: str, payment_date: date | datetime | None = None
    ) -> InstallmentPlan:
        """Settle every unpaid installment in full."""
        as_of = self.today()
        paid_on = to_date(payment_date, "payment_date") if payment_date is not None else as_of

        with self.store.plan_transaction(plan_id) as plan:
            old_status = plan.status_on(as_of)
            if old_status in CLOSED_STATUSES:
                raise StateConflictError(
                    f"Cannot complete a {old_status.value} plan",
                    field="status",
                    details={"plan_id": plan_id, "status": old_status.value},
                )
            now = self.clock()
            settled = ZERO
            for payment in plan.payments:
                if payment.is_paid:
                    continue
                settled += payment.outstanding
                payment.amount_paid = payment.amount_due
                payment.payment_date = paid_on
                payment.updated_at = now
            plan.status_override = None
            new_status = plan.status_on(as_of)

        logger.info(
            "Completed plan %s, settling %s", plan_id, settled, extra=log_context(plan_id=plan_id)
        )
        self._publish_status_change(plan_id, old_status, new_status)
        return self.store.get_plan(plan_id)

    def _publish_status_change(
        self,
        plan_id: str,
        old_status: PlanStatus,
        new_status: PlanStatus,
        reason: str | None = None,
    ) -> None:
        if old_status == new_status:
            return
        self.publisher.publish(
            "plan.status_changed",
            plan_id,
            {"plan_id": plan_id, "from": old_status, "to": new_status, "reason": reason},
        )
        if new_status == PlanStatus.COMPLETED:
            self.publisher.publish("plan.completed", plan_id, {"plan_id": plan_id})

    # Reporting
    def portfolio_summary(self, as_of: date | None = None) -> dict[str, Any]:
        """Aggregate figures across the book.

        Returns
        -------
        dict[str, Any]
            ``total_plans``, ``status_distribution`` (plans per status) and,
            over plans that are not cancelled, ``total_financed``,
            ``total_collected`` and ``total_outstanding``.
        """
        as_of = as_of or self.today()
        plans = list(self.store.iter_plans())

        status_counts = {status.value: 0 for status in PlanStatus}
        financed = collected = outstanding = ZERO
        for plan in plans:
            status = plan.status_on(as_of)
            status_counts[status.value] += 1
            if status == PlanStatus.CANCELLED:
                continue
            financed += plan.total_price - plan.down_payment
            collected += plan.total_paid
            outstanding += plan.remaining_balance

        return {
            "total_plans": len(plans),
            "status_distribution": status_counts,
            "total_financed": financed,
            "total_collected": collected,
            "total_outstanding": outstanding,
        }


def _to_status(value: PlanStatus | str) -> PlanStatus:
    if isinstance(value, PlanStatus):
        return value
    try:
        return PlanStatus(value)
    except ValueError as exc:
        raise InvalidParameterError(
            f"Unknown plan status {value!r}",
            field="status",
            details={"value": value, "allowed": [s.value for s in PlanStatus]},
        ) from exc
