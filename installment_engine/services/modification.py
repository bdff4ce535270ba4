"""Modification preview: before/after terms for a proposed plan change.

Everything here is read-only. ``derive_modification`` is a pure function
of a ``PlanSnapshot`` and the requested values, which is what lets the
workflow re-run it at apply time and compare against the stored result.
"""

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from installment_engine.calculator.amortization import build_schedule, to_money
from installment_engine.config import ModificationConfig, PlanConfig
from installment_engine.exceptions import InvalidParameterError, StateConflictError
from installment_engine.models.installment import (
    AmortizationSchedule,
    FinancialImpact,
    InstallmentPlan,
    ModificationDetails,
    ModificationParams,
    ModificationPreview,
    ModificationType,
    PlanSnapshot,
    PlanStatus,
)
from installment_engine.models.installment.plan import ZERO
from installment_engine.services.plans import (
    validate_installment_count,
    validate_product,
    validate_rate,
)
from installment_engine.store import InstallmentDataStore

logger = logging.getLogger(__name__)

# Plans in these states cannot be renegotiated
NON_MODIFIABLE_STATUSES = frozenset(
    {PlanStatus.COMPLETED, PlanStatus.CANCELLED, PlanStatus.DEFAULTED}
)


@dataclass
class Derivation:
    """Full result of re-pricing a plan's open installments."""

    previous_plan: PlanSnapshot
    new_plan: PlanSnapshot
    schedule: AmortizationSchedule
    impact: FinancialImpact
    details: ModificationDetails


def snapshot_plan(plan: InstallmentPlan) -> PlanSnapshot:
    """Capture the figures a modification is priced from."""
    open_payments = plan.open_payments
    return PlanSnapshot(
        total_price=plan.total_price,
        down_payment=plan.down_payment,
        number_of_installments=plan.number_of_installments,
        installment_amount=plan.installment_amount,
        interest_rate=plan.interest_rate,
        remaining_balance=plan.remaining_balance,
        paid_installments=plan.paid_installments,
        total_paid=plan.total_paid,
        products=copy.deepcopy(plan.products),
        next_due_date=plan.next_due_date,
        start_date=plan.start_date,
        end_date=plan.end_date,
        remaining_installments=len(open_payments),
        outstanding_principal=sum((p.principal_amount for p in open_payments), ZERO),
        outstanding_payable=sum((p.amount_due for p in open_payments), ZERO),
    )


def to_modification_type(value: ModificationType | str) -> ModificationType:
    if isinstance(value, ModificationType):
        return value
    try:
        return ModificationType(value)
    except ValueError as exc:
        raise InvalidParameterError(
            f"Unknown modification type {value!r}",
            field="modification_type",
            details={"value": value, "allowed": [t.value for t in ModificationType]},
        ) from exc


def derive_modification(
    previous: PlanSnapshot,
    modification_type: ModificationType | str,
    params: ModificationParams,
    config: PlanConfig | None = None,
) -> Derivation:
    """Re-price the open installments of a plan under new terms.

    Parameters
    ----------
    previous : PlanSnapshot
        Current state of the plan.
    modification_type : ModificationType | str
        Which term changes.
    params : ModificationParams
        Requested values; only those relevant to the type are read.
    config : PlanConfig | None
        Term and rate limits.

    Returns
    -------
    Derivation
        New snapshot, the full replacement schedule, impact and the
        normalized requested values.

    Raises
    ------
    InvalidParameterError
        Unknown type, missing or out-of-range values.
    StateConflictError
        The plan has no open installments left to reschedule.
    """
    config = config or PlanConfig()
    modification_type = to_modification_type(modification_type)
    if previous.remaining_installments == 0:
        raise StateConflictError(
            "Plan has no open installments to modify",
            field="remaining_installments",
            details={"remaining_installments": 0},
        )

    kept = previous.kept_installments
    principal = previous.outstanding_principal
    count = previous.remaining_installments
    rate = previous.interest_rate
    down_payment = previous.down_payment
    total_price = previous.total_price
    products = copy.deepcopy(previous.products)
    details: dict[str, Any] = {}

    if modification_type == ModificationType.CHANGE_INSTALLMENT_COUNT:
        count = _required_count(params.new_installment_count, config, kept)
        details["new_installment_count"] = count

    elif modification_type == ModificationType.CHANGE_INTEREST_RATE:
        if params.new_interest_rate is None:
            raise InvalidParameterError(
                "new_interest_rate is required", field="new_interest_rate"
            )
        rate = validate_rate(params.new_interest_rate, config, field="new_interest_rate")
        details["new_interest_rate"] = rate

    elif modification_type == ModificationType.CHANGE_DOWN_PAYMENT:
        if params.additional_down_payment is None:
            raise InvalidParameterError(
                "additional_down_payment is required", field="additional_down_payment"
            )
        additional = to_money(params.additional_down_payment, "additional_down_payment")
        if additional <= 0 or additional > principal:
            raise InvalidParameterError(
                "additional_down_payment must be greater than zero and at most the "
                "outstanding principal",
                field="additional_down_payment",
                details={"value": str(additional), "outstanding_principal": str(principal)},
            )
        principal -= additional
        down_payment += additional
        details["additional_down_payment"] = additional

    elif modification_type == ModificationType.ADD_PRODUCTS:
        if not params.additional_products:
            raise InvalidParameterError(
                "additional_products must not be empty",
                field="additional_products",
                details={"count": 0},
            )
        added = [validate_product(p, "additional_products") for p in params.additional_products]
        added_total = sum((p.line_total for p in added), ZERO)
        principal += added_total
        total_price += added_total
        products.extend(copy.deepcopy(added))
        details["additional_products"] = added
        if params.new_installment_count is not None:
            count = _required_count(params.new_installment_count, config, kept)
            details["new_installment_count"] = count
        if params.new_interest_rate is not None:
            rate = validate_rate(params.new_interest_rate, config, field="new_interest_rate")
            details["new_interest_rate"] = rate

    schedule = build_schedule(
        principal, rate, count, previous.start_date, first_installment_number=kept + 1
    )

    # Partially paid installments stay on the plan with their balance
    carried = previous.remaining_balance - previous.outstanding_payable
    new_plan = PlanSnapshot(
        total_price=total_price,
        down_payment=down_payment,
        number_of_installments=kept + count,
        installment_amount=schedule.installment_amount,
        interest_rate=rate,
        remaining_balance=carried + schedule.total_payable,
        paid_installments=previous.paid_installments,
        total_paid=previous.total_paid,
        products=products,
        next_due_date=previous.next_due_date if carried > 0 else schedule.first_due_date,
        start_date=previous.start_date,
        end_date=schedule.end_date,
        remaining_installments=count,
        outstanding_principal=schedule.principal,
        outstanding_payable=schedule.total_payable,
    )

    impact = FinancialImpact(
        old_monthly_emi=previous.installment_amount,
        new_monthly_emi=schedule.installment_amount,
        emi_difference=schedule.installment_amount - previous.installment_amount,
        old_total_payable=previous.outstanding_payable,
        new_total_payable=schedule.total_payable,
        total_payable_difference=schedule.total_payable - previous.outstanding_payable,
        old_end_date=previous.end_date,
        new_end_date=schedule.end_date,
        time_difference_months=count - previous.remaining_installments,
    )

    return Derivation(
        previous_plan=previous,
        new_plan=new_plan,
        schedule=schedule,
        impact=impact,
        details=ModificationDetails(financial_impact=impact, **details),
    )


def _required_count(value: Any, config: PlanConfig, kept: int) -> int:
    if value is None:
        raise InvalidParameterError(
            "new_installment_count is required", field="new_installment_count"
        )
    return validate_installment_count(
        value, config, field="new_installment_count", already_used=kept
    )


def recommendation_note(impact: FinancialImpact, currency_symbol: str = "$") -> str:
    """Summarize the trade-off of a change in one or more short sentences."""

    def money(value: Decimal) -> str:
        return f"{currency_symbol}{abs(value):,.2f}"

    def months(value: int) -> str:
        return f"{abs(value)} month{'' if abs(value) == 1 else 's'}"

    parts = []
    if impact.emi_difference < 0:
        parts.append(f"Lower monthly EMI by {money(impact.emi_difference)}")
    elif impact.emi_difference > 0:
        parts.append(f"Higher monthly EMI by {money(impact.emi_difference)}")

    if impact.total_payable_difference < 0:
        parts.append(f"Save {money(impact.total_payable_difference)} in total interest")
    elif impact.total_payable_difference > 0:
        parts.append(f"Pay {money(impact.total_payable_difference)} more in total interest")

    if impact.time_difference_months < 0:
        parts.append(f"Finish {months(impact.time_difference_months)} earlier")
    elif impact.time_difference_months > 0:
        parts.append(f"Extend plan by {months(impact.time_difference_months)}")

    if not parts:
        return "No change to the payment terms."
    return ". ".join(parts) + "."


class ModificationEngine:
    """Compute financial-impact previews without touching the plan."""

    def __init__(
        self,
        store: InstallmentDataStore,
        plan_config: PlanConfig | None = None,
        config: ModificationConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.plan_config = plan_config or PlanConfig()
        self.config = config or ModificationConfig()
        self.clock = clock

    def derive(
        self,
        plan: InstallmentPlan,
        modification_type: ModificationType | str,
        params: ModificationParams | None = None,
        as_of: date | None = None,
    ) -> Derivation:
        """Check the plan can be modified and re-price it."""
        modification_type = to_modification_type(modification_type)
        as_of = as_of or self.clock().date()
        status = plan.status_on(as_of)
        if status in NON_MODIFIABLE_STATUSES:
            raise StateConflictError(
                f"Cannot modify a {status.value} plan",
                field="status",
                details={"plan_id": plan.plan_id, "status": status.value},
            )
        return derive_modification(
            snapshot_plan(plan),
            modification_type,
            params or ModificationParams(),
            self.plan_config,
        )

    def build_preview(
        self,
        plan: InstallmentPlan,
        derivation: Derivation,
        modification_type: ModificationType,
    ) -> ModificationPreview:
        previous, new, impact = derivation.previous_plan, derivation.new_plan, derivation.impact
        return ModificationPreview(
            plan_id=plan.plan_id,
            modification_type=modification_type,
            current_monthly_emi=previous.installment_amount,
            current_remaining_balance=previous.remaining_balance,
            current_outstanding_principal=previous.outstanding_principal,
            current_remaining_installments=previous.remaining_installments,
            current_end_date=previous.end_date,
            current_total_payable=previous.outstanding_payable,
            new_monthly_emi=new.installment_amount,
            new_remaining_balance=new.remaining_balance,
            new_outstanding_principal=new.outstanding_principal,
            new_remaining_installments=new.remaining_installments,
            new_end_date=new.end_date,
            new_total_payable=new.outstanding_payable,
            emi_difference=impact.emi_difference,
            total_payable_difference=impact.total_payable_difference,
            time_difference_months=impact.time_difference_months,
            is_financially_beneficial=impact.is_financially_beneficial,
            recommendation_note=recommendation_note(impact, self.plan_config.currency_symbol),
            new_payment_schedule=list(
                derivation.schedule.entries[: self.config.preview_schedule_length]
            ),
            previous_plan=previous,
            new_plan=new,
            modification_details=derivation.details,
        )

    def preview(
        self,
        plan_id: str,
        modification_type: ModificationType | str,
        params: ModificationParams | None = None,
    ) -> ModificationPreview:
        """Before/after comparison for a proposed change.

        Parameters
        ----------
        plan_id : str
            Plan to modify.
        modification_type : ModificationType | str
            ChangeInstallmentCount, ChangeInterestRate, ChangeDownPayment
            or AddProducts.
        params : ModificationParams | None
            Type-specific requested values.

        Returns
        -------
        ModificationPreview
            Current and proposed figures with the first rows of the new
            schedule. Nothing is written; identical inputs against an
            unchanged plan give an identical preview.
        """
        modification_type = to_modification_type(modification_type)
        plan = self.store.get_plan(plan_id)
        derivation = self.derive(plan, modification_type, params)
        preview = self.build_preview(plan, derivation, modification_type)
        logger.debug(
            "Previewed %s on plan %s: EMI %s -> %s",
            modification_type.value,
            plan_id,
            preview.current_monthly_emi,
            preview.new_monthly_emi,
        )
        return preview
