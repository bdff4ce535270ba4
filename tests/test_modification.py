"""Tests for modification previews and the pure re-pricing function."""

from datetime import date
from decimal import Decimal

import pytest

from conftest import FrozenClock

from installment_engine.engine import InstallmentEngine
from installment_engine.exceptions import (
    EntityNotFoundError,
    InvalidParameterError,
    StateConflictError,
)
from installment_engine.models.installment import (
    FinancialImpact,
    InstallmentPlan,
    ModificationParams,
    ModificationType,
    PlanProduct,
    PlanStatus,
)
from installment_engine.services.modification import (
    derive_modification,
    recommendation_note,
    snapshot_plan,
)


def impact(emi: str, total: str, months: int) -> FinancialImpact:
    """Impact with only the differences filled in meaningfully."""
    return FinancialImpact(
        old_monthly_emi=Decimal("100.00"),
        new_monthly_emi=Decimal("100.00") + Decimal(emi),
        emi_difference=Decimal(emi),
        old_total_payable=Decimal("1000.00"),
        new_total_payable=Decimal("1000.00") + Decimal(total),
        total_payable_difference=Decimal(total),
        old_end_date=date(2024, 7, 1),
        new_end_date=date(2024, 7, 1),
        time_difference_months=months,
    )


class TestChangeInstallmentCount:
    """Tests for rescheduling over a different number of months."""

    def test_interest_free_extension(
        self, engine: InstallmentEngine, interest_free_plan: InstallmentPlan
    ) -> None:
        """Test $600 over 4 months stretched to 8 months."""
        preview = engine.preview_modification(
            interest_free_plan.plan_id,
            ModificationType.CHANGE_INSTALLMENT_COUNT,
            ModificationParams(new_installment_count=8),
        )

        assert preview.current_monthly_emi == Decimal("150.00")
        assert preview.new_monthly_emi == Decimal("75.00")
        assert preview.emi_difference == Decimal("-75.00")
        assert preview.total_payable_difference == Decimal("0.00")
        assert preview.time_difference_months == 4
        assert preview.is_financially_beneficial
        assert preview.new_end_date == date(2024, 9, 1)
        assert preview.recommendation_note == "Lower monthly EMI by $75.00. Extend plan by 4 months."

    def test_preview_schedule_is_truncated(
        self, engine: InstallmentEngine, interest_free_plan: InstallmentPlan
    ) -> None:
        """Test only the first rows of the new schedule are returned."""
        preview = engine.preview_modification(
            interest_free_plan.plan_id,
            "ChangeInstallmentCount",
            ModificationParams(new_installment_count=8),
        )

        assert len(preview.new_payment_schedule) == 6
        assert preview.new_payment_schedule[0].installment_number == 1
        assert preview.new_payment_schedule[0].due_date == date(2024, 2, 1)

    def test_shorter_term(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test finishing earlier at the same flat rate."""
        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_INSTALLMENT_COUNT,
            ModificationParams(new_installment_count=3),
        )

        assert preview.new_monthly_emi == Decimal("330.00")
        assert preview.time_difference_months == -3
        assert preview.recommendation_note == "Higher monthly EMI by $165.00. Finish 3 months earlier."

    def test_partial_payment_is_carried(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test a partly paid installment stays on the plan with its balance."""
        engine.record_payment(plan.plan_id, Decimal("100.00"))

        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_INSTALLMENT_COUNT,
            ModificationParams(new_installment_count=5),
        )

        assert preview.current_remaining_installments == 5
        assert preview.current_outstanding_principal == Decimal("750.00")
        assert preview.new_payment_schedule[0].installment_number == 2
        assert preview.new_payment_schedule[0].due_date == date(2024, 3, 1)
        assert preview.new_remaining_balance == Decimal("890.00")
        assert preview.new_plan.next_due_date == date(2024, 2, 1)
        assert preview.new_plan.number_of_installments == 6

    def test_count_limit_includes_kept_installments(
        self, engine: InstallmentEngine, plan: InstallmentPlan
    ) -> None:
        """Test the whole plan may not exceed the configured maximum."""
        engine.record_payment(plan.plan_id, Decimal("165.00"))
        engine.record_payment(plan.plan_id, Decimal("165.00"))

        engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_INSTALLMENT_COUNT,
            ModificationParams(new_installment_count=58),
        )
        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(
                plan.plan_id,
                ModificationType.CHANGE_INSTALLMENT_COUNT,
                ModificationParams(new_installment_count=59),
            )

        assert exc_info.value.field == "new_installment_count"
        assert exc_info.value.details["max"] == 58

    @pytest.mark.parametrize("count", [None, 0, "8"])
    def test_rejects_invalid_count(
        self, engine: InstallmentEngine, plan: InstallmentPlan, count: object
    ) -> None:
        """Test missing, zero and non-integer counts."""
        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(
                plan.plan_id,
                ModificationType.CHANGE_INSTALLMENT_COUNT,
                ModificationParams(new_installment_count=count),  # type: ignore[arg-type]
            )

        assert exc_info.value.field == "new_installment_count"


class TestChangeInterestRate:
    """Tests for re-pricing the open installments at a new rate."""

    def test_rate_cut_after_two_payments(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test 10% to 5% on the four remaining installments."""
        engine.record_payment(plan.plan_id, Decimal("165.00"))
        engine.record_payment(plan.plan_id, Decimal("165.00"))

        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_INTEREST_RATE,
            ModificationParams(new_interest_rate=Decimal("5")),
        )

        assert preview.current_outstanding_principal == Decimal("600.00")
        assert preview.current_total_payable == Decimal("660.00")
        assert preview.new_monthly_emi == Decimal("157.50")
        assert preview.new_total_payable == Decimal("630.00")
        assert preview.total_payable_difference == Decimal("-30.00")
        assert preview.time_difference_months == 0
        assert preview.new_end_date == date(2024, 7, 1)
        assert "Lower monthly EMI by $7.50" in preview.recommendation_note
        assert "Save $30.00 in total interest" in preview.recommendation_note
        assert preview.new_payment_schedule[0].installment_number == 3
        assert preview.new_payment_schedule[0].due_date == date(2024, 4, 1)
        assert preview.new_plan.paid_installments == 2
        assert preview.new_plan.total_paid == Decimal("330.00")

    @pytest.mark.parametrize("rate", [None, Decimal("-1"), Decimal("101")])
    def test_rejects_invalid_rate(
        self, engine: InstallmentEngine, plan: InstallmentPlan, rate: object
    ) -> None:
        """Test missing and out of range rates."""
        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(
                plan.plan_id,
                ModificationType.CHANGE_INTEREST_RATE,
                ModificationParams(new_interest_rate=rate),  # type: ignore[arg-type]
            )

        assert exc_info.value.field == "new_interest_rate"


class TestChangeDownPayment:
    """Tests for paying extra upfront."""

    def test_additional_down_payment(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test $200 extra taken off the $900 principal."""
        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_DOWN_PAYMENT,
            ModificationParams(additional_down_payment=Decimal("200.00")),
        )

        assert preview.new_outstanding_principal == Decimal("700.00")
        assert preview.new_monthly_emi == Decimal("128.32")
        assert preview.new_total_payable == Decimal("770.00")
        assert preview.new_plan.down_payment == Decimal("200.00")
        assert preview.modification_details.additional_down_payment == Decimal("200.00")
        assert preview.is_financially_beneficial

    def test_down_payment_clearing_the_principal(
        self, engine: InstallmentEngine, plan: InstallmentPlan
    ) -> None:
        """Test paying off the whole outstanding principal leaves nothing to collect."""
        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_DOWN_PAYMENT,
            ModificationParams(additional_down_payment=Decimal("900.00")),
        )

        assert preview.new_outstanding_principal == Decimal("0.00")
        assert preview.new_monthly_emi == Decimal("0.00")
        assert preview.new_total_payable == Decimal("0.00")
        assert preview.new_plan.down_payment == Decimal("900.00")

    def test_applied_payoff_completes_plan(
        self, engine: InstallmentEngine, plan: InstallmentPlan
    ) -> None:
        """Test the zero installments are settled when the change is applied."""
        engine.request_modification(
            plan.plan_id,
            ModificationType.CHANGE_DOWN_PAYMENT,
            "Paying the balance upfront",
            "cust-test-001",
            ModificationParams(additional_down_payment=Decimal("900.00")),
            require_approval=False,
        )
        updated = engine.get_plan(plan.plan_id)

        assert updated.remaining_balance == Decimal("0.00")
        assert updated.status_on(date(2024, 12, 1)) == PlanStatus.COMPLETED
        assert updated.count_overdue(date(2024, 12, 1)) == 0
        assert all(p.payment_date == date(2024, 1, 15) for p in updated.payments)

    @pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("900.01"), Decimal("1000")])
    def test_rejects_invalid_amount(
        self, engine: InstallmentEngine, plan: InstallmentPlan, amount: object
    ) -> None:
        """Test the extra amount must be positive and at most the principal."""
        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(
                plan.plan_id,
                ModificationType.CHANGE_DOWN_PAYMENT,
                ModificationParams(additional_down_payment=amount),  # type: ignore[arg-type]
            )

        assert exc_info.value.field == "additional_down_payment"


class TestAddProducts:
    """Tests for financing extra items on an existing plan."""

    @pytest.fixture
    def monitor(self) -> PlanProduct:
        return PlanProduct("prod-003", "Monitor", Decimal("300.00"), 1, "Electronics")

    def test_same_term(
        self, engine: InstallmentEngine, plan: InstallmentPlan, monitor: PlanProduct
    ) -> None:
        """Test $300 more over the same six months."""
        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.ADD_PRODUCTS,
            ModificationParams(additional_products=[monitor]),
        )

        assert preview.new_monthly_emi == Decimal("220.00")
        assert preview.new_plan.total_price == Decimal("1200.00")
        assert [p.product_id for p in preview.new_plan.products] == ["prod-001", "prod-003"]
        assert not preview.is_financially_beneficial
        assert "Pay $330.00 more in total interest" in preview.recommendation_note

    def test_with_longer_term(
        self, engine: InstallmentEngine, plan: InstallmentPlan, monitor: PlanProduct
    ) -> None:
        """Test adding products and stretching the term in one change."""
        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.ADD_PRODUCTS,
            ModificationParams(additional_products=[monitor], new_installment_count=12),
        )

        assert preview.new_monthly_emi == Decimal("110.00")
        assert preview.modification_details.new_installment_count == 12
        assert "Extend plan by 6 months" in preview.recommendation_note

    def test_rejects_empty_or_invalid_products(
        self, engine: InstallmentEngine, plan: InstallmentPlan
    ) -> None:
        """Test an empty list and a zero quantity line."""
        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(plan.plan_id, ModificationType.ADD_PRODUCTS)
        assert exc_info.value.field == "additional_products"

        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(
                plan.plan_id,
                ModificationType.ADD_PRODUCTS,
                ModificationParams(
                    additional_products=[PlanProduct("prod-003", "Monitor", Decimal("10"), 0)]
                ),
            )
        assert exc_info.value.field == "additional_products.quantity"


class TestPreviewGuards:
    """Tests for what can and cannot be previewed."""

    def test_preview_does_not_touch_the_plan(
        self, engine: InstallmentEngine, plan: InstallmentPlan
    ) -> None:
        """Test that a preview is read-only and repeatable."""
        params = ModificationParams(new_installment_count=12)

        first = engine.preview_modification(plan.plan_id, "ChangeInstallmentCount", params)
        second = engine.preview_modification(plan.plan_id, "ChangeInstallmentCount", params)

        assert first == second
        assert engine.get_plan(plan.plan_id) == plan
        assert engine.store.modifications == {}

    @pytest.mark.parametrize("status", [PlanStatus.DEFAULTED, PlanStatus.CANCELLED])
    def test_rejects_closed_or_defaulted_plan(
        self, engine: InstallmentEngine, plan: InstallmentPlan, status: PlanStatus
    ) -> None:
        """Test plans that can no longer be renegotiated."""
        engine.update_plan_status(plan.plan_id, status)

        with pytest.raises(StateConflictError):
            engine.preview_modification(
                plan.plan_id,
                ModificationType.CHANGE_INSTALLMENT_COUNT,
                ModificationParams(new_installment_count=12),
            )

    def test_rejects_completed_plan(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test a fully paid plan."""
        engine.complete_plan(plan.plan_id)

        with pytest.raises(StateConflictError):
            engine.preview_modification(
                plan.plan_id,
                ModificationType.CHANGE_INTEREST_RATE,
                ModificationParams(new_interest_rate=Decimal("5")),
            )

    def test_overdue_plan_can_be_modified(
        self, engine: InstallmentEngine, plan: InstallmentPlan, clock: FrozenClock
    ) -> None:
        """Test renegotiating a plan that has fallen behind."""
        clock.set_date(date(2024, 3, 15))

        preview = engine.preview_modification(
            plan.plan_id,
            ModificationType.CHANGE_INSTALLMENT_COUNT,
            ModificationParams(new_installment_count=10),
        )

        assert preview.new_remaining_installments == 10

    def test_unknown_type_and_plan(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test an unknown modification type and an unknown plan."""
        with pytest.raises(InvalidParameterError) as exc_info:
            engine.preview_modification(plan.plan_id, "Refinance")
        assert exc_info.value.field == "modification_type"

        with pytest.raises(EntityNotFoundError):
            engine.preview_modification("missing", ModificationType.CHANGE_INSTALLMENT_COUNT)


class TestDeriveModification:
    """Tests for the pure re-pricing function."""

    def test_is_deterministic(self, plan: InstallmentPlan) -> None:
        """Test the same snapshot and values always give the same result."""
        snapshot = snapshot_plan(plan)
        params = ModificationParams(new_interest_rate=Decimal("12.5"))

        first = derive_modification(snapshot, ModificationType.CHANGE_INTEREST_RATE, params)
        second = derive_modification(snapshot, ModificationType.CHANGE_INTEREST_RATE, params)

        assert first == second

    def test_rederives_from_stored_details(self, plan: InstallmentPlan) -> None:
        """Test the normalized details reproduce the same new plan."""
        snapshot = snapshot_plan(plan)
        derivation = derive_modification(
            snapshot,
            ModificationType.CHANGE_DOWN_PAYMENT,
            ModificationParams(additional_down_payment="150"),  # type: ignore[arg-type]
        )

        again = derive_modification(
            snapshot, ModificationType.CHANGE_DOWN_PAYMENT, derivation.details.params
        )

        assert again.new_plan == derivation.new_plan

    def test_no_open_installments(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test a plan with every installment touched has nothing to reschedule."""
        for _ in range(6):
            engine.record_payment(plan.plan_id, Decimal("100.00"))
            engine.record_payment(plan.plan_id, Decimal("65.00"))
        snapshot = snapshot_plan(engine.get_plan(plan.plan_id))

        with pytest.raises(StateConflictError):
            derive_modification(
                snapshot,
                ModificationType.CHANGE_INSTALLMENT_COUNT,
                ModificationParams(new_installment_count=3),
            )

    def test_snapshot_figures(self, engine: InstallmentEngine, plan: InstallmentPlan) -> None:
        """Test the open-installment figures of a snapshot."""
        engine.record_payment(plan.plan_id, Decimal("165.00"))

        snapshot = snapshot_plan(engine.get_plan(plan.plan_id))

        assert snapshot.remaining_installments == 5
        assert snapshot.kept_installments == 1
        assert snapshot.outstanding_principal == Decimal("750.00")
        assert snapshot.outstanding_payable == Decimal("825.00")
        assert snapshot.next_due_date == date(2024, 3, 1)


class TestRecommendationNote:
    """Tests for the human readable trade-off summary."""

    def test_all_parts(self) -> None:
        assert (
            recommendation_note(impact("-12.5", "-1234.5", -2))
            == "Lower monthly EMI by $12.50. Save $1,234.50 in total interest. Finish 2 months earlier."
        )

    def test_costs_more(self) -> None:
        assert (
            recommendation_note(impact("20", "40", 1))
            == "Higher monthly EMI by $20.00. Pay $40.00 more in total interest. Extend plan by 1 month."
        )

    def test_no_change(self) -> None:
        assert recommendation_note(impact("0", "0", 0)) == "No change to the payment terms."

    def test_currency_symbol(self) -> None:
        assert recommendation_note(impact("-5", "0", 0), currency_symbol="€") == (
            "Lower monthly EMI by €5.00."
        )
