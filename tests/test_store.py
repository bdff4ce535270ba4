"""Tests for the in-memory installment store."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from installment_engine.exceptions import EntityNotFoundError, InvalidParameterError
from installment_engine.models.installment import (
    FinancialImpact,
    InstallmentModification,
    InstallmentPlan,
    ModificationDetails,
    ModificationType,
    Payment,
    PlanProduct,
)
from installment_engine.services.modification import snapshot_plan
from installment_engine.store import InstallmentDataStore


def make_plan(plan_id: str, customer_id: str = "cust-001", total_price: str = "300.00") -> InstallmentPlan:
    price = Decimal(total_price)
    return InstallmentPlan(
        plan_id=plan_id,
        customer_id=customer_id,
        products=[PlanProduct("prod-001", "Item", price, 1)],
        total_price=price,
        down_payment=Decimal("0.00"),
        number_of_installments=1,
        installment_amount=price,
        interest_rate=Decimal("0"),
        total_amount_with_interest=price,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 2, 1),
        payments=[
            Payment(
                installment_number=1,
                install_date=date(2024, 1, 1),
                due_date=date(2024, 2, 1),
                amount_due=price,
                principal_amount=price,
                interest_amount=Decimal("0.00"),
            )
        ],
    )


def make_modification(modification_id: str, plan: InstallmentPlan) -> InstallmentModification:
    snapshot = snapshot_plan(plan)
    impact = FinancialImpact(
        old_monthly_emi=plan.installment_amount,
        new_monthly_emi=plan.installment_amount,
        emi_difference=Decimal("0.00"),
        old_total_payable=plan.total_amount_with_interest,
        new_total_payable=plan.total_amount_with_interest,
        total_payable_difference=Decimal("0.00"),
        old_end_date=plan.end_date,
        new_end_date=plan.end_date,
        time_difference_months=0,
    )
    return InstallmentModification(
        modification_id=modification_id,
        plan_id=plan.plan_id,
        customer_id=plan.customer_id,
        modification_type=ModificationType.CHANGE_INSTALLMENT_COUNT,
        requested_by="agent-1",
        reason="Test",
        previous_plan=snapshot,
        new_plan=snapshot,
        modification_details=ModificationDetails(financial_impact=impact, new_installment_count=1),
    )


@pytest.fixture
def store() -> InstallmentDataStore:
    return InstallmentDataStore()


class TestPlans:
    """Tests for plan storage."""

    def test_add_and_get(self, store: InstallmentDataStore) -> None:
        """Test storing a plan sets created_at and indexes the customer."""
        store.add_plan(make_plan("plan-1"))

        plan = store.get_plan("plan-1")
        assert plan.plan_id == "plan-1"
        assert isinstance(plan.created_at, datetime)
        assert [p.plan_id for p in store.get_customer_plans("cust-001")] == ["plan-1"]

    def test_reads_are_copies(self, store: InstallmentDataStore) -> None:
        """Test mutating a returned plan does not change the stored one."""
        original = make_plan("plan-1")
        store.add_plan(original)
        original.payments[0].amount_paid = Decimal("1.00")

        copy = store.get_plan("plan-1")
        copy.payments[0].amount_paid = Decimal("300.00")

        assert store.get_plan("plan-1").payments[0].amount_paid == Decimal("0.00")

    def test_unknown_plan(self, store: InstallmentDataStore) -> None:
        """Test looking up a plan that was never stored."""
        with pytest.raises(EntityNotFoundError) as exc_info:
            store.get_plan("missing")

        assert exc_info.value.field == "plan_id"
        assert store.get_customer_plans("nobody") == []

    def test_transaction_commits(self, store: InstallmentDataStore) -> None:
        """Test a successful transaction bumps the version."""
        store.add_plan(make_plan("plan-1"))

        with store.plan_transaction("plan-1") as plan:
            plan.payments[0].amount_paid = Decimal("300.00")
            plan.payments[0].payment_date = date(2024, 1, 20)

        stored = store.get_plan("plan-1")
        assert stored.version == 1
        assert stored.is_completed
        assert stored.updated_at is not None

    def test_transaction_rolls_back(self, store: InstallmentDataStore) -> None:
        """Test an exception discards every change made in the block."""
        store.add_plan(make_plan("plan-1"))

        with pytest.raises(RuntimeError):
            with store.plan_transaction("plan-1") as plan:
                plan.payments[0].amount_paid = Decimal("300.00")
                raise RuntimeError("boom")

        stored = store.get_plan("plan-1")
        assert stored.version == 0
        assert stored.payments[0].amount_paid == Decimal("0.00")

    def test_transaction_on_unknown_plan(self, store: InstallmentDataStore) -> None:
        with pytest.raises(EntityNotFoundError):
            with store.plan_transaction("missing"):
                pass

    def test_plan_lock_is_reentrant(self, store: InstallmentDataStore) -> None:
        """Test the same lock object is handed out and can be nested."""
        store.add_plan(make_plan("plan-1"))

        assert store.plan_lock("plan-1") is store.plan_lock("plan-1")
        with store.plan_lock("plan-1"):
            with store.plan_transaction("plan-1"):
                pass

        assert store.get_plan("plan-1").version == 1

    def test_unknown_ids_do_not_register_locks(self, store: InstallmentDataStore) -> None:
        """Test lookups of missing ids leave the lock registry untouched."""
        store.add_plan(make_plan("plan-1"))

        for i in range(100):
            with pytest.raises(EntityNotFoundError):
                store.get_plan(f"missing-{i}")
            with pytest.raises(EntityNotFoundError):
                store.get_modification(f"missing-{i}")

        assert list(store._locks) == [("plan", "plan-1")]

    def test_lock_for_unknown_plan_is_not_found(self, store: InstallmentDataStore) -> None:
        with pytest.raises(EntityNotFoundError) as exc_info:
            store.plan_lock("missing")

        assert exc_info.value.field == "plan_id"
        assert exc_info.value.details == {"plan_id": "missing"}

    def test_commits_are_stamped_by_store_clock(self) -> None:
        """Test timestamps come from the injected clock, not the wall clock."""
        stamp = datetime(2024, 3, 1, 9, 30)
        store = InstallmentDataStore(clock=lambda: stamp)
        store.add_plan(make_plan("plan-1"))

        with store.plan_transaction("plan-1"):
            pass

        stored = store.get_plan("plan-1")
        assert stored.created_at == stamp
        assert stored.updated_at == stamp


class TestListPlans:
    """Tests for filtered and paginated listing."""

    @pytest.fixture
    def populated(self, store: InstallmentDataStore) -> InstallmentDataStore:
        store.add_plan(make_plan("plan-a", "cust-001", "300.00"))
        store.add_plan(make_plan("plan-b", "cust-002", "100.00"))
        store.add_plan(make_plan("plan-c", "cust-001", "200.00"))
        return store

    def test_sort_and_filter(self, populated: InstallmentDataStore) -> None:
        by_price = populated.list_plans(sort_by="total_price")
        assert [p.plan_id for p in by_price] == ["plan-b", "plan-c", "plan-a"]

        customer = populated.list_plans(customer_id="cust-001", sort_by="total_price", descending=True)
        assert [p.plan_id for p in customer] == ["plan-a", "plan-c"]

    def test_predicate_applies_before_paging(self, populated: InstallmentDataStore) -> None:
        """Test filtering does not leave pages short."""
        page = populated.list_plans(
            predicate=lambda p: p.total_price >= Decimal("200"),
            sort_by="total_price",
            page_size=2,
        )

        assert [p.plan_id for p in page] == ["plan-c", "plan-a"]

    def test_pagination(self, populated: InstallmentDataStore) -> None:
        assert [p.plan_id for p in populated.list_plans(sort_by="total_price", page=2, page_size=2)] == [
            "plan-a"
        ]
        assert populated.list_plans(page=5) == []

    def test_missing_sort_values_go_last(self, store: InstallmentDataStore) -> None:
        """Test plans without the sort field are listed after the rest."""
        store.add_plan(make_plan("plan-a"))
        store.add_plan(make_plan("plan-b"))
        with store.plan_transaction("plan-b"):
            pass

        ordered = store.list_plans(sort_by="updated_at", descending=True)

        assert [p.plan_id for p in ordered] == ["plan-b", "plan-a"]

    @pytest.mark.parametrize(
        ("kwargs", "field"),
        [({"sort_by": "payments"}, "sort_by"), ({"page": 0}, "page"), ({"page_size": -1}, "page_size")],
    )
    def test_invalid_arguments(
        self, populated: InstallmentDataStore, kwargs: dict, field: str
    ) -> None:
        with pytest.raises(InvalidParameterError) as exc_info:
            populated.list_plans(**kwargs)

        assert exc_info.value.field == field


class TestModifications:
    """Tests for modification storage."""

    def test_add_and_query(self, store: InstallmentDataStore) -> None:
        plan = make_plan("plan-1")
        store.add_plan(plan)
        store.add_modification(make_modification("mod-1", plan))
        store.add_modification(make_modification("mod-2", plan))

        assert [m.modification_id for m in store.get_plan_modifications("plan-1")] == [
            "mod-1",
            "mod-2",
        ]
        assert len(store.get_customer_modifications("cust-001")) == 2
        assert len(list(store.iter_modifications())) == 2
        assert store.get_modification("mod-1").created_at is not None

    def test_requires_existing_plan(self, store: InstallmentDataStore) -> None:
        """Test a modification cannot reference an unknown plan."""
        with pytest.raises(EntityNotFoundError) as exc_info:
            store.add_modification(make_modification("mod-1", make_plan("plan-x")))

        assert exc_info.value.details == {"plan_id": "plan-x"}
        assert store.modifications == {}

    def test_unknown_modification(self, store: InstallmentDataStore) -> None:
        with pytest.raises(EntityNotFoundError) as exc_info:
            store.get_modification("missing")

        assert exc_info.value.field == "modification_id"

    def test_modification_transaction_rolls_back(self, store: InstallmentDataStore) -> None:
        plan = make_plan("plan-1")
        store.add_plan(plan)
        store.add_modification(make_modification("mod-1", plan))

        with pytest.raises(ValueError):
            with store.modification_transaction("mod-1") as modification:
                modification.reason = "Changed"
                raise ValueError("boom")

        assert store.get_modification("mod-1").reason == "Test"


def test_summary(store: InstallmentDataStore) -> None:
    """Test entity counts."""
    plan = make_plan("plan-1")
    store.add_plan(plan)
    store.add_plan(make_plan("plan-2", "cust-002"))
    store.add_modification(make_modification("mod-1", plan))

    assert store.summary() == {"plans": 2, "customers": 2, "payments": 2, "modifications": 1}
