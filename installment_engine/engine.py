"""Public entry point wiring the calculator, store and services together."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from installment_engine.config import EngineConfig
from installment_engine.events import EventPublisher, EventSink
from installment_engine.models.installment import (
    InstallmentModification,
    InstallmentPlan,
    ModificationParams,
    ModificationPreview,
    ModificationType,
    PlanProduct,
    PlanStatus,
)
from installment_engine.services import (
    ModificationEngine,
    ModificationWorkflow,
    PaymentReceipt,
    PlanManager,
)
from installment_engine.sinks.serialization import plan_to_dict
from installment_engine.store import InstallmentDataStore

logger = logging.getLogger(__name__)


class InstallmentEngine:
    """Installment financing operations for sales, POS and admin callers.

    Parameters
    ----------
    config : EngineConfig | None
        Limits and workflow policy (default: ``EngineConfig()``).
    sink : EventSink | None
        Destination for domain events, e.g. ``KafkaSink``. No events are
        published without one.
    store : InstallmentDataStore | None
        Backing store; a fresh in-memory store by default.
    clock : Callable[[], datetime] | None
        Source of "now" for timestamps and status derivation.
    id_factory : Callable[[], str] | None
        Id generator for plans and modifications (default: uuid4).
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        sink: EventSink | None = None,
        store: InstallmentDataStore | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock or datetime.now
        self.store = store or InstallmentDataStore(clock=self.clock)
        self.publisher = EventPublisher(sink, self.config.events, self.clock)

        self.plans = PlanManager(
            self.store, self.config.plans, self.publisher, self.clock, id_factory
        )
        self.modifications = ModificationEngine(
            self.store, self.config.plans, self.config.modifications, self.clock
        )
        self.workflow = ModificationWorkflow(
            self.store,
            self.modifications,
            self.config.modifications,
            self.publisher,
            self.clock,
            id_factory,
        )

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs: Any) -> InstallmentEngine:
        """Build an engine, attaching a Kafka sink when events are enabled."""
        sink = kwargs.pop("sink", None)
        if sink is None and config.events.enabled:
            from installment_engine.sinks.kafka import KafkaSink

            sink = KafkaSink(config.kafka)
            logger.info(
                "Publishing events to %s (prefix %s)",
                config.kafka.bootstrap_servers,
                config.events.topic_prefix,
            )
        return cls(config=config, sink=sink, **kwargs)

    # Plans
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
        return self.plans.create_plan(
            customer_id,
            products,
            total_price,
            down_payment,
            number_of_installments,
            interest_rate,
            start_date,
            sale_id=sale_id,
        )

    def get_plan(self, plan_id: str) -> InstallmentPlan:
        return self.plans.get_plan(plan_id)

    def list_plans(
        self,
        customer_id: str | None = None,
        status: PlanStatus | str | None = None,
        sort_by: str = "created_at",
        descending: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> list[InstallmentPlan]:
        return self.plans.list_plans(customer_id, status, sort_by, descending, page, page_size)

    def get_customer_plans(self, customer_id: str) -> list[InstallmentPlan]:
        return self.plans.get_customer_plans(customer_id)

    def get_overdue_plans(self, as_of: date | None = None) -> list[InstallmentPlan]:
        return self.plans.get_overdue_plans(as_of)

    def record_payment(
        self,
        plan_id: str,
        amount: Any,
        payment_date: date | datetime | None = None,
        installment_number: int | None = None,
    ) -> PaymentReceipt:
        return self.plans.record_payment(plan_id, amount, installment_number, payment_date)

    def update_plan_status(
        self, plan_id: str, status: PlanStatus | str, reason: str | None = None
    ) -> InstallmentPlan:
        return self.plans.update_plan_status(plan_id, status, reason)

    def complete_plan(
        self, plan_id: str, payment_date: date | datetime | None = None
    ) -> InstallmentPlan:
        return self.plans.complete_plan(plan_id, payment_date)

    def calculate_installment_amount(
        self, principal: Any, interest_rate: Any, number_of_installments: int
    ) -> Decimal:
        return self.plans.calculate_installment_amount(
            principal, interest_rate, number_of_installments
        )

    def portfolio_summary(self, as_of: date | None = None) -> dict[str, Any]:
        return self.plans.portfolio_summary(as_of)

    def export_plans(self, as_of: date | None = None) -> list[dict[str, Any]]:
        """Serialized plans with statuses derived on ``as_of`` (default: the engine clock)."""
        as_of = as_of or self.plans.today()
        return [plan_to_dict(plan, as_of=as_of) for plan in self.store.iter_plans()]

    # Modifications
    def preview_modification(
        self,
        plan_id: str,
        modification_type: ModificationType | str,
        params: ModificationParams | None = None,
    ) -> ModificationPreview:
        return self.modifications.preview(plan_id, modification_type, params)

    def request_modification(
        self,
        plan_id: str,
        modification_type: ModificationType | str,
        reason: str,
        requested_by: str,
        params: ModificationParams | None = None,
        require_approval: bool | None = None,
    ) -> InstallmentModification:
        return self.workflow.request(
            plan_id, modification_type, reason, requested_by, params, require_approval
        )

    def approve_modification(
        self, modification_id: str, approved_by: str, notes: str | None = None
    ) -> InstallmentModification:
        return self.workflow.approve(modification_id, approved_by, notes)

    def reject_modification(
        self, modification_id: str, rejected_by: str, reason: str
    ) -> InstallmentModification:
        return self.workflow.reject(modification_id, rejected_by, reason)

    def apply_modification(self, modification_id: str) -> InstallmentPlan:
        return self.workflow.apply(modification_id)

    def get_modification(self, modification_id: str) -> InstallmentModification:
        return self.workflow.get_modification(modification_id)

    def list_plan_modifications(self, plan_id: str) -> list[InstallmentModification]:
        return self.workflow.list_plan_modifications(plan_id)

    def list_pending_modifications(self) -> list[InstallmentModification]:
        return self.workflow.list_pending_modifications()

    def list_customer_modifications(self, customer_id: str) -> list[InstallmentModification]:
        return self.workflow.list_customer_modifications(customer_id)
