"""Installment portfolio scenario: plans, payments and renegotiations."""

from __future__ import annotations

import logging
import random
from datetime import date, datetime, time
from typing import Any

from installment_engine.config import EngineConfig, ScenarioConfig
from installment_engine.engine import InstallmentEngine
from installment_engine.generators import PaymentBehavior, PlanGenerator
from installment_engine.models.installment import ModificationStatus, PlanStatus
from installment_engine.store import InstallmentDataStore

logger = logging.getLogger(__name__)

MODIFIABLE_STATUSES = frozenset({PlanStatus.ACTIVE, PlanStatus.OVERDUE})


class InstallmentPortfolioScenario:
    """Generate a realistic book of installment plans through the engine.

    This scenario creates:
    - Plans for a pool of customers, some with more than one plan
    - Payment history per plan by behavior profile:
        - On-time payers
        - Late payers (5-45 days)
        - Defaulters (stop paying, marked Defaulted after 90 days)
    - Modification requests on a share of the open plans, approved and
      applied, rejected, or left pending
    """

    def __init__(
        self,
        num_plans: int = 50,
        modification_rate: float = 0.20,
        approval_rate: float = 0.75,
        on_time_rate: float = 0.85,
        late_rate: float = 0.10,
        default_rate: float = 0.05,
        reference_date: date | None = None,
        seed: int | None = None,
        *,
        config: ScenarioConfig | None = None,
        engine_config: EngineConfig | None = None,
    ) -> None:
        """Initialize the portfolio scenario.

        Parameters
        ----------
        num_plans : int
            Number of plans to create.
        modification_rate : float
            Share of open plans that get a modification request.
        approval_rate : float
            Share of modification requests that are approved and applied.
        on_time_rate : float
            Share of customers paying on time.
        late_rate : float
            Share of customers paying late.
        default_rate : float
            Share of customers defaulting.
        reference_date : date | None
            "Today" for the portfolio (default: today).
        seed : int | None
            Random seed for reproducibility.
        config : ScenarioConfig | None
            Optional scenario configuration. If provided, overrides the
            keyword values above.
        engine_config : EngineConfig | None
            Engine limits and workflow policy.
        """
        if config is not None:
            num_plans = config.num_plans
            modification_rate = config.modification_rate
            approval_rate = config.approval_rate
            on_time_rate = config.on_time_rate
            late_rate = config.late_rate
            default_rate = config.default_rate
            reference_date = config.reference_date or reference_date

        self.config = config
        self.num_plans = num_plans
        self.modification_rate = modification_rate
        self.approval_rate = approval_rate
        self.on_time_rate = on_time_rate
        self.late_rate = late_rate
        self.default_rate = default_rate
        self.reference_date = reference_date or date.today()
        self.seed = seed

        if seed is not None:
            random.seed(seed)

        self._plan_gen = PlanGenerator(seed=seed)
        self._payment_behavior = PaymentBehavior(seed=seed)
        self.engine = InstallmentEngine(
            config=engine_config,
            clock=lambda: datetime.combine(self.reference_date, time(12, 0)),
            id_factory=self._plan_gen.fake.uuid4,
        )
        self.behaviors: dict[str, int] = {}

    @property
    def store(self) -> InstallmentDataStore:
        return self.engine.store

    def generate(self) -> InstallmentDataStore:
        """Generate all data for the portfolio scenario.

        Returns
        -------
        InstallmentDataStore
            Store containing the plans and modifications.
        """
        logger.info(
            "Starting installment portfolio scenario: %d plans as of %s",
            self.num_plans,
            self.reference_date,
        )

        num_customers = max(1, self.num_plans * 2 // 3)
        customers = [self._plan_gen.customer_id() for _ in range(num_customers)]

        for _ in range(self.num_plans):
            request = self._plan_gen.generate(
                customer_id=random.choice(customers), reference_date=self.reference_date
            )
            plan = self.engine.create_plan(**request.as_kwargs())
            behavior = self._payment_behavior.apply_payment_behavior(
                self.engine,
                plan,
                self.reference_date,
                on_time_rate=self.on_time_rate,
                late_rate=self.late_rate,
                default_rate=self.default_rate,
            )
            self.behaviors[behavior] = self.behaviors.get(behavior, 0) + 1

        logger.info(
            "Generated %d plans for %d customers with %d payments",
            len(self.store.plans),
            len(customers),
            sum(p.paid_installments for p in self.store.iter_plans()),
        )

        self._generate_modifications()
        return self.store

    def _generate_modifications(self) -> None:
        """Request modifications on open plans and resolve most of them."""
        max_installments = self.engine.config.plans.max_installments
        candidates = [
            plan
            for plan in self.store.iter_plans()
            if plan.status_on(self.reference_date) in MODIFIABLE_STATUSES and plan.open_payments
        ]

        for plan in candidates:
            if random.random() >= self.modification_rate:
                continue
            request = self._plan_gen.modification(plan, max_installments)
            modification = self.engine.request_modification(
                plan.plan_id,
                request.modification_type,
                request.reason,
                request.requested_by,
                request.params,
                require_approval=True,
            )

            roll = random.random()
            reviewer = self._plan_gen.fake.user_name()
            if roll < self.approval_rate:
                self.engine.approve_modification(
                    modification.modification_id, reviewer, "Within policy limits"
                )
                self.engine.apply_modification(modification.modification_id)
            elif roll < self.approval_rate + (1 - self.approval_rate) / 2:
                self.engine.reject_modification(
                    modification.modification_id, reviewer, "Outside policy limits"
                )

        logger.info(
            "Generated %d modifications (%d applied, %d pending)",
            len(self.store.modifications),
            sum(
                1
                for m in self.store.iter_modifications()
                if m.status == ModificationStatus.APPLIED
            ),
            len(self.engine.list_pending_modifications()),
        )

    def export(self, sinks: list[Any]) -> None:
        """Export generated data to sinks.

        Parameters
        ----------
        sinks : list[Any]
            List of sink instances (JsonFileSink, KafkaSink).
        """
        plans = self.engine.export_plans()
        modifications = list(self.store.iter_modifications())
        for sink in sinks:
            sink.write_batch("plans", plans)
            sink.write_batch("modifications", modifications)

        logger.info("Exported installment portfolio to %d sinks", len(sinks))

    def get_portfolio_summary(self) -> dict[str, Any]:
        """Get summary statistics for the portfolio.

        Returns
        -------
        dict[str, Any]
            Portfolio summary statistics.
        """
        plans = list(self.store.iter_plans())
        if not plans:
            return {}

        summary = self.engine.portfolio_summary(self.reference_date)
        avg_rate = sum(p.interest_rate for p in plans) / len(plans)

        modification_status: dict[str, int] = {}
        modification_types: dict[str, int] = {}
        for modification in self.store.iter_modifications():
            status = modification.status.value
            kind = modification.modification_type.value
            modification_status[status] = modification_status.get(status, 0) + 1
            modification_types[kind] = modification_types.get(kind, 0) + 1

        return {
            "total_plans": summary["total_plans"],
            "total_customers": len({p.customer_id for p in plans}),
            "total_financed": float(summary["total_financed"]),
            "total_collected": float(summary["total_collected"]),
            "total_outstanding": float(summary["total_outstanding"]),
            "average_interest_rate": float(avg_rate),
            "plan_status_distribution": summary["status_distribution"],
            "payment_behavior_distribution": dict(self.behaviors),
            "modification_status_distribution": modification_status,
            "modification_type_distribution": modification_types,
        }
