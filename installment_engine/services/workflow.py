"""Request, approve, reject and apply plan modifications."""

import copy
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from installment_engine.config import ModificationConfig
from installment_engine.events import EventPublisher
from installment_engine.exceptions import ConsistencyViolationError, StateConflictError
from installment_engine.logging import log_context
from installment_engine.models.installment import (
    InstallmentModification,
    InstallmentPlan,
    ModificationParams,
    ModificationStatus,
    ModificationType,
    Payment,
    PlanSnapshot,
)
from installment_engine.services.modification import (
    Derivation,
    ModificationEngine,
    to_modification_type,
)
from installment_engine.services.plans import require_text
from installment_engine.store import InstallmentDataStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ModificationStatus, frozenset[ModificationStatus]] = {
    ModificationStatus.PENDING: frozenset({ModificationStatus.APPROVED, ModificationStatus.REJECTED}),
    ModificationStatus.APPROVED: frozenset({ModificationStatus.APPLIED}),
    ModificationStatus.REJECTED: frozenset(),
    ModificationStatus.APPLIED: frozenset(),
}

# Snapshot fields compared with a tolerance at apply time; the rest must match exactly
MONEY_FIELDS = (
    "total_price",
    "down_payment",
    "installment_amount",
    "remaining_balance",
    "total_paid",
    "outstanding_principal",
    "outstanding_payable",
)
EXACT_FIELDS = (
    "number_of_installments",
    "remaining_installments",
    "paid_installments",
    "interest_rate",
    "end_date",
)

BYPASS_NOTE = "Approved automatically: approval not required by policy"


def check_transition(modification: InstallmentModification, target: ModificationStatus) -> None:
    """Raise unless ``target`` is reachable from the modification's status."""
    if target not in ALLOWED_TRANSITIONS[modification.status]:
        raise StateConflictError(
            f"Cannot move modification {modification.modification_id} from "
            f"{modification.status.value} to {target.value}",
            field="status",
            details={
                "modification_id": modification.modification_id,
                "from": modification.status.value,
                "to": target.value,
            },
        )


def compare_snapshots(
    stored: PlanSnapshot, recomputed: PlanSnapshot, tolerance: Decimal
) -> dict[str, dict[str, Any]]:
    """Fields where a recomputed snapshot diverges from the stored one."""
    differences = {}
    for name in MONEY_FIELDS:
        old, new = getattr(stored, name), getattr(recomputed, name)
        if abs(new - old) > tolerance:
            differences[name] = {"stored": str(old), "recomputed": str(new)}
    for name in EXACT_FIELDS:
        old, new = getattr(stored, name), getattr(recomputed, name)
        if old != new:
            differences[name] = {"stored": str(old), "recomputed": str(new)}
    return differences


class ModificationWorkflow:
    """State machine turning an accepted preview into a committed change.

    ``Pending -> Approved | Rejected`` and ``Approved -> Applied``; Rejected
    and Applied are terminal. Approval only authorizes; ``apply`` is the
    only step that touches the plan.
    """

    def __init__(
        self,
        store: InstallmentDataStore,
        engine: ModificationEngine,
        config: ModificationConfig | None = None,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.config = config or ModificationConfig()
        self.publisher = publisher or EventPublisher()
        self.clock = clock
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def request(
        self,
        plan_id: str,
        modification_type: ModificationType | str,
        reason: str,
        requested_by: str,
        params: ModificationParams | None = None,
        require_approval: bool | None = None,
    ) -> InstallmentModification:
        """Persist a Pending modification priced against the current plan.

        Parameters
        ----------
        plan_id : str
            Plan to modify.
        modification_type : ModificationType | str
            Which term changes.
        reason : str
            Why the change is requested; required.
        requested_by : str
            Requesting user; required.
        params : ModificationParams | None
            Type-specific requested values.
        require_approval : bool | None
            Overrides ``ModificationConfig.require_approval``. When approval
            is not required the request is approved on behalf of the
            requester and applied straight away.

        Returns
        -------
        InstallmentModification
            The stored modification (Applied when approval was bypassed).
        """
        reason = require_text(reason, "reason")
        requested_by = require_text(requested_by, "requested_by")
        modification_type = to_modification_type(modification_type)

        with self.store.plan_lock(plan_id):
            plan = self.store.get_plan(plan_id)
            derivation = self.engine.derive(plan, modification_type, params)
            now = self.clock()
            modification = InstallmentModification(
                modification_id=self.id_factory(),
                plan_id=plan_id,
                customer_id=plan.customer_id,
                modification_type=modification_type,
                requested_by=requested_by,
                reason=reason,
                previous_plan=derivation.previous_plan,
                new_plan=derivation.new_plan,
                modification_details=derivation.details,
                plan_version=plan.version,
                created_at=now,
                updated_at=now,
            )
            self.store.add_modification(modification)

        impact = derivation.impact
        logger.info(
            "Modification %s requested on plan %s by %s: %s, EMI %s -> %s",
            modification.modification_id,
            plan_id,
            requested_by,
            modification_type.value,
            impact.old_monthly_emi,
            impact.new_monthly_emi,
            extra=log_context(modification_id=modification.modification_id, plan_id=plan_id),
        )
        self._publish("modification.requested", modification)

        if require_approval is None:
            require_approval = self.config.require_approval
        if not require_approval:
            self.approve(modification.modification_id, requested_by, BYPASS_NOTE)
            self.apply(modification.modification_id)

        return self.store.get_modification(modification.modification_id)

    def approve(
        self, modification_id: str, approved_by: str, notes: str | None = None
    ) -> InstallmentModification:
        """Authorize a Pending modification. The plan is not touched."""
        approved_by = require_text(approved_by, "approved_by")
        with self.store.modification_transaction(modification_id) as modification:
            check_transition(modification, ModificationStatus.APPROVED)
            modification.status = ModificationStatus.APPROVED
            modification.approved_by = approved_by
            modification.approval_notes = notes
            modification.approved_at = self.clock()

        logger.info(
            "Modification %s approved by %s",
            modification_id,
            approved_by,
            extra=log_context(modification_id=modification_id, plan_id=modification.plan_id),
        )
        self._publish("modification.approved", modification)
        return self.store.get_modification(modification_id)

    def reject(
        self, modification_id: str, rejected_by: str, reason: str
    ) -> InstallmentModification:
        """Close a Pending modification without changing the plan."""
        rejected_by = require_text(rejected_by, "rejected_by")
        reason = require_text(reason, "reason")
        with self.store.modification_transaction(modification_id) as modification:
            check_transition(modification, ModificationStatus.REJECTED)
            modification.status = ModificationStatus.REJECTED
            modification.rejected_by = rejected_by
            modification.rejection_reason = reason
            modification.rejected_at = self.clock()

        logger.info(
            "Modification %s rejected by %s: %s",
            modification_id,
            rejected_by,
            reason,
            extra=log_context(modification_id=modification_id, plan_id=modification.plan_id),
        )
        self._publish("modification.rejected", modification)
        return self.store.get_modification(modification_id)

    def apply(self, modification_id: str) -> InstallmentPlan:
        """Replace the plan's open installments with the approved schedule.

        The new schedule is recomputed from the live plan while holding the
        modification lock and then the plan lock, so no payment can land in
        between. If the recomputation no longer matches the stored
        ``new_plan`` the plan and the modification are left unchanged.

        Raises
        ------
        StateConflictError
            The modification is not Approved, or the plan can no longer be
            modified.
        ConsistencyViolationError
            The live recomputation diverges from the approved figures.
        """
        with self.store.modification_lock(modification_id):
            modification = self.store.get_modification(modification_id)
            check_transition(modification, ModificationStatus.APPLIED)

            with self.store.plan_transaction(modification.plan_id) as plan:
                derivation = self.engine.derive(
                    plan,
                    modification.modification_type,
                    modification.modification_details.params,
                )
                differences = compare_snapshots(
                    modification.new_plan,
                    derivation.new_plan,
                    self.config.consistency_tolerance,
                )
                if differences:
                    logger.warning(
                        "Modification %s no longer matches plan %s: %s",
                        modification_id,
                        plan.plan_id,
                        ", ".join(sorted(differences)),
                        extra=log_context(modification_id=modification_id, plan_id=plan.plan_id),
                    )
                    raise ConsistencyViolationError(
                        f"Plan {plan.plan_id} changed since modification {modification_id} "
                        "was requested",
                        field="new_plan",
                        details={
                            "modification_id": modification_id,
                            "plan_id": plan.plan_id,
                            "plan_version": plan.version,
                            "requested_at_version": modification.plan_version,
                            "differences": differences,
                        },
                    )
                self._replace_open_installments(plan, derivation)

            with self.store.modification_transaction(modification_id) as stored:
                stored.status = ModificationStatus.APPLIED
                stored.applied_date = self.clock()

        logger.info(
            "Applied modification %s to plan %s: %d installments of %s",
            modification_id,
            modification.plan_id,
            derivation.new_plan.number_of_installments,
            derivation.new_plan.installment_amount,
            extra=log_context(modification_id=modification_id, plan_id=modification.plan_id),
        )
        self._publish("modification.applied", stored)
        return self.store.get_plan(modification.plan_id)

    def _replace_open_installments(self, plan: InstallmentPlan, derivation: Derivation) -> None:
        now = self.clock()
        new = derivation.new_plan
        kept = [p for p in plan.payments if p.has_payment or p.is_paid]
        plan.payments = kept + [
            Payment(
                installment_number=entry.installment_number,
                install_date=entry.install_date,
                due_date=entry.due_date,
                amount_due=entry.total_amount,
                principal_amount=entry.principal_amount,
                interest_amount=entry.interest_amount,
                # Nothing left to collect: settled as of the change
                payment_date=now.date() if entry.total_amount <= 0 else None,
                created_at=now,
                updated_at=now,
            )
            for entry in derivation.schedule.entries
        ]
        plan.number_of_installments = len(plan.payments)
        plan.installment_amount = new.installment_amount
        plan.interest_rate = new.interest_rate
        plan.down_payment = new.down_payment
        plan.total_price = new.total_price
        plan.products = copy.deepcopy(new.products)
        plan.end_date = new.end_date
        plan.total_amount_with_interest = plan.down_payment + sum(
            (p.amount_due for p in plan.payments), Decimal("0.00")
        )

    # Reads
    def get_modification(self, modification_id: str) -> InstallmentModification:
        return self.store.get_modification(modification_id)

    def list_plan_modifications(self, plan_id: str) -> list[InstallmentModification]:
        self.store.get_plan(plan_id)
        return self.store.get_plan_modifications(plan_id)

    def list_pending_modifications(self) -> list[InstallmentModification]:
        return [
            m for m in self.store.iter_modifications() if m.status == ModificationStatus.PENDING
        ]

    def list_customer_modifications(self, customer_id: str) -> list[InstallmentModification]:
        return self.store.get_customer_modifications(customer_id)

    def _publish(self, event_type: str, modification: InstallmentModification) -> None:
        self.publisher.publish(
            event_type,
            modification.plan_id,
            {
                "modification_id": modification.modification_id,
                "plan_id": modification.plan_id,
                "modification_type": modification.modification_type,
                "status": modification.status,
                "financial_impact": modification.modification_details.financial_impact,
            },
        )
