"""In-memory store for installment plans and their modifications."""

import copy
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from installment_engine.exceptions import EntityNotFoundError, InvalidParameterError
from installment_engine.models.installment import InstallmentModification, InstallmentPlan

PLAN_SORT_FIELDS = frozenset(
    {"created_at", "updated_at", "start_date", "end_date", "total_price", "customer_id"}
)


def _not_found(kind: str, entity_id: str) -> EntityNotFoundError:
    if kind == "plan":
        return EntityNotFoundError(
            f"Installment plan {entity_id} not found",
            field="plan_id",
            details={"plan_id": entity_id},
        )
    return EntityNotFoundError(
        f"Modification {entity_id} not found",
        field="modification_id",
        details={"modification_id": entity_id},
    )


@dataclass
class InstallmentDataStore:
    """In-memory store with per-plan mutual exclusion.

    Every plan and modification has its own re-entrant lock. Readers get
    deep copies taken under the lock, so they never observe a schedule
    half way through a write. Writers go through ``plan_transaction`` or
    ``modification_transaction`` which hand out a working copy and only
    swap it in when the block finishes without raising.
    """

    plans: dict[str, InstallmentPlan] = field(default_factory=dict)
    modifications: dict[str, InstallmentModification] = field(default_factory=dict)

    # Relationship indexes
    _customer_plans: dict[str, list[str]] = field(default_factory=dict)
    _plan_modifications: dict[str, list[str]] = field(default_factory=dict)

    # Source of commit timestamps
    clock: Callable[[], datetime] = field(default=datetime.now, repr=False)

    # Lock registry, one entry per stored plan or modification
    _locks: dict[tuple[str, str], threading.RLock] = field(default_factory=dict)
    _registry_lock: threading.Lock = field(default_factory=threading.Lock)

    def _lock(self, kind: str, entity_id: str, create: bool = False) -> threading.RLock:
        with self._registry_lock:
            key = (kind, entity_id)
            lock = self._locks.get(key)
            if lock is None:
                if not create:
                    raise _not_found(kind, entity_id)
                lock = self._locks[key] = threading.RLock()
            return lock

    def plan_lock(self, plan_id: str) -> threading.RLock:
        """Lock serializing every mutation of one plan.

        Raises
        ------
        EntityNotFoundError
            If no plan with this id was ever added.
        """
        return self._lock("plan", plan_id)

    def modification_lock(self, modification_id: str) -> threading.RLock:
        return self._lock("modification", modification_id)

    # Plans
    def add_plan(self, plan: InstallmentPlan) -> None:
        """Add a fully built plan to the store."""
        if plan.created_at is None:
            plan.created_at = self.clock()
        with self._lock("plan", plan.plan_id, create=True):
            self.plans[plan.plan_id] = copy.deepcopy(plan)
            with self._registry_lock:
                self._customer_plans.setdefault(plan.customer_id, []).append(plan.plan_id)
                self._plan_modifications.setdefault(plan.plan_id, [])

    def get_plan(self, plan_id: str) -> InstallmentPlan:
        """Consistent copy of a plan."""
        with self.plan_lock(plan_id):
            plan = self.plans.get(plan_id)
            if plan is None:
                raise _not_found("plan", plan_id)
            return copy.deepcopy(plan)

    @contextmanager
    def plan_transaction(self, plan_id: str) -> Iterator[InstallmentPlan]:
        """Mutate a plan atomically.

        Yields a working copy while holding the plan lock. The copy is
        committed with ``version + 1`` when the block exits normally and
        discarded when it raises.
        """
        with self.plan_lock(plan_id):
            working = self.get_plan(plan_id)
            yield working
            working.version += 1
            working.updated_at = self.clock()
            self.plans[plan_id] = working

    def get_customer_plans(self, customer_id: str) -> list[InstallmentPlan]:
        """Get all plans for a customer."""
        plan_ids = self._customer_plans.get(customer_id, [])
        return [self.get_plan(pid) for pid in plan_ids]

    def iter_plans(self) -> Iterator[InstallmentPlan]:
        """Iterate over copies of every plan."""
        for plan_id in list(self.plans):
            yield self.get_plan(plan_id)

    def list_plans(
        self,
        customer_id: str | None = None,
        predicate: Callable[[InstallmentPlan], bool] | None = None,
        sort_by: str = "created_at",
        descending: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> list[InstallmentPlan]:
        """Filtered, sorted, paginated plan listing.

        ``predicate`` is applied before pagination, so pages stay full when
        the caller filters on a derived field such as status.
        """
        if sort_by not in PLAN_SORT_FIELDS:
            raise InvalidParameterError(
                f"Cannot sort plans by {sort_by}",
                field="sort_by",
                details={"allowed": sorted(PLAN_SORT_FIELDS)},
            )
        if page < 1 or page_size < 1:
            raise InvalidParameterError(
                "page and page_size must be at least 1",
                field="page" if page < 1 else "page_size",
                details={"page": page, "page_size": page_size},
            )

        if customer_id is not None:
            plans = self.get_customer_plans(customer_id)
        else:
            plans = list(self.iter_plans())
        if predicate is not None:
            plans = [p for p in plans if predicate(p)]

        present = [p for p in plans if getattr(p, sort_by) is not None]
        missing = [p for p in plans if getattr(p, sort_by) is None]
        present.sort(key=lambda p: (getattr(p, sort_by), p.plan_id), reverse=descending)
        plans = present + sorted(missing, key=lambda p: p.plan_id)
        start = (page - 1) * page_size
        return plans[start : start + page_size]

    # Modifications
    def add_modification(self, modification: InstallmentModification) -> None:
        """Add a modification record to the store."""
        if modification.plan_id not in self.plans:
            raise EntityNotFoundError(
                f"Installment plan {modification.plan_id} not found",
                field="plan_id",
                details={"plan_id": modification.plan_id},
            )

        if modification.created_at is None:
            modification.created_at = self.clock()
        with self._lock("modification", modification.modification_id, create=True):
            self.modifications[modification.modification_id] = copy.deepcopy(modification)
            with self._registry_lock:
                self._plan_modifications[modification.plan_id].append(
                    modification.modification_id
                )

    def get_modification(self, modification_id: str) -> InstallmentModification:
        with self.modification_lock(modification_id):
            modification = self.modifications.get(modification_id)
            if modification is None:
                raise _not_found("modification", modification_id)
            return copy.deepcopy(modification)

    @contextmanager
    def modification_transaction(self, modification_id: str) -> Iterator[InstallmentModification]:
        """Mutate a modification atomically (same contract as ``plan_transaction``)."""
        with self.modification_lock(modification_id):
            working = self.get_modification(modification_id)
            yield working
            working.updated_at = self.clock()
            self.modifications[modification_id] = working

    def get_plan_modifications(self, plan_id: str) -> list[InstallmentModification]:
        """Get all modifications requested against a plan, oldest first."""
        modification_ids = self._plan_modifications.get(plan_id, [])
        return [self.get_modification(mid) for mid in modification_ids]

    def get_customer_modifications(self, customer_id: str) -> list[InstallmentModification]:
        result = []
        for plan_id in self._customer_plans.get(customer_id, []):
            result.extend(self.get_plan_modifications(plan_id))
        return result

    def iter_modifications(self) -> Iterator[InstallmentModification]:
        for modification_id in list(self.modifications):
            yield self.get_modification(modification_id)

    def summary(self) -> dict[str, int]:
        """Return summary counts of all entities."""
        return {
            "plans": len(self.plans),
            "customers": len(self._customer_plans),
            "payments": sum(len(p.payments) for p in self.plans.values()),
            "modifications": len(self.modifications),
        }
