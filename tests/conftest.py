"""Pytest configuration and fixtures."""

import itertools
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import pytest

from installment_engine.config import EngineConfig
from installment_engine.engine import InstallmentEngine
from installment_engine.exceptions import SinkError
from installment_engine.models.installment import InstallmentPlan, PlanProduct


class FrozenClock:
    """Clock whose time only moves when a test moves it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_date(self, day: date) -> None:
        self.now = datetime(day.year, day.month, day.day, 12, 0)


class RecordingSink:
    """Event sink keeping everything it was sent."""

    def __init__(self) -> None:
        self.records: list[tuple[str, Any, str | None]] = []

    def send(self, topic: str, record: Any, key: str | None = None) -> None:
        self.records.append((topic, record, key))

    @property
    def event_types(self) -> list[str]:
        return [record.event_type for _, record, _ in self.records]


class FailingSink:
    """Event sink that rejects every message."""

    def send(self, topic: str, record: Any, key: str | None = None) -> None:
        raise SinkError("broker unavailable", field="topic", details={"topic": topic})


class BrokenSink:
    """Event sink with a bug: raises an untyped error for every message."""

    def send(self, topic: str, record: Any, key: str | None = None) -> None:
        raise ValueError(f"cannot encode record for {topic}")


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def clock() -> FrozenClock:
    """Clock fixed before the first installment of the sample plan falls due."""
    return FrozenClock(datetime(2024, 1, 15, 12, 0))


@pytest.fixture
def id_factory() -> Any:
    """Sequential, predictable ids."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter):04d}"


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def engine(clock: FrozenClock, id_factory: Any, sink: RecordingSink) -> InstallmentEngine:
    """Engine with a frozen clock and a recording event sink."""
    return InstallmentEngine(config=EngineConfig(), sink=sink, clock=clock, id_factory=id_factory)


@pytest.fixture
def sample_customer_id() -> str:
    """Sample customer ID."""
    return "cust-test-001"


@pytest.fixture
def sample_products() -> list[PlanProduct]:
    """A single $900 line item."""
    return [
        PlanProduct(
            product_id="prod-001",
            name="Laptop",
            unit_price=Decimal("900.00"),
            quantity=1,
            category="Electronics",
        )
    ]


@pytest.fixture
def plan(
    engine: InstallmentEngine, sample_customer_id: str, sample_products: list[PlanProduct]
) -> InstallmentPlan:
    """$900 financed at 10% over 6 months from 2024-01-01 ($165.00 a month)."""
    return engine.create_plan(
        customer_id=sample_customer_id,
        products=sample_products,
        total_price=Decimal("900.00"),
        down_payment=Decimal("0.00"),
        number_of_installments=6,
        interest_rate=Decimal("10"),
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def interest_free_plan(engine: InstallmentEngine, sample_customer_id: str) -> InstallmentPlan:
    """$600 interest free over 4 months from 2024-01-01 ($150.00 a month)."""
    return engine.create_plan(
        customer_id=sample_customer_id,
        products=[PlanProduct("prod-002", "Phone", Decimal("600.00"), 1)],
        total_price=Decimal("600.00"),
        down_payment=Decimal("0"),
        number_of_installments=4,
        interest_rate=Decimal("0"),
        start_date=date(2024, 1, 1),
    )
