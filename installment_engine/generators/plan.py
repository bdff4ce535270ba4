"""Installment plan request generator and payment behavior simulation."""

import random
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_DOWN, Decimal
from typing import Any

from installment_engine.generators.base import BaseGenerator
from installment_engine.models.installment import (
    InstallmentPlan,
    ModificationParams,
    ModificationType,
    PlanProduct,
    PlanStatus,
)

CENT = Decimal("0.01")


@dataclass
class PlanRequest:
    """Arguments for one ``create_plan`` call."""

    customer_id: str
    products: list[PlanProduct]
    total_price: Decimal
    down_payment: Decimal
    number_of_installments: int
    interest_rate: Decimal
    start_date: date
    sale_id: str | None = None

    def as_kwargs(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "products": self.products,
            "total_price": self.total_price,
            "down_payment": self.down_payment,
            "number_of_installments": self.number_of_installments,
            "interest_rate": self.interest_rate,
            "start_date": self.start_date,
            "sale_id": self.sale_id,
        }


@dataclass
class ModificationRequest:
    """Arguments for one ``request_modification`` call."""

    modification_type: ModificationType
    params: ModificationParams
    reason: str
    requested_by: str


class PlanGenerator(BaseGenerator):
    """Generate realistic retail financing requests."""

    # Category -> (item names, unit price range in whole currency units)
    CATALOG = {
        "Electronics": (["Smartphone", "Laptop", "Tablet", "Smart TV", "Headphones"], (80, 2500)),
        "Appliances": (
            ["Refrigerator", "Washing Machine", "Microwave", "Air Conditioner"],
            (120, 1800),
        ),
        "Furniture": (["Sofa", "Dining Table", "Wardrobe", "Bed Frame", "Office Chair"], (90, 1500)),
        "Sports": (["Treadmill", "Bicycle", "Rowing Machine", "Home Gym"], (150, 2200)),
    }

    TERMS = [3, 6, 9, 12, 18, 24, 36]
    RATES = ["0", "5", "8", "10", "12", "15", "18"]
    DOWN_PAYMENT_SHARES = ["0", "0.10", "0.20", "0.30"]

    def __init__(self, seed: int | None = None, locale: str = "en_US") -> None:
        super().__init__(seed, locale)

    def customer_id(self) -> str:
        return f"cust-{self.fake.uuid4()[:12]}"

    def product(self, category: str | None = None) -> PlanProduct:
        """Generate one financed line item."""
        category = category or random.choice(list(self.CATALOG))
        names, (low, high) = self.CATALOG[category]
        item = random.choice(names)
        return PlanProduct(
            product_id=f"prod-{self.fake.uuid4()[:12]}",
            name=f"{self.fake.company()} {item}",
            unit_price=Decimal(random.randint(low * 100, high * 100)) / 100,
            quantity=random.choices([1, 2, 3], weights=[80, 15, 5], k=1)[0],
            category=category,
            description=self.fake.sentence(nb_words=8),
        )

    def generate(
        self, customer_id: str | None = None, reference_date: date | None = None
    ) -> PlanRequest:
        """Generate a create-plan request.

        Parameters
        ----------
        customer_id : str | None
            Customer the plan is for; a new id is generated when omitted.
        reference_date : date | None
            "Today" for the sample; start dates fall in the preceding year.

        Returns
        -------
        PlanRequest
            Valid arguments for ``InstallmentEngine.create_plan``.
        """
        reference_date = reference_date or date.today()
        num_products = random.choices([1, 2, 3], weights=[60, 30, 10], k=1)[0]
        products = [self.product() for _ in range(num_products)]
        total_price = sum((p.line_total for p in products), Decimal("0.00"))
        share = Decimal(random.choice(self.DOWN_PAYMENT_SHARES))

        return PlanRequest(
            customer_id=customer_id or self.customer_id(),
            products=products,
            total_price=total_price,
            down_payment=(total_price * share).quantize(CENT, rounding=ROUND_DOWN),
            number_of_installments=random.choice(self.TERMS),
            interest_rate=Decimal(random.choice(self.RATES)),
            start_date=reference_date - timedelta(days=random.randint(0, 365)),
            sale_id=f"sale-{self.fake.uuid4()[:12]}",
        )

    def modification(self, plan: InstallmentPlan, max_installments: int = 60) -> ModificationRequest:
        """Generate a plausible modification for a plan with open installments."""
        open_payments = plan.open_payments
        kept = plan.number_of_installments - len(open_payments)
        principal = sum((p.principal_amount for p in open_payments), Decimal("0.00"))

        choices = [ModificationType.CHANGE_INTEREST_RATE, ModificationType.ADD_PRODUCTS]
        if max_installments - kept > 1:
            choices.append(ModificationType.CHANGE_INSTALLMENT_COUNT)
        if principal >= Decimal("10.00"):
            choices.append(ModificationType.CHANGE_DOWN_PAYMENT)
        modification_type = random.choice(choices)

        params = ModificationParams()
        if modification_type == ModificationType.CHANGE_INSTALLMENT_COUNT:
            options = [n for n in (3, 6, 9, 12, 18, 24, 36) if n <= max_installments - kept]
            options = [n for n in options if n != len(open_payments)] or [1]
            params.new_installment_count = random.choice(options)
            reason = "Customer requested a different term"
        elif modification_type == ModificationType.CHANGE_INTEREST_RATE:
            params.new_interest_rate = Decimal(random.choice(self.RATES))
            reason = "Promotional rate adjustment"
        elif modification_type == ModificationType.CHANGE_DOWN_PAYMENT:
            share = Decimal(random.choice(["0.10", "0.25", "0.50"]))
            params.additional_down_payment = (principal * share).quantize(CENT, rounding=ROUND_DOWN)
            reason = "Customer made an additional upfront payment"
        else:
            params.additional_products = [self.product()]
            reason = "Customer added items to the financed purchase"

        return ModificationRequest(
            modification_type=modification_type,
            params=params,
            reason=f"{reason}: {self.fake.sentence(nb_words=6)}",
            requested_by=self.fake.user_name(),
        )


class PaymentBehavior:
    """Simulate customer payment behavior against a live plan."""

    BEHAVIORS = ["good", "occasional_late", "chronic_late", "defaulter"]

    def __init__(self, seed: int | None = None) -> None:
        if seed is not None:
            random.seed(seed)

    def choose(
        self, on_time_rate: float = 0.85, late_rate: float = 0.10, default_rate: float = 0.05
    ) -> str:
        return random.choices(
            self.BEHAVIORS,
            weights=[on_time_rate, late_rate * 0.7, late_rate * 0.3, default_rate],
            k=1,
        )[0]

    def apply_payment_behavior(
        self,
        engine: Any,
        plan: InstallmentPlan,
        reference_date: date,
        on_time_rate: float = 0.85,
        late_rate: float = 0.10,
        default_rate: float = 0.05,
    ) -> str:
        """Record the payments a customer would have made by ``reference_date``.

        Parameters
        ----------
        engine : InstallmentEngine
            Engine the payments are recorded through.
        plan : InstallmentPlan
            Plan to pay.
        reference_date : date
            Payments dated after this are not made.
        on_time_rate : float
            Probability of a customer paying on time (default 85%).
        late_rate : float
            Probability of a customer paying late (default 10%).
        default_rate : float
            Probability of a customer defaulting (default 5%).

        Returns
        -------
        str
            The behavior profile that was simulated.
        """
        behavior = self.choose(on_time_rate, late_rate, default_rate)
        stop_after = random.randint(0, 2) if behavior == "defaulter" else None

        for index, payment in enumerate(plan.payments):
            if payment.due_date > reference_date:
                break
            if stop_after is not None and index >= stop_after:
                break

            if behavior == "good":
                paid_on = payment.due_date + timedelta(days=random.randint(0, 3))
            elif behavior == "occasional_late":
                late = random.random() >= 0.8
                paid_on = payment.due_date + timedelta(
                    days=random.randint(10, 30) if late else random.randint(0, 5)
                )
            elif behavior == "chronic_late":
                paid_on = payment.due_date + timedelta(days=random.randint(5, 45))
            else:
                paid_on = payment.due_date + timedelta(days=random.randint(0, 10))

            if paid_on > reference_date:
                break
            engine.record_payment(plan.plan_id, payment.amount_due, payment_date=paid_on)

        if behavior == "defaulter":
            current = engine.get_plan(plan.plan_id)
            oldest = current.next_payment
            if oldest is not None and (reference_date - oldest.due_date).days >= 90:
                engine.update_plan_status(
                    plan.plan_id, PlanStatus.DEFAULTED, reason="90+ days past due"
                )
        return behavior
