# Overview: Customer resolution (walk-in vs registered) and loyalty accrual.

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..extensions import db
from ..models import Customer, LoyaltyTransaction
from ..validation import NotFoundError, ValidationError

WALK_IN_NAME = "Walk-in Customer"

# One point per whole currency unit of the sale total.
CENTS_PER_LOYALTY_POINT = 100


@dataclass(frozen=True)
class WalkInCustomer:
    """Anonymous buyer. Never persisted as a customer row."""
    name: str = WALK_IN_NAME
    phone: str | None = None
    email: str | None = None

    @property
    def id(self) -> None:
        return None

    @property
    def earns_loyalty(self) -> bool:
        return False


@dataclass(frozen=True)
class RegisteredCustomer:
    id: int
    name: str
    phone: str | None
    email: str | None
    loyalty_enabled: bool

    @property
    def earns_loyalty(self) -> bool:
        return self.loyalty_enabled

    @classmethod
    def from_model(cls, customer: Customer) -> "RegisteredCustomer":
        return cls(
            id=customer.id,
            name=customer.name,
            phone=customer.phone,
            email=customer.email,
            loyalty_enabled=bool(customer.loyalty_enabled),
        )


CustomerRef = Union[RegisteredCustomer, WalkInCustomer]

WALK_IN = WalkInCustomer()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def resolve_customer(customer_id: int | None) -> CustomerRef:
    """None means walk-in; anything else must be an active customer."""
    if customer_id is None:
        return WALK_IN
    customer = get_customer(customer_id)
    if not customer.is_active:
        raise ValidationError(f"Customer {customer_id} is inactive")
    return RegisteredCustomer.from_model(customer)


def create_customer(
    *,
    name: str,
    phone: str,
    email: str | None = None,
    loyalty_enabled: bool = False,
) -> Customer:
    if not name or not name.strip():
        raise ValidationError("name required")
    if not phone or not phone.strip():
        raise ValidationError("phone required")

    customer = Customer(
        name=name.strip(),
        phone=phone.strip(),
        email=email,
        loyalty_enabled=loyalty_enabled,
        loyalty_points=0,
        total_purchases=0,
        total_spent_cents=0,
        is_active=True,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def loyalty_points_for(total_cents: int) -> int:
    """floor(total) in whole currency units; never negative."""
    return max(total_cents, 0) // CENTS_PER_LOYALTY_POINT


def record_purchase(customer_id: int, total_cents: int) -> None:
    """Bump purchase aggregates. Does not commit."""
    customer = get_customer(customer_id)
    customer.total_purchases = Customer.total_purchases + 1
    customer.total_spent_cents = Customer.total_spent_cents + total_cents
    db.session.flush()


def accrue_loyalty(
    *,
    customer_id: int,
    points: int,
    user_id: int,
    sale_id: str | None = None,
    description: str | None = None,
) -> LoyaltyTransaction | None:
    """
    Credit loyalty points and append the ledger row. Does not commit.

    Zero points writes nothing.
    """
    if points <= 0:
        return None

    customer = get_customer(customer_id)
    customer.loyalty_points = Customer.loyalty_points + points

    entry = LoyaltyTransaction(
        customer_id=customer_id,
        sale_id=sale_id,
        type="earn",
        points=points,
        description=description,
        user_id=user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry
