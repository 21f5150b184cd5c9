"""Storefront entities consumed by the recommendation subsystem.

These are plain read models. Persistence and CRUD for them live outside this
package; the recommender only ever reads them through the repository
interfaces in :mod:`tenantrec.repositories`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

# Category id that stands for "no category" in the dense encoding
EMPTY_CATEGORY_ID = UUID(int=0)


@dataclass(frozen=True)
class Tenant:
    """An isolated business account."""

    id: UUID
    name: str


@dataclass(frozen=True)
class Category:
    id: UUID
    tenant_id: UUID
    name: str


@dataclass(frozen=True)
class Product:
    """A catalog product belonging to a single tenant."""

    id: UUID
    tenant_id: UUID
    name: str
    category_id: Optional[UUID] = None
    price: Decimal = Decimal("0")
    is_available: bool = True
    description: Optional[str] = None
    lead_time: Optional[str] = None
    images: Tuple[str, ...] = ()


@dataclass(frozen=True)
class OrderItem:
    product_id: UUID
    quantity: int = 1
    unit_price: Decimal = Decimal("0")


@dataclass(frozen=True)
class Order:
    """A placed order.

    ``user_id`` is ``None`` for manual/guest orders; those never contribute
    to a customer's purchase history.
    """

    id: UUID
    tenant_id: UUID
    user_id: Optional[UUID]
    items: Tuple[OrderItem, ...] = ()
    order_date: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    status: str = "Pending"
