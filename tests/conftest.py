"""Shared fixtures for the TenantRec test suite.

The sample storefront has three tenants:

* a bakery with two categories, five products and three customers,
* a deli with one category, two products and two customers (one of whom
  also shops at the bakery),
* an empty shop with a catalog but no orders (cold start).
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Generator
from uuid import UUID

import pytest

from tenantrec.domain import Category, Order, OrderItem, Product, Tenant
from tenantrec.metrics import metrics_service
from tenantrec.recommender.service import RecommendationService
from tenantrec.recommender.storage import InMemoryModelStore
from tenantrec.recommender.train import TrainerConfig
from tenantrec.repositories import InMemoryRepository

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)

# Small model so tests train quickly
FAST_TRAINER_CONFIG = TrainerConfig(n_factors=4, n_epochs=60, random_state=7)

ORDER_DATE = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def _uuid(group: int, n: int) -> UUID:
    return UUID(int=(group << 64) + n)


@pytest.fixture(autouse=True)
def reset_metrics() -> Generator[None, None, None]:
    """Reset the global metrics singleton around every test."""
    metrics_service.reset()
    yield
    metrics_service.reset()


@pytest.fixture
def ids() -> SimpleNamespace:
    """Stable identifiers for the sample storefront."""
    return SimpleNamespace(
        bakery=_uuid(1, 1),
        deli=_uuid(1, 2),
        empty_shop=_uuid(1, 3),
        bread=_uuid(2, 1),
        cakes=_uuid(2, 2),
        cheese=_uuid(2, 3),
        # P1..P5 in the bakery; P5 is not available
        products=[_uuid(3, n) for n in range(1, 6)],
        deli_products=[_uuid(4, n) for n in range(1, 3)],
        shop_product=_uuid(4, 9),
        # U1..U3 shop at the bakery; U1 also shops at the deli
        users=[_uuid(5, n) for n in range(1, 4)],
        deli_user=_uuid(5, 9),
        stranger=_uuid(5, 99),
    )


def _order(n: int, tenant_id: UUID, user_id, *items) -> Order:
    return Order(
        id=_uuid(6, n),
        tenant_id=tenant_id,
        user_id=user_id,
        items=tuple(OrderItem(product_id=pid, quantity=qty) for pid, qty in items),
        order_date=ORDER_DATE,
        status="Delivered",
    )


@pytest.fixture
def repository(ids: SimpleNamespace) -> InMemoryRepository:
    """In-memory repository populated with the sample storefront.

    Purchase histories in the bakery:
        U1: P1, P2
        U2: P2, P3, P4, P5
        U3: P1, P4
    """
    p1, p2, p3, p4, p5 = ids.products
    u1, u2, u3 = ids.users
    d1, d2 = ids.deli_products

    tenants = [
        Tenant(id=ids.bakery, name="Bakery"),
        Tenant(id=ids.deli, name="Deli"),
        Tenant(id=ids.empty_shop, name="Empty Shop"),
    ]
    categories = [
        Category(id=ids.bread, tenant_id=ids.bakery, name="Bread"),
        Category(id=ids.cakes, tenant_id=ids.bakery, name="Cakes"),
        Category(id=ids.cheese, tenant_id=ids.deli, name="Cheese"),
    ]
    products = [
        Product(id=p1, tenant_id=ids.bakery, name="Sourdough", category_id=ids.bread, price=Decimal("6.50")),
        Product(id=p2, tenant_id=ids.bakery, name="Baguette", category_id=ids.bread, price=Decimal("3.00")),
        Product(id=p3, tenant_id=ids.bakery, name="Rye", category_id=ids.bread, price=Decimal("5.25")),
        Product(id=p4, tenant_id=ids.bakery, name="Cheesecake", category_id=ids.cakes, price=Decimal("24.00")),
        Product(
            id=p5,
            tenant_id=ids.bakery,
            name="Eclair",
            category_id=ids.cakes,
            price=Decimal("4.00"),
            is_available=False,
        ),
        Product(id=d1, tenant_id=ids.deli, name="Brie", category_id=ids.cheese),
        Product(id=d2, tenant_id=ids.deli, name="Gouda", category_id=ids.cheese),
        Product(id=ids.shop_product, tenant_id=ids.empty_shop, name="Mug"),
    ]
    orders = [
        _order(1, ids.bakery, u1, (p1, 2), (p2, 1)),
        _order(2, ids.bakery, u2, (p2, 1), (p3, 1)),
        _order(3, ids.bakery, u2, (p4, 1), (p5, 1)),
        _order(4, ids.bakery, u3, (p1, 1), (p4, 3)),
        # Guest order, never part of anyone's history
        _order(5, ids.bakery, None, (p3, 1)),
        _order(6, ids.deli, ids.deli_user, (d1, 1)),
        _order(7, ids.deli, u1, (d2, 1)),
    ]

    return InMemoryRepository(
        tenants=tenants, categories=categories, products=products, orders=orders
    )


@pytest.fixture
def trainer_config() -> TrainerConfig:
    return FAST_TRAINER_CONFIG


@pytest.fixture
def model_store() -> InMemoryModelStore:
    return InMemoryModelStore()


@pytest.fixture
def service(
    repository: InMemoryRepository,
    model_store: InMemoryModelStore,
    trainer_config: TrainerConfig,
) -> RecommendationService:
    """Recommendation service over the sample storefront."""
    return RecommendationService(
        order_repository=repository,
        product_repository=repository.products,
        category_repository=repository.categories,
        model_store=model_store,
        trainer_config=trainer_config,
    )
