"""Read-only repository interfaces consumed by the recommender.

The storefront's relational store is an external collaborator. This module
declares the narrow interfaces the recommendation subsystem needs from it and
ships two implementations: an in-memory repository (tests, demos) and a
loader that builds one from CSV exports using pandas.
"""

import logging
import threading
from collections import defaultdict
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Set
from uuid import UUID

import pandas as pd

from tenantrec.domain import Category, Order, OrderItem, Product, Tenant

# Configure module logger
logger = logging.getLogger(__name__)

# Order statuses that no longer count as "active"
CLOSED_ORDER_STATUSES = frozenset({"Delivered", "Cancelled", "Completed"})

# CSV export filenames
TENANTS_FILENAME = "tenants.csv"
CATEGORIES_FILENAME = "categories.csv"
PRODUCTS_FILENAME = "products.csv"
ORDERS_FILENAME = "orders.csv"
ORDER_ITEMS_FILENAME = "order_items.csv"


class OrderRepository(Protocol):
    def get_orders_by_tenant(self, tenant_id: UUID) -> List[Order]: ...

    def get_orders_for_user(self, user_id: UUID, tenant_id: UUID) -> List[Order]: ...

    def has_active_order(self, product_id: UUID) -> bool: ...


class ProductRepository(Protocol):
    def get_all_by_tenant(self, tenant_id: UUID) -> List[Product]: ...

    def get_by_id(self, product_id: UUID) -> Optional[Product]: ...


class CategoryRepository(Protocol):
    def get_all_by_tenant(self, tenant_id: UUID) -> List[Category]: ...

    def get_by_id(self, category_id: UUID) -> Optional[Category]: ...


class TenantRepository(Protocol):
    def get_all(self) -> List[Tenant]: ...

    def get_by_id(self, tenant_id: UUID) -> Optional[Tenant]: ...


class _ProductView:
    def __init__(self, store: "InMemoryRepository"):
        self._store = store

    def get_all_by_tenant(self, tenant_id: UUID) -> List[Product]:
        return self._store.get_products_by_tenant(tenant_id)

    def get_by_id(self, product_id: UUID) -> Optional[Product]:
        return self._store.get_product(product_id)


class _CategoryView:
    def __init__(self, store: "InMemoryRepository"):
        self._store = store

    def get_all_by_tenant(self, tenant_id: UUID) -> List[Category]:
        return self._store.get_categories_by_tenant(tenant_id)

    def get_by_id(self, category_id: UUID) -> Optional[Category]:
        return self._store.get_category(category_id)


class InMemoryRepository:
    """Thread-safe in-memory store implementing every repository interface.

    Products and categories share ``get_all_by_tenant``/``get_by_id`` names in
    their interfaces, so they are exposed through the :attr:`products` and
    :attr:`categories` views. The store itself satisfies
    :class:`OrderRepository` and :class:`TenantRepository`.
    """

    def __init__(
        self,
        tenants: Iterable[Tenant] = (),
        categories: Iterable[Category] = (),
        products: Iterable[Product] = (),
        orders: Iterable[Order] = (),
    ):
        self._lock = threading.Lock()
        self._tenants: Dict[UUID, Tenant] = {}
        self._categories: Dict[UUID, Category] = {}
        self._products: Dict[UUID, Product] = {}
        self._orders: Dict[UUID, Order] = {}

        for tenant in tenants:
            self.add_tenant(tenant)
        for category in categories:
            self.add_category(category)
        for product in products:
            self.add_product(product)
        for order in orders:
            self.add_order(order)

        self.products: ProductRepository = _ProductView(self)
        self.categories: CategoryRepository = _CategoryView(self)

    # Writes

    def add_tenant(self, tenant: Tenant) -> None:
        with self._lock:
            self._tenants[tenant.id] = tenant

    def add_category(self, category: Category) -> None:
        with self._lock:
            self._categories[category.id] = category

    def add_product(self, product: Product) -> None:
        with self._lock:
            self._products[product.id] = product

    def add_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order

    # TenantRepository

    def get_all(self) -> List[Tenant]:
        with self._lock:
            return list(self._tenants.values())

    def get_by_id(self, tenant_id: UUID) -> Optional[Tenant]:
        with self._lock:
            return self._tenants.get(tenant_id)

    # OrderRepository

    def get_orders_by_tenant(self, tenant_id: UUID) -> List[Order]:
        with self._lock:
            return [o for o in self._orders.values() if o.tenant_id == tenant_id]

    def get_orders_for_user(self, user_id: UUID, tenant_id: UUID) -> List[Order]:
        with self._lock:
            return [
                o
                for o in self._orders.values()
                if o.tenant_id == tenant_id and o.user_id == user_id
            ]

    def has_active_order(self, product_id: UUID) -> bool:
        with self._lock:
            return any(
                o.status not in CLOSED_ORDER_STATUSES
                and any(item.product_id == product_id for item in o.items)
                for o in self._orders.values()
            )

    # Catalog lookups backing the product/category views

    def get_products_by_tenant(self, tenant_id: UUID) -> List[Product]:
        with self._lock:
            return [p for p in self._products.values() if p.tenant_id == tenant_id]

    def get_product(self, product_id: UUID) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def get_categories_by_tenant(self, tenant_id: UUID) -> List[Category]:
        with self._lock:
            return [c for c in self._categories.values() if c.tenant_id == tenant_id]

    def get_category(self, category_id: UUID) -> Optional[Category]:
        with self._lock:
            return self._categories.get(category_id)


def _read_csv(directory: Path, filename: str, required_columns: Set[str]) -> pd.DataFrame:
    """Read one export file and validate its columns.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If required columns are missing.
    """
    csv_path = directory / filename
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)

    if not required_columns.issubset(df.columns):
        missing = required_columns - set(df.columns)
        raise ValueError(f"{filename} missing required columns: {sorted(missing)}")

    logger.info(f"Loaded {len(df)} rows from {csv_path}")
    return df


def _optional_uuid(value: str) -> Optional[UUID]:
    value = value.strip()
    return UUID(value) if value else None


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "")


def load_repository_from_csv(data_dir: str) -> InMemoryRepository:
    """Build an in-memory repository from a directory of CSV exports.

    Expects ``tenants.csv`` (id, name), ``categories.csv`` (id, tenant_id,
    name), ``products.csv`` (id, tenant_id, name, category_id, and optionally
    price, is_available), ``orders.csv`` (id, tenant_id, user_id, and
    optionally order_date, status) and ``order_items.csv`` (order_id,
    product_id, and optionally quantity, unit_price).

    Args:
        data_dir: Directory containing the export files.

    Returns:
        Repository populated with every row of the export.

    Raises:
        FileNotFoundError: If the directory or a required file is missing.
        ValueError: If a file is missing required columns.
    """
    directory = Path(data_dir)
    if not directory.is_dir():
        raise FileNotFoundError(f"Data directory does not exist: {data_dir}")

    tenants_df = _read_csv(directory, TENANTS_FILENAME, {"id", "name"})
    categories_df = _read_csv(directory, CATEGORIES_FILENAME, {"id", "tenant_id", "name"})
    products_df = _read_csv(
        directory, PRODUCTS_FILENAME, {"id", "tenant_id", "name", "category_id"}
    )
    orders_df = _read_csv(directory, ORDERS_FILENAME, {"id", "tenant_id", "user_id"})
    items_df = _read_csv(directory, ORDER_ITEMS_FILENAME, {"order_id", "product_id"})

    tenants = [Tenant(id=UUID(row.id), name=row.name) for row in tenants_df.itertuples()]
    categories = [
        Category(id=UUID(row.id), tenant_id=UUID(row.tenant_id), name=row.name)
        for row in categories_df.itertuples()
    ]

    products = []
    for row in products_df.to_dict("records"):
        products.append(
            Product(
                id=UUID(row["id"]),
                tenant_id=UUID(row["tenant_id"]),
                name=row["name"],
                category_id=_optional_uuid(row["category_id"]),
                price=Decimal(row.get("price") or "0"),
                is_available=_parse_bool(row.get("is_available", "true") or "true"),
            )
        )

    # Group line items by order before building the orders
    items_by_order: Dict[UUID, List[OrderItem]] = defaultdict(list)
    for row in items_df.to_dict("records"):
        items_by_order[UUID(row["order_id"])].append(
            OrderItem(
                product_id=UUID(row["product_id"]),
                quantity=int(row.get("quantity") or 1),
                unit_price=Decimal(row.get("unit_price") or "0"),
            )
        )

    orders = []
    for row in orders_df.to_dict("records"):
        order_id = UUID(row["id"])
        kwargs = {}
        if row.get("order_date"):
            kwargs["order_date"] = pd.Timestamp(row["order_date"]).to_pydatetime()
        if row.get("status"):
            kwargs["status"] = row["status"]
        orders.append(
            Order(
                id=order_id,
                tenant_id=UUID(row["tenant_id"]),
                user_id=_optional_uuid(row["user_id"]),
                items=tuple(items_by_order.get(order_id, [])),
                **kwargs,
            )
        )

    logger.info(
        "Repository loaded from CSV",
        extra={
            "data_dir": str(directory),
            "num_tenants": len(tenants),
            "num_products": len(products),
            "num_orders": len(orders),
        },
    )

    return InMemoryRepository(
        tenants=tenants, categories=categories, products=products, orders=orders
    )
