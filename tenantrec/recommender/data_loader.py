"""Purchase history loading and training set generation.

Turns a tenant's orders into an :class:`IdentifierMapping` and then into a
labelled pandas DataFrame ready for the training pipeline. Only the tenant's
own orders and catalog are ever read, so no other tenant's data can leak into
its training set.
"""

import logging
from typing import Dict, List, Optional
from uuid import UUID

import numpy as np
import pandas as pd

from tenantrec.domain import Product
from tenantrec.recommender.mappings import IdentifierMapping
from tenantrec.repositories import CategoryRepository, OrderRepository, ProductRepository

# Configure module logger
logger = logging.getLogger(__name__)

# Training set columns
USER_COL = "user_id"
PRODUCT_COL = "product_id"
CATEGORY_COL = "category_id"
LABEL_COL = "label"
FEATURE_COLUMNS = [USER_COL, PRODUCT_COL, CATEGORY_COL]
TRAINING_COLUMNS = FEATURE_COLUMNS + [LABEL_COL]


def empty_training_frame() -> pd.DataFrame:
    """Return a zero-row training frame with the expected columns and dtypes."""
    return pd.DataFrame(
        {
            USER_COL: pd.Series(dtype=np.float32),
            PRODUCT_COL: pd.Series(dtype=np.int64),
            CATEGORY_COL: pd.Series(dtype=np.int64),
            LABEL_COL: pd.Series(dtype=bool),
        }
    )


class DataLoader:
    """Reads one tenant's orders and catalog into dense training inputs."""

    def __init__(
        self,
        order_repository: OrderRepository,
        product_repository: ProductRepository,
        category_repository: CategoryRepository,
    ):
        self.order_repository = order_repository
        self.product_repository = product_repository
        self.category_repository = category_repository

    def load_mappings_and_history(self, tenant_id: UUID) -> Optional[IdentifierMapping]:
        """Build the identifier mapping and purchase history for a tenant.

        Users are coded in order of first appearance across the tenant's
        orders, products in order of first purchase. A product whose category
        does not belong to the tenant's catalog gets the "no category" code.

        Args:
            tenant_id: Tenant whose history to load.

        Returns:
            The populated mapping, or None when the tenant has no purchasing
            users or no purchased products (cold start).
        """
        orders = [
            o for o in self.order_repository.get_orders_by_tenant(tenant_id)
            if o.user_id is not None and o.tenant_id == tenant_id
        ]
        if not orders:
            logger.info("No customer orders for tenant", extra={"tenant_id": str(tenant_id)})
            return None

        catalog: Dict[UUID, Product] = {
            p.id: p for p in self.product_repository.get_all_by_tenant(tenant_id)
        }
        tenant_categories = {
            c.id for c in self.category_repository.get_all_by_tenant(tenant_id)
        }

        mapping = IdentifierMapping()

        for order in orders:
            mapping.add_user(order.user_id)

            for item in order.items:
                product = catalog.get(item.product_id)
                if product is None:
                    # Deleted product or foreign id; not part of this catalog
                    continue

                category_id = (
                    product.category_id
                    if product.category_id in tenant_categories
                    else None
                )
                mapping.add_product(product.id, category_id)
                mapping.record_purchase(order.user_id, product.id)

        if mapping.is_empty:
            logger.info(
                "Tenant orders reference no catalog products",
                extra={"tenant_id": str(tenant_id), "num_orders": len(orders)},
            )
            return None

        logger.info(
            "Loaded mappings and history",
            extra={
                "tenant_id": str(tenant_id),
                "num_users": mapping.num_users,
                "num_products": mapping.num_products,
                "num_categories": len(mapping.code_to_category),
            },
        )
        return mapping


def load_training_data(mapping: Optional[IdentifierMapping]) -> pd.DataFrame:
    """Generate the labelled training set from a mapping.

    Every (user, purchased product) pair is a positive example. Every other
    coded product becomes a negative example for that user, so the set grows
    with users x products.

    Args:
        mapping: Mapping produced by :meth:`DataLoader.load_mappings_and_history`.

    Returns:
        DataFrame with columns user_id, product_id, category_id, label. Empty
        (but well-formed) when there is nothing to train on.
    """
    if mapping is None or not mapping.purchase_history or not mapping.code_to_product:
        return empty_training_frame()

    all_product_codes = list(mapping.code_to_product.keys())
    rows: List[tuple] = []

    for user_id, purchased in mapping.purchase_history.items():
        user_code = mapping.user_to_code.get(user_id)
        if user_code is None:
            continue

        purchased_codes = {
            mapping.product_to_code[pid] for pid in purchased
            if pid in mapping.product_to_code
        }

        for product_code in all_product_codes:
            rows.append(
                (
                    user_code,
                    product_code,
                    mapping.category_code_for(product_code),
                    product_code in purchased_codes,
                )
            )

    if not rows:
        return empty_training_frame()

    df = pd.DataFrame(rows, columns=TRAINING_COLUMNS)
    df = df.astype(
        {USER_COL: np.float32, PRODUCT_COL: np.int64, CATEGORY_COL: np.int64, LABEL_COL: bool}
    )

    logger.info(
        "Generated training data",
        extra={
            "num_rows": len(df),
            "num_positive": int(df[LABEL_COL].sum()),
            "num_negative": int((~df[LABEL_COL]).sum()),
        },
    )
    return df
