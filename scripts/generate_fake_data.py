"""Generate fake multi-tenant storefront data for testing and development.

Creates a directory of CSV exports (tenants, categories, products, orders,
order items) in the layout expected by
``tenantrec.repositories.load_repository_from_csv``. Every tenant gets its own
catalog and customers; customers tend to buy from a couple of favourite
categories so the affinity model has some structure to learn.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_storefront
        tables = generate_fake_storefront(num_tenants=2)
"""

import argparse
import random
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict

import pandas as pd

# Default configuration constants
DEFAULT_NUM_TENANTS = 3
DEFAULT_NUM_CATEGORIES = 4
DEFAULT_PRODUCTS_PER_CATEGORY = 6
DEFAULT_NUM_USERS = 25
DEFAULT_ORDERS_PER_USER = 4
DEFAULT_DAYS_BACK = 90
FAVOURITE_CATEGORY_PROBABILITY = 0.8


def _uuid(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def generate_fake_storefront(
    num_tenants: int = DEFAULT_NUM_TENANTS,
    num_categories: int = DEFAULT_NUM_CATEGORIES,
    products_per_category: int = DEFAULT_PRODUCTS_PER_CATEGORY,
    num_users: int = DEFAULT_NUM_USERS,
    orders_per_user: int = DEFAULT_ORDERS_PER_USER,
    seed: int = 42,
) -> Dict[str, pd.DataFrame]:
    """Generate synthetic storefront tables.

    Args:
        num_tenants: Number of independent tenants.
        num_categories: Categories per tenant.
        products_per_category: Products per category.
        num_users: Customers per tenant.
        orders_per_user: Maximum orders per customer (each places 1..N).
        seed: Random seed for reproducibility.

    Returns:
        Dictionary of DataFrames keyed by table name: tenants, categories,
        products, orders, order_items.

    Raises:
        ValueError: If any count is non-positive.
    """
    if min(num_tenants, num_categories, products_per_category, num_users, orders_per_user) <= 0:
        raise ValueError("All counts must be positive")

    rng = random.Random(seed)
    now = datetime.now()

    tenants, categories, products, orders, order_items = [], [], [], [], []

    for t in range(num_tenants):
        tenant_id = _uuid(rng)
        tenants.append({"id": tenant_id, "name": f"Bakery {t + 1}"})

        products_by_category: Dict[str, list] = {}
        for c in range(num_categories):
            category_id = _uuid(rng)
            categories.append(
                {"id": category_id, "tenant_id": tenant_id, "name": f"Category {c + 1}"}
            )
            products_by_category[category_id] = []

            for p in range(products_per_category):
                product = {
                    "id": _uuid(rng),
                    "tenant_id": tenant_id,
                    "name": f"Product {c + 1}-{p + 1}",
                    "category_id": category_id,
                    "price": f"{rng.uniform(1.0, 30.0):.2f}",
                    "is_available": "true" if rng.random() > 0.1 else "false",
                }
                products.append(product)
                products_by_category[category_id].append(product)

        category_ids = list(products_by_category)
        all_tenant_products = [p for ps in products_by_category.values() for p in ps]

        for _ in range(num_users):
            user_id = _uuid(rng)
            favourites = rng.sample(category_ids, k=min(2, len(category_ids)))

            for _ in range(rng.randint(1, orders_per_user)):
                order_id = _uuid(rng)
                order_date = now - timedelta(
                    days=rng.randrange(DEFAULT_DAYS_BACK), seconds=rng.randrange(86400)
                )
                orders.append(
                    {
                        "id": order_id,
                        "tenant_id": tenant_id,
                        "user_id": user_id,
                        "order_date": order_date.isoformat(),
                        "status": "Delivered",
                    }
                )

                for _ in range(rng.randint(1, 3)):
                    if rng.random() < FAVOURITE_CATEGORY_PROBABILITY:
                        product = rng.choice(products_by_category[rng.choice(favourites)])
                    else:
                        product = rng.choice(all_tenant_products)
                    order_items.append(
                        {
                            "order_id": order_id,
                            "product_id": product["id"],
                            "quantity": rng.randint(1, 4),
                            "unit_price": product["price"],
                        }
                    )

    return {
        "tenants": pd.DataFrame(tenants),
        "categories": pd.DataFrame(categories),
        "products": pd.DataFrame(products),
        "orders": pd.DataFrame(orders),
        "order_items": pd.DataFrame(order_items),
    }


def main() -> None:
    """Generate fake data and write it to a directory of CSV files."""
    parser = argparse.ArgumentParser(description="Generate fake multi-tenant storefront data")
    parser.add_argument("--output-dir", default="data", help="Output directory (default: data)")
    parser.add_argument("--tenants", type=int, default=DEFAULT_NUM_TENANTS)
    parser.add_argument("--users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    print(f"Generating data for {args.tenants} tenants, {args.users} users each...")

    try:
        tables = generate_fake_storefront(
            num_tenants=args.tenants, num_users=args.users, seed=args.seed
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    for name, df in tables.items():
        df.to_csv(output_dir / f"{name}.csv", index=False)

    print(f"\nData generated successfully!")
    print(f"Saved to: {output_dir}")
    print(f"\nData summary:")
    for name, df in tables.items():
        print(f"  {name}: {len(df)} rows")


if __name__ == '__main__':
    main()
