"""CLI script for getting product recommendations.

Useful for testing and evaluation. Loads a CSV export, lazily loads (or
trains) the tenant's model, and prints the top products for a customer.
"""

import argparse
import logging
import sys
from pathlib import Path
from uuid import UUID

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tenantrec.config import load_settings
from tenantrec.recommender.service import RecommendationService
from tenantrec.recommender.storage import LocalFileModelStore
from tenantrec.recommender.train import TrainerConfig
from tenantrec.repositories import load_repository_from_csv

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get product recommendations for a tenant's customer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/predict_cli.py data <tenant-id> <user-id>
  python scripts/predict_cli.py data <tenant-id> <user-id> --count 3
  python scripts/predict_cli.py data <tenant-id> <user-id> --categories
        """
    )
    parser.add_argument("data_dir", help="Directory with the CSV export")
    parser.add_argument("tenant_id", type=UUID, help="Tenant id")
    parser.add_argument("user_id", type=UUID, help="Customer id")
    parser.add_argument(
        "--count",
        type=int,
        default=5,
        help="Number of recommendations to return (default: 5)"
    )
    parser.add_argument(
        "--model-dir",
        type=str,
        default="models",
        help="Directory containing model files (default: models)"
    )
    parser.add_argument(
        "--categories",
        action="store_true",
        help="Also show the customer's preferred categories"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        repository = load_repository_from_csv(args.data_dir)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    service = RecommendationService(
        order_repository=repository,
        product_repository=repository.products,
        category_repository=repository.categories,
        model_store=LocalFileModelStore(args.model_dir),
        trainer_config=TrainerConfig.from_settings(load_settings()),
    )

    products = service.get_recommendations(args.user_id, args.tenant_id, args.count)
    state = service.get_tenant_state(args.tenant_id)

    print(f"\nRecommendations for user {args.user_id} (tenant {args.tenant_id}):")
    print(f"  Model state: {state.state.value if state else 'unloaded'}")
    if not products:
        print("  No recommendations available")
    for rank, product in enumerate(products, start=1):
        print(f"  {rank}. {product.name} ({product.id})")

    if args.categories:
        categories = service.get_preferred_categories(args.tenant_id, args.user_id)
        print(f"\nPreferred categories:")
        for category in categories:
            print(f"  - {category.name}")

    print()


if __name__ == "__main__":
    main()
