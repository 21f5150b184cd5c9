"""Command-line interface for retraining tenant models.

Loads a CSV export of the storefront, retrains every tenant (or a single one)
and writes the models to the configured model store.

Example:
    Retrain every tenant in a data directory:
        $ python scripts/train_model.py data

    Retrain one tenant into a custom model directory:
        $ python scripts/train_model.py data \\
            --tenant 1b4e28ba-2fa1-11d2-883f-0016d3cca427 \\
            --model-dir models/production
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from uuid import UUID

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tenantrec.config import load_settings
from tenantrec.recommender.scheduler import retrain_all_tenant_models
from tenantrec.recommender.service import RecommendationService
from tenantrec.recommender.storage import LocalFileModelStore, create_model_store
from tenantrec.recommender.train import TrainerConfig
from tenantrec.repositories import load_repository_from_csv


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the script.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Retrain per-tenant recommendation models from a CSV export.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("data_dir", type=str, help="Directory with the CSV export")
    parser.add_argument(
        "--tenant", type=UUID, default=None, help="Only retrain this tenant id"
    )
    parser.add_argument(
        "--model-dir",
        type=str,
        default=None,
        help="Write models to this local directory instead of the configured store",
    )
    parser.add_argument("--n-factors", type=int, default=None)
    parser.add_argument("--n-epochs", type=int, default=None)
    parser.add_argument("--random-state", type=int, default=None)
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def main() -> int:
    """Main entry point for command-line execution."""
    args = parse_arguments()
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    settings = load_settings()
    overrides = {
        "fm_factors": args.n_factors,
        "fm_epochs": args.n_epochs,
        "random_state": args.random_state,
    }
    settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})

    try:
        repository = load_repository_from_csv(args.data_dir)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Failed to load data: {e}")
        return 1

    store = LocalFileModelStore(args.model_dir) if args.model_dir else create_model_store(settings)
    service = RecommendationService(
        order_repository=repository,
        product_repository=repository.products,
        category_repository=repository.categories,
        model_store=store,
        trainer_config=TrainerConfig.from_settings(settings),
    )

    if args.tenant is not None:
        if repository.get_by_id(args.tenant) is None:
            logger.error(f"Tenant {args.tenant} not found in {args.data_dir}")
            return 1
        results = {args.tenant: service.retrain_tenant_model(args.tenant)}
    else:
        results = retrain_all_tenant_models(repository, service)

    print("\nRetraining results:")
    for tenant_id, success in results.items():
        print(f"  {tenant_id}: {'trained' if success else 'skipped/failed'}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
