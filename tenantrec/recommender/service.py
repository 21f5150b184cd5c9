"""Recommendation serving for all tenants.

:class:`RecommendationService` ties the pieces together: it lazily loads or
trains each tenant's model under that tenant's lock, keeps the result in the
:class:`TenantModelCache`, and answers "top N unseen products for user U in
tenant T" from the cached snapshot.

Expected "no data" situations (cold-start tenant, unknown user, failed model)
are reported as empty results, never as exceptions.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional
from uuid import UUID

import numpy as np
import pandas as pd

from tenantrec.domain import Category, Product
from tenantrec.exceptions import ModelLoadError, TrainingError
from tenantrec.metrics import metrics_service
from tenantrec.recommender.cache import (
    CachedTenantState,
    ModelSource,
    TenantModelCache,
)
from tenantrec.recommender.data_loader import (
    CATEGORY_COL,
    PRODUCT_COL,
    USER_COL,
    DataLoader,
    load_training_data,
)
from tenantrec.recommender.mappings import IdentifierMapping
from tenantrec.recommender.storage import ModelStore
from tenantrec.recommender.train import (
    TrainerConfig,
    deserialize_model,
    make_prediction_function,
    serialize_model,
    train_model,
)
from tenantrec.repositories import CategoryRepository, OrderRepository, ProductRepository

# Configure module logger
logger = logging.getLogger(__name__)

# Default parameters
DEFAULT_COUNT = 5


class RecommendationService:
    """Per-tenant recommendation server.

    Args:
        order_repository: Read access to tenant orders.
        product_repository: Read access to tenant catalogs.
        category_repository: Read access to tenant categories.
        model_store: Durable storage for serialized models.
        trainer_config: Hyper-parameters used whenever a model is trained.
        cache: Cache instance; a fresh one is created when omitted.
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        product_repository: ProductRepository,
        category_repository: CategoryRepository,
        model_store: ModelStore,
        trainer_config: Optional[TrainerConfig] = None,
        cache: Optional[TenantModelCache] = None,
    ):
        self.order_repository = order_repository
        self.product_repository = product_repository
        self.category_repository = category_repository
        self.model_store = model_store
        self.trainer_config = trainer_config or TrainerConfig()
        self.cache = cache or TenantModelCache()
        self.data_loader = DataLoader(
            order_repository, product_repository, category_repository
        )

    # Loading

    def _ensure_loaded(self, tenant_id: UUID) -> CachedTenantState:
        """Return the tenant's snapshot, loading it on first use."""
        entry = self.cache.get(tenant_id)
        if entry is not None:
            return entry

        with self.cache.lock_for(tenant_id):
            # Another request may have finished loading while we waited
            entry = self.cache.get(tenant_id)
            if entry is not None:
                return entry

            entry = self._load_tenant_state(tenant_id)
            self.cache.put(entry)
            return entry

    def _load_stored_model(self, tenant_id: UUID):
        if not self.model_store.exists(tenant_id):
            return None

        blob = self.model_store.load(tenant_id)
        if blob is None:
            return None

        try:
            return deserialize_model(blob, tenant_id)
        except ModelLoadError as e:
            logger.warning(
                "Stored model is unreadable, retraining",
                extra={"tenant_id": str(tenant_id), "error": e.message},
            )
            return None

    def _load_tenant_state(self, tenant_id: UUID) -> CachedTenantState:
        """Build a fresh snapshot: stored model if possible, else train one.

        Every failure is caught here and turned into a FAILED snapshot.
        """
        start_time = time.time()
        mapping: Optional[IdentifierMapping] = None

        try:
            mapping = self.data_loader.load_mappings_and_history(tenant_id)
            if mapping is None or mapping.is_empty:
                logger.info("Tenant has no purchase history", extra={"tenant_id": str(tenant_id)})
                return CachedTenantState.cold_start(tenant_id, mapping)

            model = self._load_stored_model(tenant_id)
            source = ModelSource.STORE

            if model is None:
                dataset = load_training_data(mapping)
                if dataset.empty:
                    return CachedTenantState.cold_start(tenant_id, mapping)

                model = train_model(dataset, self.trainer_config)
                self.model_store.save(tenant_id, serialize_model(model))
                source = ModelSource.TRAINED

            entry = CachedTenantState.ready(
                tenant_id, mapping, model, make_prediction_function(model), source
            )

        except Exception as e:
            logger.error(
                "Failed to load tenant model",
                extra={
                    "tenant_id": str(tenant_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return CachedTenantState.failed(
                tenant_id, f"{type(e).__name__}: {e}", mapping
            )

        logger.info(
            "Tenant model ready",
            extra={
                "tenant_id": str(tenant_id),
                "source": source.value,
                "load_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return entry

    # Public API

    def retrain_tenant_model(self, tenant_id: UUID) -> bool:
        """Recompute the tenant's model from its current order history.

        Runs under the tenant's lock, so it never overlaps a lazy load or
        another retrain of the same tenant. When a new model is produced it
        replaces both the stored blob and the cached snapshot. If training
        fails the previous snapshot keeps serving.

        Args:
            tenant_id: Tenant to retrain.

        Returns:
            True if a new model was trained, saved and cached; False for cold
            start or a training failure.

        Raises:
            ModelStoreError: If the model store cannot be written.
        """
        logger.info("Retraining tenant model", extra={"tenant_id": str(tenant_id)})

        with self.cache.lock_for(tenant_id):
            mapping = self.data_loader.load_mappings_and_history(tenant_id)
            dataset = load_training_data(mapping)

            if mapping is None or mapping.is_empty or dataset.empty:
                logger.info(
                    "Nothing to train for tenant, clearing stored model",
                    extra={"tenant_id": str(tenant_id)},
                )
                if self.model_store.exists(tenant_id):
                    self.model_store.delete(tenant_id)
                self.cache.put(CachedTenantState.cold_start(tenant_id, mapping))
                metrics_service.record_retrain_cold_start()
                return False

            try:
                model = train_model(dataset, self.trainer_config)
            except TrainingError as e:
                logger.error(
                    "Retraining failed, keeping previous model",
                    extra={"tenant_id": str(tenant_id), "error": e.message},
                )
                metrics_service.record_retrain(False)
                return False

            self.model_store.save(tenant_id, serialize_model(model))
            self.cache.put(
                CachedTenantState.ready(
                    tenant_id,
                    mapping,
                    model,
                    make_prediction_function(model),
                    ModelSource.TRAINED,
                )
            )

        metrics_service.record_retrain(True)
        logger.info("Retraining completed", extra={"tenant_id": str(tenant_id)})
        return True

    def get_recommendations(
        self,
        user_id: UUID,
        tenant_id: UUID,
        count: int = DEFAULT_COUNT,
    ) -> List[Product]:
        """Get the top ``count`` products the user has not bought yet.

        Args:
            user_id: Customer to recommend for.
            tenant_id: Tenant whose catalog and model to use.
            count: Maximum number of products to return.

        Returns:
            Available products ordered by descending affinity score. Empty
            for cold-start tenants, unknown users, or when the tenant's model
            could not be loaded.
        """
        start_time = time.time()
        recommendations: List[Product] = []

        try:
            if count > 0:
                recommendations = self._recommend(user_id, tenant_id, count)
        finally:
            latency_ms = (time.time() - start_time) * 1000
            metrics_service.record_inference(latency_ms, len(recommendations))

        logger.info(
            "Recommendations generated",
            extra={
                "tenant_id": str(tenant_id),
                "user_id": str(user_id),
                "count": count,
                "num_recommendations": len(recommendations),
                "total_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return recommendations

    def _recommend(self, user_id: UUID, tenant_id: UUID, count: int) -> List[Product]:
        entry = self._ensure_loaded(tenant_id)
        if not entry.is_ready:
            logger.debug(
                "No model for tenant",
                extra={"tenant_id": str(tenant_id), "state": entry.state.value},
            )
            return []

        mapping = entry.mapping
        user_code = mapping.user_to_code.get(user_id)
        if user_code is None:
            logger.debug(
                "User has no purchase history, cold start",
                extra={"tenant_id": str(tenant_id), "user_id": str(user_id)},
            )
            return []

        purchased = mapping.purchased_by(user_id)

        try:
            products = self.product_repository.get_all_by_tenant(tenant_id)
        except Exception as e:
            logger.error(
                "Failed to read tenant catalog",
                extra={"tenant_id": str(tenant_id), "error": str(e)},
                exc_info=True,
            )
            return []

        candidates: List[Product] = []
        product_codes: List[int] = []
        for product in products:
            if product.id in purchased:
                continue
            product_code = mapping.product_to_code.get(product.id)
            if product_code is None:
                continue
            candidates.append(product)
            product_codes.append(product_code)

        if not candidates:
            return []

        features = pd.DataFrame(
            {
                USER_COL: np.full(len(candidates), user_code, dtype=np.float32),
                PRODUCT_COL: np.asarray(product_codes, dtype=np.int64),
                CATEGORY_COL: np.asarray(
                    [mapping.category_code_for(c) for c in product_codes], dtype=np.int64
                ),
            }
        )

        try:
            scores = entry.predict(features)
        except Exception as e:
            logger.error(
                "Scoring failed",
                extra={"tenant_id": str(tenant_id), "user_id": str(user_id), "error": str(e)},
                exc_info=True,
            )
            return []

        # Top-N is taken before the availability filter, so fewer than
        # `count` products may come back
        order = np.argsort(-scores, kind="stable")[:count]
        top = [candidates[int(i)] for i in order]
        return [p for p in top if p.is_available]

    def get_preferred_categories(self, tenant_id: UUID, user_id: UUID) -> List[Category]:
        """Rank the tenant's categories by how much the user has bought.

        Categories are ordered by total purchased quantity (descending), then
        by name. Users without orders get all categories sorted by name.
        """
        categories = self.category_repository.get_all_by_tenant(tenant_id)
        if not categories:
            return []

        orders = self.order_repository.get_orders_for_user(user_id, tenant_id)
        if not orders:
            return sorted(categories, key=lambda c: c.name)

        quantities: Dict[UUID, int] = defaultdict(int)
        for order in orders:
            for item in order.items:
                product = self.product_repository.get_by_id(item.product_id)
                if product is not None and product.category_id is not None:
                    quantities[product.category_id] += item.quantity

        return sorted(categories, key=lambda c: (-quantities.get(c.id, 0), c.name))

    def get_tenant_state(self, tenant_id: UUID) -> Optional[CachedTenantState]:
        """Return the cached snapshot without triggering a load."""
        return self.cache.get(tenant_id)
