"""Tests for the recommendation service.

Exercises lazy loading, cold start, failure handling, retraining and
concurrent access against the sample storefront from ``conftest.py``.
"""

import dataclasses
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from typing import Dict, List
from uuid import UUID

import numpy as np
import pandas as pd
import pytest

from tenantrec.domain import Order, OrderItem
from tenantrec.exceptions import ModelStoreError, TrainingError
from tenantrec.metrics import metrics_service
from tenantrec.recommender import service as service_module
from tenantrec.recommender.cache import ModelSource, TenantState
from tenantrec.recommender.data_loader import PRODUCT_COL
from tenantrec.recommender.service import RecommendationService
from tenantrec.recommender.storage import InMemoryModelStore
from tenantrec.recommender.train import TrainerConfig
from tenantrec.repositories import InMemoryRepository


class FailingSaveStore(InMemoryModelStore):
    def save(self, tenant_id: UUID, blob: bytes) -> None:
        raise ModelStoreError("save", tenant_id, OSError("disk full"))


def _ids(products) -> List[UUID]:
    return [p.id for p in products]


def _make_service(repository, model_store, trainer_config) -> RecommendationService:
    return RecommendationService(
        order_repository=repository,
        product_repository=repository.products,
        category_repository=repository.categories,
        model_store=model_store,
        trainer_config=trainer_config,
    )


def _fix_scores(service: RecommendationService, tenant_id: UUID, scores: Dict[UUID, float]) -> None:
    """Load the tenant, then swap in a scorer that returns fixed per-product scores."""
    service.get_recommendations(UUID(int=0), tenant_id)
    entry = service.get_tenant_state(tenant_id)
    mapping = entry.mapping

    def predict(features: pd.DataFrame) -> np.ndarray:
        return np.array(
            [scores.get(mapping.code_to_product[int(code)], 0.0) for code in features[PRODUCT_COL]]
        )

    service.cache.put(dataclasses.replace(entry, predict=predict))


@pytest.fixture
def count_training(monkeypatch: pytest.MonkeyPatch) -> List[int]:
    """Count calls to train_model made by the service."""
    calls: List[int] = []
    original = service_module.train_model

    def counting_train_model(dataset, config=None):
        calls.append(len(dataset))
        return original(dataset, config)

    monkeypatch.setattr(service_module, "train_model", counting_train_model)
    return calls


@pytest.fixture
def broken_training(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_train_model(dataset, config=None):
        raise TrainingError("Model fit failed: diverged")

    monkeypatch.setattr(service_module, "train_model", failing_train_model)


# Serving


def test_recommendations_exclude_purchased_products(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    mapping = service.data_loader.load_mappings_and_history(ids.bakery)

    for user_id in ids.users:
        recommended = set(_ids(service.get_recommendations(user_id, ids.bakery)))
        assert not recommended & mapping.purchased_by(user_id)


def test_recommendations_are_available_unseen_products(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    p1, p2, p3, p4, p5 = ids.products

    assert set(_ids(service.get_recommendations(ids.users[0], ids.bakery))) == {p3, p4}
    assert _ids(service.get_recommendations(ids.users[1], ids.bakery)) == [p1]
    assert set(_ids(service.get_recommendations(ids.users[2], ids.bakery))) == {p2, p3}


def test_recommendations_respect_count(service: RecommendationService, ids: SimpleNamespace) -> None:
    p1, p2, p3, p4, p5 = ids.products
    _fix_scores(service, ids.bakery, {p2: 2.0, p3: 1.0})

    assert _ids(service.get_recommendations(ids.users[2], ids.bakery, count=1)) == [p2]
    assert _ids(service.get_recommendations(ids.users[2], ids.bakery, count=5)) == [p2, p3]


def test_unavailable_top_product_is_dropped_after_truncation(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    """The top `count` are picked first, so an unavailable winner leaves a gap."""
    p1, p2, p3, p4, p5 = ids.products
    _fix_scores(service, ids.bakery, {p5: 10.0, p4: 2.0, p3: 1.0})

    assert service.get_recommendations(ids.users[0], ids.bakery, count=1) == []
    assert _ids(service.get_recommendations(ids.users[0], ids.bakery, count=2)) == [p4]
    assert _ids(service.get_recommendations(ids.users[0], ids.bakery, count=3)) == [p4, p3]


@pytest.mark.parametrize("count", [0, -3])
def test_non_positive_count_returns_empty(
    service: RecommendationService, ids: SimpleNamespace, count: int
) -> None:
    assert service.get_recommendations(ids.users[0], ids.bakery, count=count) == []


def test_recommendations_stay_inside_tenant(service: RecommendationService, ids: SimpleNamespace) -> None:
    """U1 shops at both tenants but only sees each tenant's own products."""
    bakery = set(_ids(service.get_recommendations(ids.users[0], ids.bakery)))
    deli = _ids(service.get_recommendations(ids.users[0], ids.deli))

    assert bakery <= set(ids.products)
    assert deli == [ids.deli_products[0]]


def test_unknown_user_gets_nothing(service: RecommendationService, ids: SimpleNamespace) -> None:
    assert service.get_recommendations(ids.stranger, ids.bakery) == []
    assert service.get_tenant_state(ids.bakery).state is TenantState.READY


def test_cold_start_tenant_gets_nothing(
    service: RecommendationService, model_store: InMemoryModelStore, ids: SimpleNamespace
) -> None:
    assert service.get_recommendations(ids.users[0], ids.empty_shop) == []

    assert service.get_tenant_state(ids.empty_shop).state is TenantState.COLD_START
    assert not model_store.exists(ids.empty_shop)


def test_unknown_tenant_is_cold_start(service: RecommendationService, ids: SimpleNamespace) -> None:
    assert service.get_recommendations(ids.users[0], ids.stranger) == []
    assert service.get_tenant_state(ids.stranger).state is TenantState.COLD_START


def test_tenant_state_not_loaded_until_first_request(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    assert service.get_tenant_state(ids.bakery) is None

    service.get_recommendations(ids.users[0], ids.bakery)

    assert service.get_tenant_state(ids.bakery).is_ready


def test_one_user_one_product_tenant(
    repository: InMemoryRepository, service: RecommendationService, ids: SimpleNamespace
) -> None:
    """The only customer already owns the only product."""
    repository.add_order(
        Order(
            id=ids.stranger,
            tenant_id=ids.empty_shop,
            user_id=ids.stranger,
            items=(OrderItem(product_id=ids.shop_product),),
        )
    )

    assert service.get_recommendations(ids.stranger, ids.empty_shop) == []
    assert service.get_tenant_state(ids.empty_shop).is_ready


# Loading


def test_first_request_trains_and_saves(
    service: RecommendationService,
    model_store: InMemoryModelStore,
    ids: SimpleNamespace,
    count_training: List[int],
) -> None:
    service.get_recommendations(ids.users[0], ids.bakery)
    service.get_recommendations(ids.users[1], ids.bakery)

    assert count_training == [15]
    assert model_store.exists(ids.bakery)
    assert service.get_tenant_state(ids.bakery).source is ModelSource.TRAINED


def test_stored_model_is_reused(
    repository: InMemoryRepository,
    model_store: InMemoryModelStore,
    trainer_config: TrainerConfig,
    ids: SimpleNamespace,
    count_training: List[int],
) -> None:
    """A restarted process loads the stored model and ranks identically."""
    first = _make_service(repository, model_store, trainer_config)
    before = first.get_recommendations(ids.users[2], ids.bakery)

    restarted = _make_service(repository, model_store, trainer_config)
    after = restarted.get_recommendations(ids.users[2], ids.bakery)

    assert _ids(after) == _ids(before)
    assert len(count_training) == 1
    assert restarted.get_tenant_state(ids.bakery).source is ModelSource.STORE


def test_corrupt_stored_model_is_retrained(
    service: RecommendationService, model_store: InMemoryModelStore, ids: SimpleNamespace
) -> None:
    model_store.save(ids.bakery, b"corrupt")

    assert service.get_recommendations(ids.users[1], ids.bakery) == [
        service.product_repository.get_by_id(ids.products[0])
    ]
    assert service.get_tenant_state(ids.bakery).source is ModelSource.TRAINED
    assert model_store.load(ids.bakery) != b"corrupt"


def test_training_failure_marks_tenant_failed(
    service: RecommendationService, ids: SimpleNamespace, broken_training: None
) -> None:
    assert service.get_recommendations(ids.users[0], ids.bakery) == []

    entry = service.get_tenant_state(ids.bakery)
    assert entry.state is TenantState.FAILED
    assert "diverged" in entry.reason


def test_store_failure_marks_tenant_failed(
    repository: InMemoryRepository, trainer_config: TrainerConfig, ids: SimpleNamespace
) -> None:
    service = _make_service(repository, FailingSaveStore(), trainer_config)

    assert service.get_recommendations(ids.users[0], ids.bakery) == []
    assert service.get_tenant_state(ids.bakery).state is TenantState.FAILED


def test_failed_tenant_does_not_affect_others(
    service: RecommendationService,
    ids: SimpleNamespace,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original = service_module.train_model
    failing_rows = 15  # bakery training set size

    def selective_train_model(dataset, config=None):
        if len(dataset) == failing_rows:
            raise TrainingError("Model fit failed: diverged")
        return original(dataset, config)

    monkeypatch.setattr(service_module, "train_model", selective_train_model)

    assert service.get_recommendations(ids.users[0], ids.bakery) == []
    assert _ids(service.get_recommendations(ids.users[0], ids.deli)) == [ids.deli_products[0]]


def test_catalog_read_failure_returns_empty(
    service: RecommendationService, ids: SimpleNamespace, monkeypatch: pytest.MonkeyPatch
) -> None:
    service.get_recommendations(ids.users[0], ids.bakery)

    def broken_catalog(tenant_id):
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(service.product_repository, "get_all_by_tenant", broken_catalog)

    assert service.get_recommendations(ids.users[0], ids.bakery) == []


# Retraining


def test_retrain_replaces_model(
    service: RecommendationService, model_store: InMemoryModelStore, ids: SimpleNamespace
) -> None:
    service.get_recommendations(ids.users[0], ids.bakery)
    before = service.get_tenant_state(ids.bakery)

    assert service.retrain_tenant_model(ids.bakery) is True

    after = service.get_tenant_state(ids.bakery)
    assert after is not before
    assert after.is_ready
    assert after.source is ModelSource.TRAINED
    assert model_store.exists(ids.bakery)


def test_retrain_ranking_is_stable(service: RecommendationService, ids: SimpleNamespace) -> None:
    before = _ids(service.get_recommendations(ids.users[2], ids.bakery))
    service.retrain_tenant_model(ids.bakery)
    after = _ids(service.get_recommendations(ids.users[2], ids.bakery))

    assert before == after


def test_retrain_picks_up_new_orders(
    service: RecommendationService, repository: InMemoryRepository, ids: SimpleNamespace
) -> None:
    p1, p2, p3, p4, p5 = ids.products
    service.get_recommendations(ids.users[0], ids.bakery)

    repository.add_order(
        Order(
            id=ids.stranger,
            tenant_id=ids.bakery,
            user_id=ids.users[0],
            items=(OrderItem(product_id=p3),),
        )
    )
    service.retrain_tenant_model(ids.bakery)

    assert _ids(service.get_recommendations(ids.users[0], ids.bakery)) == [p4]


def test_retrain_failure_keeps_previous_model(
    service: RecommendationService,
    ids: SimpleNamespace,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    expected = _ids(service.get_recommendations(ids.users[2], ids.bakery))
    previous = service.get_tenant_state(ids.bakery)

    def failing_train_model(dataset, config=None):
        raise TrainingError("Model fit failed: diverged")

    monkeypatch.setattr(service_module, "train_model", failing_train_model)

    assert service.retrain_tenant_model(ids.bakery) is False
    assert service.get_tenant_state(ids.bakery) is previous
    assert _ids(service.get_recommendations(ids.users[2], ids.bakery)) == expected
    assert metrics_service.get_metrics()["retrain_failure_count"] == 1


def test_retrain_recovers_failed_tenant(
    service: RecommendationService, ids: SimpleNamespace, monkeypatch: pytest.MonkeyPatch
) -> None:
    original = service_module.train_model

    def failing_train_model(dataset, config=None):
        raise TrainingError("Model fit failed: diverged")

    monkeypatch.setattr(service_module, "train_model", failing_train_model)
    service.get_recommendations(ids.users[0], ids.bakery)
    assert service.get_tenant_state(ids.bakery).state is TenantState.FAILED

    monkeypatch.setattr(service_module, "train_model", original)

    assert service.retrain_tenant_model(ids.bakery) is True
    assert len(service.get_recommendations(ids.users[0], ids.bakery)) == 2


def test_retrain_cold_start_clears_stored_model(
    service: RecommendationService, model_store: InMemoryModelStore, ids: SimpleNamespace
) -> None:
    model_store.save(ids.empty_shop, b"stale model")

    assert service.retrain_tenant_model(ids.empty_shop) is False

    assert not model_store.exists(ids.empty_shop)
    assert service.get_tenant_state(ids.empty_shop).state is TenantState.COLD_START


def test_retrain_propagates_store_errors(
    repository: InMemoryRepository, trainer_config: TrainerConfig, ids: SimpleNamespace
) -> None:
    service = _make_service(repository, FailingSaveStore(), trainer_config)

    with pytest.raises(ModelStoreError):
        service.retrain_tenant_model(ids.bakery)


def test_retrain_with_invalid_hyper_parameters_fails(
    repository: InMemoryRepository, model_store: InMemoryModelStore, ids: SimpleNamespace
) -> None:
    service = _make_service(repository, model_store, TrainerConfig(n_epochs=0))

    assert service.retrain_tenant_model(ids.bakery) is False

    assert not model_store.exists(ids.bakery)
    assert metrics_service.get_metrics()["retrain_failure_count"] == 1


def test_retrain_records_metrics(service: RecommendationService, ids: SimpleNamespace) -> None:
    service.retrain_tenant_model(ids.bakery)
    service.retrain_tenant_model(ids.empty_shop)

    metrics = metrics_service.get_metrics()
    assert metrics["retrain_success_count"] == 1
    assert metrics["retrain_failure_count"] == 0
    assert metrics["retrain_cold_start_count"] == 1


# Concurrency


def test_concurrent_first_requests_train_once_per_tenant(
    service: RecommendationService, ids: SimpleNamespace, count_training: List[int]
) -> None:
    requests = [(user, ids.bakery) for user in ids.users] * 4
    requests += [(ids.deli_user, ids.deli), (ids.users[0], ids.deli)] * 4

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda r: service.get_recommendations(*r), requests))

    assert len(count_training) == 2
    for (user_id, tenant_id), products in zip(requests, results):
        assert all(p.tenant_id == tenant_id for p in products)
    assert metrics_service.get_metrics()["inference_count"] == len(requests)


def test_reads_during_retrain_see_a_complete_model(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    """Readers never observe a half-swapped snapshot."""
    p1, p2, p3, p4, p5 = ids.products
    service.get_recommendations(ids.users[0], ids.bakery)
    stop = threading.Event()
    errors: List[str] = []

    def read_loop():
        while not stop.is_set():
            recommended = set(_ids(service.get_recommendations(ids.users[0], ids.bakery)))
            if recommended != {p3, p4}:
                errors.append(f"unexpected recommendations {recommended}")

    readers = [threading.Thread(target=read_loop) for _ in range(4)]
    for reader in readers:
        reader.start()
    try:
        for _ in range(3):
            assert service.retrain_tenant_model(ids.bakery)
    finally:
        stop.set()
        for reader in readers:
            reader.join(timeout=10)

    assert errors == []


# Preferred categories


def test_preferred_categories_ordered_by_quantity(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    """U3 bought one loaf of bread and three cakes."""
    categories = service.get_preferred_categories(ids.bakery, ids.users[2])

    assert [c.name for c in categories] == ["Cakes", "Bread"]


def test_preferred_categories_for_new_customer(service: RecommendationService, ids: SimpleNamespace) -> None:
    categories = service.get_preferred_categories(ids.bakery, ids.stranger)

    assert [c.name for c in categories] == ["Bread", "Cakes"]


def test_preferred_categories_tenant_without_categories(
    service: RecommendationService, ids: SimpleNamespace
) -> None:
    assert service.get_preferred_categories(ids.empty_shop, ids.users[0]) == []
