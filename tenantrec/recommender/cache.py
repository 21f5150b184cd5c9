"""Per-tenant model cache and lock registry.

Each tenant has at most one cached :class:`CachedTenantState`. Entries are
immutable snapshots: loads and retrains build a complete new snapshot and
swap it in with a single dict assignment while holding the tenant's lock, so
scoring code can read an entry without locking and never sees a half-built
state.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from uuid import UUID

from sklearn.pipeline import Pipeline

from tenantrec.recommender.mappings import IdentifierMapping
from tenantrec.recommender.train import PredictionFunction

# Configure module logger
logger = logging.getLogger(__name__)


class TenantState(str, Enum):
    """Lifecycle state of a tenant's model."""

    UNLOADED = "unloaded"
    READY = "ready"
    COLD_START = "cold_start"
    FAILED = "failed"


class ModelSource(str, Enum):
    STORE = "store"
    TRAINED = "trained"


@dataclass(frozen=True)
class CachedTenantState:
    """Snapshot of everything needed to serve one tenant.

    Only ``READY`` snapshots carry a model and prediction function. A
    ``FAILED`` snapshot carries the reason it failed.
    """

    tenant_id: UUID
    state: TenantState
    mapping: Optional[IdentifierMapping] = None
    model: Optional[Pipeline] = None
    predict: Optional[PredictionFunction] = None
    source: Optional[ModelSource] = None
    reason: Optional[str] = None
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def ready(
        cls,
        tenant_id: UUID,
        mapping: IdentifierMapping,
        model: Pipeline,
        predict: PredictionFunction,
        source: ModelSource,
    ) -> "CachedTenantState":
        return cls(
            tenant_id=tenant_id,
            state=TenantState.READY,
            mapping=mapping,
            model=model,
            predict=predict,
            source=source,
        )

    @classmethod
    def cold_start(
        cls, tenant_id: UUID, mapping: Optional[IdentifierMapping] = None
    ) -> "CachedTenantState":
        return cls(tenant_id=tenant_id, state=TenantState.COLD_START, mapping=mapping)

    @classmethod
    def failed(
        cls,
        tenant_id: UUID,
        reason: str,
        mapping: Optional[IdentifierMapping] = None,
    ) -> "CachedTenantState":
        return cls(
            tenant_id=tenant_id, state=TenantState.FAILED, mapping=mapping, reason=reason
        )

    @property
    def is_ready(self) -> bool:
        return (
            self.state is TenantState.READY
            and self.predict is not None
            and self.mapping is not None
        )


class TenantModelCache:
    """Concurrent map of tenant snapshots plus one lock per tenant.

    Locks are created lazily on first use and never removed. Entries are
    never evicted; they are only replaced.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: Dict[UUID, threading.Lock] = {}
        self._entries: Dict[UUID, CachedTenantState] = {}

    def lock_for(self, tenant_id: UUID) -> threading.Lock:
        """Return the tenant's lock, creating it on first request."""
        with self._registry_lock:
            return self._locks.setdefault(tenant_id, threading.Lock())

    def get(self, tenant_id: UUID) -> Optional[CachedTenantState]:
        return self._entries.get(tenant_id)

    def put(self, entry: CachedTenantState) -> None:
        """Replace the tenant's snapshot. Callers must hold the tenant lock."""
        previous = self._entries.get(entry.tenant_id)
        self._entries[entry.tenant_id] = entry
        logger.info(
            "Tenant cache updated",
            extra={
                "tenant_id": str(entry.tenant_id),
                "state": entry.state.value,
                "previous_state": previous.state.value if previous else TenantState.UNLOADED.value,
            },
        )
