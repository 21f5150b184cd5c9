"""Durable storage for serialized tenant models.

A model store keeps exactly one blob per tenant. The recommender does not
care whether blobs live on local disk or in Azure Blob Storage; it only
relies on ``save`` followed by ``load`` returning the same bytes, and on saves
for different tenants not interfering with each other.
"""

import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from uuid import UUID

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from tenantrec.config import Settings
from tenantrec.exceptions import ModelStoreError

# Configure module logger
logger = logging.getLogger(__name__)


def model_blob_name(tenant_id: UUID) -> str:
    """Name of the blob/file holding a tenant's model."""
    return f"model_tenant_{tenant_id}.joblib"


class ModelStore(ABC):
    """Interface for per-tenant model persistence."""

    @abstractmethod
    def exists(self, tenant_id: UUID) -> bool:
        """Return True if a model blob is stored for the tenant."""

    @abstractmethod
    def load(self, tenant_id: UUID) -> Optional[bytes]:
        """Return the stored blob, or None if there is none."""

    @abstractmethod
    def save(self, tenant_id: UUID, blob: bytes) -> None:
        """Store ``blob`` for the tenant, replacing any previous one."""

    @abstractmethod
    def delete(self, tenant_id: UUID) -> None:
        """Remove the tenant's blob. Missing blobs are not an error."""


class LocalFileModelStore(ModelStore):
    """Model store backed by a directory on local disk.

    Saves write to a temporary file in the same directory and then
    ``os.replace`` it into place, so readers never see a partial blob.
    """

    def __init__(self, base_dir: str):
        self.base_path = Path(base_dir)
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Using local model store at {self.base_path}")

    def _model_path(self, tenant_id: UUID) -> Path:
        return self.base_path / model_blob_name(tenant_id)

    def exists(self, tenant_id: UUID) -> bool:
        return self._model_path(tenant_id).exists()

    def load(self, tenant_id: UUID) -> Optional[bytes]:
        model_path = self._model_path(tenant_id)
        if not model_path.exists():
            return None
        try:
            return model_path.read_bytes()
        except OSError as e:
            raise ModelStoreError("load", tenant_id, e) from e

    def save(self, tenant_id: UUID, blob: bytes) -> None:
        model_path = self._model_path(tenant_id)
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.base_path, prefix=f".{model_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as tmp_file:
                    tmp_file.write(blob)
                os.replace(tmp_name, model_path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise ModelStoreError("save", tenant_id, e) from e

        logger.info(
            "Saved model",
            extra={"tenant_id": str(tenant_id), "path": str(model_path), "size_bytes": len(blob)},
        )

    def delete(self, tenant_id: UUID) -> None:
        try:
            self._model_path(tenant_id).unlink(missing_ok=True)
        except OSError as e:
            raise ModelStoreError("delete", tenant_id, e) from e
        logger.info("Deleted model", extra={"tenant_id": str(tenant_id)})


class AzureBlobModelStore(ModelStore):
    """Model store backed by an Azure Blob Storage container."""

    def __init__(self, connection_string: str, container: str):
        service_client = BlobServiceClient.from_connection_string(connection_string)
        self.container_client = service_client.get_container_client(container)
        try:
            self.container_client.create_container()
        except ResourceExistsError:
            pass
        logger.info(f"Using Azure blob model store, container '{container}'")

    def _blob_client(self, tenant_id: UUID):
        return self.container_client.get_blob_client(model_blob_name(tenant_id))

    def exists(self, tenant_id: UUID) -> bool:
        try:
            return self._blob_client(tenant_id).exists()
        except AzureError as e:
            raise ModelStoreError("exists", tenant_id, e) from e

    def load(self, tenant_id: UUID) -> Optional[bytes]:
        try:
            return self._blob_client(tenant_id).download_blob().readall()
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise ModelStoreError("load", tenant_id, e) from e

    def save(self, tenant_id: UUID, blob: bytes) -> None:
        try:
            self._blob_client(tenant_id).upload_blob(blob, overwrite=True)
        except AzureError as e:
            raise ModelStoreError("save", tenant_id, e) from e
        logger.info(
            "Uploaded model",
            extra={"tenant_id": str(tenant_id), "size_bytes": len(blob)},
        )

    def delete(self, tenant_id: UUID) -> None:
        try:
            self._blob_client(tenant_id).delete_blob()
        except ResourceNotFoundError:
            return
        except AzureError as e:
            raise ModelStoreError("delete", tenant_id, e) from e
        logger.info("Deleted model blob", extra={"tenant_id": str(tenant_id)})


class InMemoryModelStore(ModelStore):
    """Process-local model store, for tests and demos."""

    def __init__(self):
        self._lock = threading.Lock()
        self._blobs: Dict[UUID, bytes] = {}

    def exists(self, tenant_id: UUID) -> bool:
        with self._lock:
            return tenant_id in self._blobs

    def load(self, tenant_id: UUID) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(tenant_id)

    def save(self, tenant_id: UUID, blob: bytes) -> None:
        with self._lock:
            self._blobs[tenant_id] = bytes(blob)

    def delete(self, tenant_id: UUID) -> None:
        with self._lock:
            self._blobs.pop(tenant_id, None)


def create_model_store(settings: Settings) -> ModelStore:
    """Pick the model store for the deployment environment.

    Development deployments, and any deployment without a blob connection
    string, use the local directory store; everything else uses Azure.
    """
    if settings.is_development or not settings.blob_connection_string:
        return LocalFileModelStore(settings.model_dir)
    return AzureBlobModelStore(settings.blob_connection_string, settings.blob_container)
