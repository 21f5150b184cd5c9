"""Custom exceptions for TenantRec.

Defines specific exception types for better error handling and reporting.
"""

from typing import Any, Dict, Optional
from uuid import UUID


class TenantRecException(Exception):
    """Base exception for TenantRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class TrainingError(TenantRecException):
    """Raised when a model cannot be trained from the given dataset."""

    def __init__(self, message: str, error: Optional[Exception] = None):
        details: Dict[str, Any] = {}
        if error is not None:
            details = {"error": str(error), "error_type": type(error).__name__}
        super().__init__(message=message, status_code=500, details=details)


class ModelLoadError(TenantRecException):
    """Raised when a stored model blob cannot be deserialized."""

    def __init__(self, tenant_id: Optional[UUID], error: Exception):
        message = f"Failed to load model for tenant '{tenant_id}': {str(error)}"
        super().__init__(
            message=message,
            status_code=500,
            details={
                "tenant_id": str(tenant_id) if tenant_id else None,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class ModelStoreError(TenantRecException):
    """Raised when the model store cannot be read or written."""

    def __init__(self, operation: str, tenant_id: UUID, error: Exception):
        message = (
            f"Model store {operation} failed for tenant '{tenant_id}': {str(error)}"
        )
        super().__init__(
            message=message,
            status_code=503,
            details={
                "operation": operation,
                "tenant_id": str(tenant_id),
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class TenantNotFoundError(TenantRecException):
    """Raised when a tenant id is not known to the tenant repository."""

    def __init__(self, tenant_id: UUID):
        super().__init__(
            message=f"Tenant '{tenant_id}' not found.",
            status_code=404,
            details={"tenant_id": str(tenant_id)},
        )
