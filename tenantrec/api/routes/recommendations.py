"""Recommendation endpoints for the TenantRec API.

Thin HTTP wrappers around :class:`RecommendationService`. Request
validation is left to FastAPI; "no recommendations available" is always a
200 with an empty list.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from tenantrec.domain import Category, Product
from tenantrec.exceptions import TenantNotFoundError, TenantRecException
from tenantrec.recommender.cache import TenantState
from tenantrec.recommender.service import DEFAULT_COUNT, RecommendationService

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/tenants/{tenant_id}",
    tags=["recommendations"],
)

MAX_COUNT = 100


class ProductResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    price: float
    is_available: bool
    images: List[str] = Field(default_factory=list)
    lead_time_display: str = "N/A"
    category_id: Optional[UUID] = None
    category_name: str = "Unknown"


class RecommendationResponse(BaseModel):
    """Response model for recommendation requests."""

    tenant_id: UUID
    user_id: UUID
    recommendations: List[ProductResponse] = Field(
        ..., description="Recommended products, best first"
    )


class CategoryResponse(BaseModel):
    id: UUID
    name: str


class RetrainResponse(BaseModel):
    tenant_id: UUID
    success: bool


class TenantStatusResponse(BaseModel):
    """Snapshot of a tenant's cached model state."""

    tenant_id: UUID
    state: TenantState
    source: Optional[str] = None
    reason: Optional[str] = None
    loaded_at: Optional[datetime] = None
    num_users: int = 0
    num_products: int = 0


def get_service(request: Request) -> RecommendationService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise TenantRecException("Recommendation service is not initialized", status_code=503)
    return service


def _ensure_tenant_exists(request: Request, tenant_id: UUID) -> None:
    tenant_repository = getattr(request.app.state, "tenant_repository", None)
    if tenant_repository is not None and tenant_repository.get_by_id(tenant_id) is None:
        raise TenantNotFoundError(tenant_id)


def _to_product_response(product: Product, category: Optional[Category]) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        name=product.name,
        description=product.description,
        price=float(product.price),
        is_available=product.is_available,
        images=list(product.images),
        lead_time_display=product.lead_time.strip() if product.lead_time and product.lead_time.strip() else "N/A",
        category_id=product.category_id,
        category_name=category.name if category else "Unknown",
    )


@router.get(
    "/users/{user_id}/recommendations",
    response_model=RecommendationResponse,
)
def get_recommendations(
    tenant_id: UUID,
    user_id: UUID,
    count: int = Query(DEFAULT_COUNT, ge=1, le=MAX_COUNT),
    service: RecommendationService = Depends(get_service),
) -> RecommendationResponse:
    """Get product recommendations for a customer of a tenant.

    Example:
        GET /tenants/{tenant_id}/users/{user_id}/recommendations?count=3
    """
    products = service.get_recommendations(user_id, tenant_id, count)

    recommendations = []
    for product in products:
        category = (
            service.category_repository.get_by_id(product.category_id)
            if product.category_id
            else None
        )
        recommendations.append(_to_product_response(product, category))

    return RecommendationResponse(
        tenant_id=tenant_id, user_id=user_id, recommendations=recommendations
    )


@router.get(
    "/users/{user_id}/preferred-categories",
    response_model=List[CategoryResponse],
)
def get_preferred_categories(
    tenant_id: UUID,
    user_id: UUID,
    service: RecommendationService = Depends(get_service),
) -> List[CategoryResponse]:
    """Tenant categories ordered by how much the customer has bought from each."""
    categories = service.get_preferred_categories(tenant_id, user_id)
    return [CategoryResponse(id=c.id, name=c.name) for c in categories]


@router.post("/retrain", response_model=RetrainResponse)
def retrain(
    tenant_id: UUID,
    request: Request,
    service: RecommendationService = Depends(get_service),
) -> RetrainResponse:
    """Retrain the tenant's model now.

    Safe to call while recommendations are being served; the new model
    replaces the old one only once it is fully trained and stored.
    """
    _ensure_tenant_exists(request, tenant_id)
    success = service.retrain_tenant_model(tenant_id)
    logger.info(f"Retrain requested for tenant {tenant_id}: success={success}")
    return RetrainResponse(tenant_id=tenant_id, success=success)


@router.get("/status", response_model=TenantStatusResponse)
def tenant_status(
    tenant_id: UUID,
    request: Request,
    service: RecommendationService = Depends(get_service),
) -> TenantStatusResponse:
    """Report the tenant's cached model state without loading it."""
    _ensure_tenant_exists(request, tenant_id)
    entry = service.get_tenant_state(tenant_id)
    if entry is None:
        return TenantStatusResponse(tenant_id=tenant_id, state=TenantState.UNLOADED)

    return TenantStatusResponse(
        tenant_id=tenant_id,
        state=entry.state,
        source=entry.source.value if entry.source else None,
        reason=entry.reason,
        loaded_at=entry.loaded_at,
        num_users=entry.mapping.num_users if entry.mapping else 0,
        num_products=entry.mapping.num_products if entry.mapping else 0,
    )
