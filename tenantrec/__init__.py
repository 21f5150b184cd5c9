"""TenantRec: per-tenant product recommendations for a multi-tenant storefront.

This package provides a backend service that trains one purchase-affinity
model per tenant from that tenant's own order history and serves top-N
product recommendations for its customers.

Modules:
    api: FastAPI application and REST API endpoints
    recommender: Data loading, model training, caching and serving logic
    repositories: Read-only access to tenants, catalogs and orders
"""

__version__ = "0.1.0"
