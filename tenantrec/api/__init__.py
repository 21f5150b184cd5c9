"""FastAPI application module for TenantRec.

This module contains the FastAPI application and the thin route handlers that
expose per-tenant recommendations and retraining over HTTP.
"""
