"""Machine learning module for TenantRec.

This module contains identifier remapping, training data generation, the
factorization machine affinity model, model persistence, the per-tenant model
cache and the weekly retraining scheduler.
"""
