"""Authentication and authorization module.

This module provides:
- Token verification (JWKS verifier)
- Auth middleware for FastAPI
- Request state with viewer identity
- Project role predicates backed by the access cache

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

from redline.auth.access_cache import AccessCache, get_access_cache
from redline.auth.middleware import AuthMiddleware, Viewer, get_viewer
from redline.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AccessCache",
    "AuthMiddleware",
    "JwksTokenVerifier",
    "TokenVerifier",
    "Viewer",
    "get_access_cache",
    "get_viewer",
]
