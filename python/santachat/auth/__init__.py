"""Bearer authentication: JWKS token verification and the request middleware.

Tests swap in tests/support/token_verifier.py, which signs with a local key.
"""

from santachat.auth.middleware import AuthMiddleware, Viewer, get_viewer
from santachat.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "JwksTokenVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
