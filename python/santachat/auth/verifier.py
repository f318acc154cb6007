"""Bearer token verification.

The identity provider signs short-lived JWTs whose ``sub`` claim is the
participant's user id. Verification happens once per request in
AuthMiddleware; the services only ever see the resulting user id.
"""

from typing import Any, Protocol

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from santachat.errors import ApiError, ApiErrorCode
from santachat.logging import get_logger

logger = get_logger(__name__)

CLOCK_SKEW_SECONDS = 60
SIGNING_ALGORITHMS = ["RS256", "ES256"]

# Checked in order; the first matching class decides the reason and message.
_TOKEN_FAILURES: list[tuple[type[InvalidTokenError], str, str]] = [
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
]


class TokenVerifier(Protocol):
    """Anything that turns a bearer token into verified claims.

    Raises ApiError(E_UNAUTHENTICATED) for a bad token and
    ApiError(E_AUTH_UNAVAILABLE) when the identity provider cannot be reached.
    """

    def verify(self, token: str) -> dict[str, Any]: ...


def _unauthenticated(reason: str, message: str) -> ApiError:
    logger.warning("auth_failure", reason=reason)
    return ApiError(ApiErrorCode.E_UNAUTHENTICATED, message)


class JwksTokenVerifier:
    """Verify tokens against the identity provider's published JWKS.

    Checks the signature, ``exp`` (with clock skew), ``iss`` and ``aud``, and
    requires a non-blank ``sub``. PyJWKClient caches keys for ``cache_ttl``
    seconds and refetches the set when it meets an unknown ``kid``.
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: str,
        audiences: list[str],
        cache_ttl: int = 3600,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self._jwks = PyJWKClient(jwks_url, cache_keys=True, lifespan=cache_ttl)

    def _get_signing_key(self, token: str) -> Any:
        try:
            return self._jwks.get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find a signing key" in str(e):
                raise _unauthenticated("kid_not_found", "Invalid token: signing key not found") from e
            raise

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a bearer JWT and return its claims."""
        try:
            signing_key = self._get_signing_key(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=SIGNING_ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"]},
            )
        except PyJWKClientError as e:
            logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
            ) from e
        except InvalidTokenError as e:
            for error_class, reason, message in _TOKEN_FAILURES:
                if isinstance(e, error_class):
                    raise _unauthenticated(reason, message) from e
            raise _unauthenticated("invalid_token", "Invalid token") from e

        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub.strip():
            raise _unauthenticated("missing_sub", "Invalid token: missing sub")

        return claims
