"""
JWT Token Validation for Supabase Auth

Validates JWTs issued by Supabase. HS256 tokens are checked against the
project's JWT secret; asymmetric tokens (ES256, RS256, ...) against the
project's JWKS endpoint.
"""

import logging
from typing import Dict, Any
from functools import lru_cache

import jwt
from jwt import PyJWTError, PyJWKClient

from rerank.auth.config import AuthConfig, get_auth_config

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256", "PS384", "PS512"}


class JWTError(Exception):
    """Raised when a bearer token cannot be trusted."""
    pass


@lru_cache(maxsize=4)
def get_jwks_client(jwks_url: str) -> PyJWKClient:
    """Cached JWKS client, keys refreshed hourly."""
    return PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)


def _verification_key(token: str, config: AuthConfig) -> Any:
    if config.jwt_algorithm not in ASYMMETRIC_ALGORITHMS:
        if not config.supabase_jwt_secret:
            raise JWTError("SUPABASE_JWT_SECRET not configured")
        return config.supabase_jwt_secret

    project_ref = config.supabase_project_ref
    if not project_ref:
        raise JWTError(f"SUPABASE_URL not configured (required for {config.jwt_algorithm})")

    jwks_url = f"https://{project_ref}.supabase.co/auth/v1/.well-known/jwks.json"
    try:
        return get_jwks_client(jwks_url).get_signing_key_from_jwt(token).key
    except PyJWTError as e:
        logger.error(f"Failed to fetch JWKS from {jwks_url}: {e}")
        raise JWTError(f"Failed to fetch public key: {e}")


def verify_supabase_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a Supabase JWT.

    Args:
        token: The JWT from the Authorization header

    Returns:
        Decoded payload

    Raises:
        JWTError: If the token is invalid, expired, or auth is not configured
    """
    config = get_auth_config()
    key = _verification_key(token, config)

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[config.jwt_algorithm],
            audience=config.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        raise JWTError("Token has expired")
    except jwt.InvalidAudienceError:
        raise JWTError("Invalid token audience")
    except jwt.InvalidSignatureError:
        raise JWTError("Invalid token signature")
    except jwt.InvalidAlgorithmError:
        raise JWTError(
            f"JWT algorithm mismatch: server expects '{config.jwt_algorithm}' "
            f"(set JWT_ALGORITHM if the project uses asymmetric keys)"
        )
    except jwt.DecodeError as e:
        raise JWTError(f"Token decode error: {e}")
    except PyJWTError as e:
        raise JWTError(f"Token validation error: {e}")

    if not payload.get("sub"):
        raise JWTError("Token missing 'sub' claim (user ID)")

    return payload


def extract_user_info(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract user fields from a verified Supabase payload.

    Google sign-ins put the display name under "name" and the avatar under
    "picture"; email sign-ins use "full_name" and "avatar_url".
    """
    user_metadata = payload.get("user_metadata") or {}
    app_metadata = payload.get("app_metadata") or {}

    return {
        "id": payload.get("sub"),
        "email": payload.get("email"),
        "full_name": user_metadata.get("full_name") or user_metadata.get("name"),
        "avatar_url": user_metadata.get("avatar_url") or user_metadata.get("picture"),
        "provider": app_metadata.get("provider", "email"),
        "locale": user_metadata.get("locale"),
    }
