"""
Authentication for the Quit-Plan REST API.

Implements:
- JWT bearer tokens (via PyJWT) carrying the actor's id (`sub`) and role
- Token validation (signature, expiry, issuer, audience)
- Startup secrets validation (fail-fast if missing)

Routes never read identity from request parameters: the acting role and id
come from the token and are threaded explicitly into the service.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt as pyjwt

from src.core.status import ActorRole, normalize_role

logger = logging.getLogger(__name__)

TOKEN_ISSUER = "quitplan"
TOKEN_AUDIENCE = "quitplan-api"


@dataclass
class ActorToken:
    """
    Decoded bearer token: who is calling and in which role.
    """

    user_id: int
    role: ActorRole
    issued_at: datetime
    expires_at: datetime
    token_type: str = "Bearer"
    jti: str = field(default_factory=lambda: str(uuid.uuid4()))

    def is_expired(self) -> bool:
        """Check if token is expired."""
        return datetime.now(UTC) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "token_type": self.token_type,
            "jti": self.jti,
        }


class AuthService:
    """
    Token issuing and validation for the REST API.
    """

    # Token expiry: 30 days
    TOKEN_EXPIRY_DAYS = 30

    def __init__(self, secret_key: str | None = None) -> None:
        """
        Initialize auth service.

        Args:
            secret_key: Secret key for token signing (from env if not provided)

        Raises:
            RuntimeError: If no secret key is available
        """
        resolved_key = secret_key or os.getenv("QUITPLAN_API_SECRET_KEY")
        if not resolved_key:
            raise RuntimeError(
                "QUITPLAN_API_SECRET_KEY environment variable is required. "
                "Set it to a cryptographically random string."
            )
        self.secret_key: str = resolved_key

    def generate_token(self, user_id: int, role: ActorRole | str) -> ActorToken:
        """
        Create a token for an actor.

        Raises:
            ValueError: If the role is unknown
        """
        resolved = normalize_role(role)
        if resolved is None:
            raise ValueError(f"Unknown role: {role!r}")
        now = datetime.now(UTC)
        token = ActorToken(
            user_id=user_id,
            role=resolved,
            issued_at=now,
            expires_at=now + timedelta(days=self.TOKEN_EXPIRY_DAYS),
        )
        logger.info("Generated %s token for user %s", resolved.value, user_id)
        return token

    def encode_token(self, token: ActorToken) -> str:
        """
        Encode token to JWT string using PyJWT.

        Args:
            token: Actor token

        Returns:
            JWT string
        """
        payload: dict[str, Any] = {
            "sub": str(token.user_id),
            "role": token.role.value,
            "iat": token.issued_at,
            "exp": token.expires_at,
            "type": token.token_type,
            "jti": token.jti,
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
        }
        return pyjwt.encode(payload, self.secret_key, algorithm="HS256")

    def issue(self, user_id: int, role: ActorRole | str) -> str:
        """Generate and encode a token in one step."""
        return self.encode_token(self.generate_token(user_id, role))

    def decode_token(self, jwt_token: str) -> ActorToken | None:
        """
        Decode a JWT string.

        Args:
            jwt_token: JWT string

        Returns:
            Actor token, or None if invalid, expired, or carrying an unknown role
        """
        try:
            payload = pyjwt.decode(
                jwt_token,
                self.secret_key,
                algorithms=["HS256"],
                audience=TOKEN_AUDIENCE,
                issuer=TOKEN_ISSUER,
            )
        except pyjwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except pyjwt.InvalidTokenError as e:
            logger.error("Token decode error: %s", e)
            return None

        role = normalize_role(payload.get("role"))
        if role is None:
            logger.warning("Token carries unknown role %r", payload.get("role"))
            return None
        try:
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Token carries invalid subject %r", payload.get("sub"))
            return None

        return ActorToken(
            user_id=user_id,
            role=role,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
            token_type=payload.get("type", "Bearer"),
            jti=payload.get("jti", ""),
        )

    def authenticate_request(self, authorization_header: str | None) -> ActorToken | None:
        """
        Authenticate a request using its Authorization header.

        Args:
            authorization_header: Authorization header value (e.g., "Bearer <token>")

        Returns:
            Actor token if valid, None otherwise
        """
        if not authorization_header:
            return None

        parts = authorization_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            logger.warning("Invalid Authorization header format")
            return None

        return self.decode_token(parts[1])


def validate_secrets() -> None:
    """
    Validate that required secrets are set at startup (fail-fast).

    Raises:
        RuntimeError: If QUITPLAN_API_SECRET_KEY is missing
    """
    if not os.getenv("QUITPLAN_API_SECRET_KEY"):
        raise RuntimeError(
            "Missing required secret: QUITPLAN_API_SECRET_KEY. "
            "Set this environment variable before starting the application."
        )
    logger.info("All required secrets validated successfully.")


__all__ = [
    "ActorToken",
    "AuthService",
    "validate_secrets",
]
