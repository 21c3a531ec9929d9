"""HS256 JWT verification for the real-time socket.

Provides:
- verify_socket_token(): Validates the token and returns the principal
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import jwt

REQUIRED_CLAIMS = ["workspace_id", "user_id"]


class SocketAuthError(Exception):
    """Token missing, malformed, expired or lacking required claims."""

    pass


@dataclass(frozen=True)
class SocketPrincipal:
    """Authenticated socket client."""

    workspace_id: str
    user_id: str


def _get_secret() -> str:
    secret = os.environ.get("SOCKET_JWT_SECRET", "")
    if not secret:
        raise SocketAuthError("SOCKET_JWT_SECRET not configured")
    return secret


def verify_socket_token(token: str | None) -> SocketPrincipal:
    """Verify an HS256 token carrying workspace_id and user_id.

    Raises:
        SocketAuthError: If the token cannot be trusted (fail-closed).
    """
    if not token:
        raise SocketAuthError("missing token")

    try:
        claims = jwt.decode(
            token,
            _get_secret(),
            algorithms=["HS256"],
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise SocketAuthError("token expired")
    except jwt.InvalidTokenError as e:
        raise SocketAuthError(f"invalid token: {type(e).__name__}")

    workspace_id = claims.get("workspace_id")
    user_id = claims.get("user_id")
    if not workspace_id or not user_id:
        raise SocketAuthError("empty workspace_id or user_id")
    return SocketPrincipal(workspace_id=str(workspace_id), user_id=str(user_id))
