"""
middleware/auth_middleware.py — Caller identification for ledger routes.

The ledger never issues tokens. An identity collaborator signs a JWT whose
`sub` claim is the caller's user id; @require_auth verifies it and stores the
id on flask.g, where routes read it through current_caller_id() and pass it
to services as a plain int.

A token is accepted when:
  - the header reads "Bearer <token>" (scheme is case-insensitive)
  - the signature verifies with JWT_SECRET_KEY under JWT_ALGORITHM
  - both `exp` and `sub` are present and `exp` has not passed
  - `sub` is a positive integer

Every failure is a 401 AppError (TOKEN_MISSING, TOKEN_EXPIRED or
TOKEN_INVALID). Group membership (403) is the service layer's concern.
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.ledger.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "sub"]


def _unauthenticated(message: str, code: str = ErrorCode.TOKEN_INVALID) -> AppError:
    return AppError(code, message, 401)


def _bearer_token(header: str) -> str:
    """Returns the raw token from an Authorization header value."""
    if not header:
        raise _unauthenticated(
            "Authentication required. Provide a Bearer token in the Authorization header.",
            ErrorCode.TOKEN_MISSING,
        )
    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _unauthenticated("Authorization header must be in the format: Bearer <token>.")
    return token


def _verified_claims(token: str) -> dict:
    config = current_app.config
    try:
        return jwt.decode(
            token,
            config["JWT_SECRET_KEY"],
            algorithms=[config.get("JWT_ALGORITHM", "HS256")],
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthenticated(
            "The access token has expired. Obtain a new one from the identity service.",
            ErrorCode.TOKEN_EXPIRED,
        )
    except jwt.MissingRequiredClaimError as exc:
        raise _unauthenticated(f"The access token is missing the required '{exc.claim}' claim.")
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected access token: %s", exc)
        raise _unauthenticated("The access token is invalid or has been tampered with.")


def _caller_id_from(claims: dict) -> int:
    sub = claims.get("sub")
    try:
        caller_id = int(sub)
    except (TypeError, ValueError):
        caller_id = 0
    if caller_id <= 0:
        raise _unauthenticated("The 'sub' claim in the access token is not a valid user ID.")
    return caller_id


def authenticate(header: str) -> int:
    """
    Verifies an Authorization header value and returns the caller's user id.

    Must run inside an application context (reads the JWT settings from
    current_app.config). Raises a 401 AppError on any failure.
    """
    return _caller_id_from(_verified_claims(_bearer_token(header)))


def current_caller_id() -> int:
    """The user id @require_auth attached to this request."""
    return g.caller_id


def require_auth(f: Callable) -> Callable:
    """
    Route decorator: authenticates the request before the view runs.

    Usage:
        @balances_bp.route("/<int:group_id>/balances")
        @require_auth
        def get_balances(group_id):
            caller_id = current_caller_id()
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.caller_id = authenticate(request.headers.get("Authorization", ""))
        return f(*args, **kwargs)

    return decorated
