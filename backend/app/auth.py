"""
Authentication middleware for Supabase JWT verification.
Provides the verified caller identity (user id + email) to the Gmail endpoints.

Performance notes:
- get_current_user verifies JWTs locally with python-jose when SUPABASE_JWT_SECRET
  is set, avoiding a network round-trip to the Supabase Auth API (~50-150ms saved
  per request).
- The mailbox address used as the credential-store key is the ``email`` claim of
  the verified token, never a value supplied in the request body.
"""

import os
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

from app.db import supabase
from app.errors import ApiError

# ---------------------------------------------------------------------------
# Module-level JWT secret, loaded once at startup.
# Set SUPABASE_JWT_SECRET in your environment (Project Settings > API > JWT Secret).
# When not set the implementation falls back to the Supabase Auth API.
# ---------------------------------------------------------------------------
SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None


class VerifiedUser(BaseModel):
    """Identity extracted from a verified Supabase JWT."""

    id: str
    email: Optional[str] = None
    # Verified token claims (remote verification only knows sub and email)
    claims: dict[str, Any] = {}


async def get_current_user(authorization: Optional[str] = Header(None)) -> VerifiedUser:
    """
    Extract and verify JWT token from Authorization header.

    When SUPABASE_JWT_SECRET is set, verifies the JWT locally using python-jose
    (HS256) with no network call. Falls back to supabase.auth.get_user()
    when the secret is not configured.

    Args:
        authorization: Authorization header with format "Bearer <token>"

    Returns:
        VerifiedUser with the ``sub`` claim as id and the ``email`` claim.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token"
        )

    # Extract token from "Bearer <token>" format
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication credentials"
        )

    token = parts[1]

    # ------------------------------------------------------------------
    # Fast path: local JWT verification, no network call
    # ------------------------------------------------------------------
    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)

    # ------------------------------------------------------------------
    # Fallback: remote Supabase Auth API verification
    # ------------------------------------------------------------------
    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> VerifiedUser:
    """
    Verify a Supabase JWT locally using python-jose.

    Raises:
        HTTPException 401 on any verification failure.
    """
    from jose import jwt, JWTError, ExpiredSignatureError

    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},  # Supabase JWTs use 'authenticated' role, not a fixed audience
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    email = payload.get("email")
    return VerifiedUser(
        id=user_id,
        email=email if isinstance(email, str) else None,
        claims=payload,
    )


async def _verify_jwt_remotely(token: str) -> VerifiedUser:
    """
    Verify a JWT via the Supabase Auth API (fallback when no JWT secret is set).

    Raises:
        HTTPException 401 on any verification failure.
    """
    try:
        response = supabase.auth.get_user(token)

        if not response.user:
            raise HTTPException(
                status_code=401,
                detail="Invalid token"
            )

        email = getattr(response.user, "email", None)
        email = email if isinstance(email, str) else None
        return VerifiedUser(
            id=response.user.id,
            email=email,
            claims={"sub": response.user.id, "email": email},
        )

    except HTTPException:
        raise
    except Exception as e:
        error_msg = str(e).lower()

        if "expired" in error_msg:
            raise HTTPException(
                status_code=401,
                detail="Token expired"
            )

        raise HTTPException(
            status_code=401,
            detail="Invalid token"
        )


async def get_current_user_email(user: VerifiedUser = Depends(get_current_user)) -> str:
    """
    Return the verified caller's email address.

    Raises:
        ApiError: 400 when the token carries no email claim.
    """
    if not user.email or not user.email.strip():
        raise ApiError(400, "Authenticated user email is required")
    return user.email
