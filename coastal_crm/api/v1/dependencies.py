"""
API Dependencies
Shared dependencies for authentication and the dialer engine
"""
import os
import logging
from typing import Optional
from fastapi import Depends, HTTPException, status, Header
from supabase import create_client, Client
from pydantic import BaseModel
from dotenv import load_dotenv

from coastal_crm.domain.services.dialer_engine import DialerEngine

load_dotenv()

logger = logging.getLogger(__name__)


class CurrentUser(BaseModel):
    """Current authenticated user model"""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: str = "agent"


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    supabase: Client = Depends(get_supabase)
) -> CurrentUser:
    """
    Dependency to get the current authenticated user from JWT token.

    The user's id is the agent id recorded on dialer sessions and calls.

    Raises:
        HTTPException: 401 if the token is missing, malformed or rejected
    """
    if not authorization:
        raise _unauthorized("Authorization header missing")

    # Extract token from "Bearer <token>"
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("Invalid authorization header format. Use: Bearer <token>")

    token = parts[1]

    try:
        user_response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"Token validation failed: {e}")
        raise _unauthorized(f"Token validation failed: {str(e)}")

    if not user_response or not user_response.user:
        raise _unauthorized("Invalid or expired token")

    auth_user = user_response.user
    metadata = getattr(auth_user, "user_metadata", None) or {}

    return CurrentUser(
        id=str(auth_user.id),
        email=auth_user.email,
        name=metadata.get("name"),
        role=metadata.get("role", "agent"),
    )


async def get_dialer_engine() -> DialerEngine:
    """Process-wide dialer engine"""
    return await DialerEngine.get_instance()
