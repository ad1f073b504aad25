"""
Staff request context.

This module is the single place where a dashboard request is turned into an
identity and a tenant:

    1. The access token is taken from the ``Authorization: Bearer`` header or
       the session cookie set at login.
    2. The token is verified locally (HS256, shared secret).
    3. The staff profile (``users`` row keyed by the provider user id)
       supplies the tenant.

API routes use ``get_staff_context`` (401 when unauthenticated); HTML-facing
dashboard routes use ``require_staff_page``, which redirects to the login
page instead.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from . import messages
from .config import get_settings
from .db import get_session
from ..identity import IdentityError, verify_access_token
from ..models import StaffUser
from ..tenancy.context import set_db_tenant

logger = logging.getLogger(__name__)


@dataclass
class StaffContext:
    """Who is making the request and which tenant they act for."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    role: str
    full_name: Optional[str] = None
    access_token: Optional[str] = None


class LoginRequired(Exception):
    """Raised by page dependencies; rendered as a redirect to the login page."""


def extract_access_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return request.cookies.get(get_settings().session_cookie_name) or None


async def resolve_staff_context(request: Request, session: AsyncSession) -> Optional[StaffContext]:
    """
    Resolve the staff identity of a request.

    Returns None when there is no token, the token is invalid, or the user
    has no staff profile.
    """
    token = extract_access_token(request)
    if not token:
        return None

    try:
        claims = verify_access_token(token)
        user_id = uuid.UUID(claims["sub"])
    except IdentityError as e:
        logger.warning(f"Rejected session token: {e.message}")
        return None
    except ValueError:
        logger.warning(f"Session token subject is not a user id: {claims.get('sub')!r}")
        return None

    profile = await session.get(StaffUser, user_id)
    if profile is None:
        logger.warning(f"Authenticated user {user_id} has no staff profile")
        return None

    await set_db_tenant(session, profile.tenant_id)
    logger.debug(f"Staff {user_id} acting for tenant {profile.tenant_id}")
    return StaffContext(
        user_id=profile.id,
        tenant_id=profile.tenant_id,
        email=profile.email,
        role=profile.role.value if hasattr(profile.role, "value") else str(profile.role),
        full_name=profile.full_name,
        access_token=token,
    )


async def get_staff_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> StaffContext:
    """
    FastAPI dependency for staff API routes.

        @router.get("/api/waitlist")
        async def handler(ctx: StaffContext = Depends(get_staff_context)):
            ...
    """
    ctx = await resolve_staff_context(request, session)
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=messages.NOT_AUTHENTICATED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


async def require_staff_page(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> StaffContext:
    """Like get_staff_context, but unauthenticated visitors are sent to the login page."""
    ctx = await resolve_staff_context(request, session)
    if ctx is None:
        raise LoginRequired()
    return ctx
