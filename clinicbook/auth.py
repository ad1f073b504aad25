"""
Session endpoints: customer login, staff login and signup, logout.

Credentials never touch our database; the identity provider checks them and
hands back an access token, which we keep in an HTTP-only cookie.
"""

import logging
import re
import unicodedata
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .core import messages
from .core.config import get_settings
from .core.db import get_session
from .core.request_context import extract_access_token
from .core.responses import error_response
from .identity import IdentityClient, IdentityError, IdentitySession, get_identity_client
from .models import StaffRole, StaffUser, SubscriptionStatus, Tenant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

DASHBOARD_PATH = "/dashboard"
SLUG_MAX_LENGTH = 100


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def generate_slug(name: str) -> str:
    """
    URL-safe slug from a clinic name.

        "Beauty Lounge Berlin" -> "beauty-lounge-berlin"
        "Schönheit & Co."      -> "schonheit-co"
    """
    normalized = unicodedata.normalize("NFKD", name)
    ascii_str = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_str.lower())
    return slug.strip("-")[:SLUG_MAX_LENGTH] or "klinik"


async def ensure_unique_slug(session: AsyncSession, base_slug: str) -> str:
    """Append -2, -3, ... until the slug is free."""
    candidate = base_slug
    counter = 2
    while True:
        result = await session.execute(select(Tenant.id).where(Tenant.slug == candidate))
        if result.scalar_one_or_none() is None:
            return candidate
        candidate = f"{base_slug}-{counter}"
        counter += 1


def safe_redirect_target(candidate: Optional[str], request: Request) -> str:
    """
    Path to redirect to after logout.

    Only same-host targets are honoured; anything else falls back to "/".
    """
    if not candidate:
        return "/"
    parsed = urlparse(candidate)
    if parsed.scheme and parsed.scheme not in ("http", "https"):
        return "/"
    if parsed.netloc and parsed.netloc != request.url.netloc:
        logger.warning(f"Ignoring off-site logout redirect to {parsed.netloc}")
        return "/"
    path = parsed.path or "/"
    if not path.startswith("/"):
        path = "/" + path
    return f"{path}?{parsed.query}" if parsed.query else path


def set_session_cookie(response, session: IdentitySession) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.access_token,
        max_age=session.expires_in,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(get_settings().session_cookie_name, path="/")


def _login_error(e: IdentityError) -> JSONResponse:
    if e.status_code >= 500:
        return error_response(messages.UNEXPECTED_ERROR, 500)
    if e.is_invalid_credentials:
        return error_response(messages.WRONG_CREDENTIALS, 400)
    return error_response(e.message, 400)


# ────────────────────────────────────────────────────────────────
# Customer login
# ────────────────────────────────────────────────────────────────

class CustomerLoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


@router.post("/customer/auth/login")
async def customer_login(
    payload: CustomerLoginRequest,
    identity: IdentityClient = Depends(get_identity_client),
):
    if not payload.email or not payload.password:
        return error_response(messages.LOGIN_FIELDS_REQUIRED, 400)

    try:
        session = await identity.sign_in_with_password(payload.email.lower(), payload.password)
    except IdentityError as e:
        logger.warning(f"Customer login failed: {e.message}")
        return _login_error(e)
    except Exception:
        logger.exception("Customer login error")
        return error_response(messages.UNEXPECTED_ERROR, 500)

    metadata = session.user.user_metadata
    response = JSONResponse(
        {
            "success": True,
            "user": {
                "id": session.user.id,
                "email": session.user.email,
                "firstName": metadata.get("first_name"),
                "lastName": metadata.get("last_name"),
            },
        }
    )
    set_session_cookie(response, session)
    return response


# ────────────────────────────────────────────────────────────────
# Staff login / signup
# ────────────────────────────────────────────────────────────────

@router.post("/auth/login")
async def staff_login(
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    identity: IdentityClient = Depends(get_identity_client),
):
    if not email or not password:
        return error_response(messages.LOGIN_FIELDS_REQUIRED, 400)

    try:
        session = await identity.sign_in_with_password(email, password)
    except IdentityError as e:
        logger.warning(f"Staff login failed: {e.message}")
        return _login_error(e)
    except Exception:
        logger.exception("Staff login error")
        return error_response(messages.UNEXPECTED_ERROR, 500)

    response = RedirectResponse(DASHBOARD_PATH, status_code=303)
    set_session_cookie(response, session)
    return response


class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    fullName: Optional[str] = None
    clinicName: Optional[str] = None
    businessType: Optional[str] = None


@router.post("/auth/signup")
async def staff_signup(
    payload: SignupRequest,
    session: AsyncSession = Depends(get_session),
    identity: IdentityClient = Depends(get_identity_client),
):
    """
    Register a clinic owner.

    Process:
    1. Create the identity user
    2. Create the tenant (unique slug, trial subscription)
    3. Create the owner profile

    Steps 2 and 3 share one transaction; if it fails the identity user is
    deleted again so the email can be reused.
    """
    if not all([payload.email, payload.password, payload.fullName, payload.clinicName, payload.businessType]):
        return error_response(messages.ALL_FIELDS_REQUIRED, 400)

    try:
        user = await identity.sign_up(payload.email, payload.password, {"full_name": payload.fullName})
    except IdentityError as e:
        logger.warning(f"Signup rejected by identity provider: {e.message}")
        if e.status_code >= 500:
            return error_response(messages.UNEXPECTED_ERROR, 500)
        return error_response(e.message, 400)

    if not user.id:
        return error_response(messages.ACCOUNT_CREATION_FAILED, 400)

    settings = get_settings()
    try:
        slug = await ensure_unique_slug(session, generate_slug(payload.clinicName))
        tenant = Tenant(
            id=uuid.uuid4(),
            name=payload.clinicName,
            slug=slug,
            business_type=payload.businessType,
            subscription_status=SubscriptionStatus.TRIAL,
            trial_ends_at=datetime.now(timezone.utc) + timedelta(days=settings.trial_days),
            contact_email=payload.email,
        )
        session.add(tenant)
        session.add(
            StaffUser(
                id=uuid.UUID(user.id),
                tenant_id=tenant.id,
                email=payload.email,
                full_name=payload.fullName,
                role=StaffRole.OWNER,
            )
        )
        await session.commit()
    except SQLAlchemyError:
        logger.exception(f"Creating clinic '{payload.clinicName}' failed, removing identity user {user.id}")
        await session.rollback()
        try:
            await identity.admin_delete_user(user.id)
        except IdentityError as e:
            logger.error(f"Could not delete identity user {user.id}: {e.message}")
        return error_response(messages.CLINIC_CREATION_FAILED, 400)

    logger.info(f"Clinic {slug} created for owner {user.id}")
    return {"success": True, "redirect": DASHBOARD_PATH, "slug": slug}


# ────────────────────────────────────────────────────────────────
# Logout
# ────────────────────────────────────────────────────────────────

async def _logout_response(request: Request, identity: IdentityClient, target: Optional[str]) -> RedirectResponse:
    token = extract_access_token(request)
    if token:
        try:
            await identity.sign_out(token)
        except IdentityError as e:
            # The cookie is cleared regardless
            logger.warning(f"Sign-out at identity provider failed: {e.message}")

    response = RedirectResponse(safe_redirect_target(target, request), status_code=303)
    clear_session_cookie(response)
    return response


@router.post("/auth/logout")
async def logout_post(
    request: Request,
    redirect: Optional[str] = Form(None),
    identity: IdentityClient = Depends(get_identity_client),
):
    return await _logout_response(request, identity, redirect or request.headers.get("referer"))


@router.get("/auth/logout")
async def logout_get(
    request: Request,
    redirect: Optional[str] = None,
    identity: IdentityClient = Depends(get_identity_client),
):
    return await _logout_response(request, identity, redirect)
