"""
Tenant resolution.

A request is bound to exactly one tenant before any tenant-owned row is read:
public pages resolve it from the URL slug, staff requests from the staff
profile, and internal jobs from a slug fragment or an explicit id.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core import messages
from ..core.db import get_session
from ..core.responses import NotFound
from ..models import SubscriptionStatus, Tenant


logger = logging.getLogger(__name__)

BOOKABLE_SUBSCRIPTIONS = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)

# Upper bound on candidates read for a slug fragment
PREFIX_CANDIDATE_LIMIT = 10


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable tenant binding for one request.

    Attributes:
        tenant_id: tenants.id
        slug: URL-safe identifier (e.g. "beauty-berlin")
        name: Display name of the clinic
    """

    tenant_id: uuid.UUID
    slug: str
    name: str

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantContext":
        return cls(tenant_id=tenant.id, slug=tenant.slug, name=tenant.name)


# ────────────────────────────────────────────────────────────────
# Resolution Functions
# ────────────────────────────────────────────────────────────────

async def resolve_tenant_by_slug(session: AsyncSession, slug: str) -> Optional[Tenant]:
    """Exact slug lookup; only tenants with a trial or active subscription are bookable."""
    result = await session.execute(
        select(Tenant).where(
            Tenant.slug == slug,
            Tenant.subscription_status.in_(BOOKABLE_SUBSCRIPTIONS),
        )
    )
    return result.scalar_one_or_none()


async def resolve_tenant_by_id(session: AsyncSession, tenant_id: uuid.UUID) -> Optional[Tenant]:
    return await session.get(Tenant, tenant_id)


def escape_like(value: str) -> str:
    """Escape LIKE metacharacters so a fragment only ever matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def select_slug_match(fragment: str, slugs: Iterable[str]) -> Optional[str]:
    """
    Pick one slug among the prefix matches of ``fragment``.

    An exact (case-insensitive) match wins; otherwise the alphabetically
    first slug is chosen.
    """
    candidates = sorted(slugs, key=lambda s: (s.lower(), s))
    if not candidates:
        return None
    wanted = fragment.lower()
    for slug in candidates:
        if slug.lower() == wanted:
            return slug
    if len(candidates) > 1:
        logger.warning(
            f"Slug fragment '{fragment}' is ambiguous ({len(candidates)} tenants: "
            f"{', '.join(candidates)}); using '{candidates[0]}'"
        )
    return candidates[0]


async def resolve_tenant_by_slug_prefix(session: AsyncSession, fragment: str) -> Optional[Tenant]:
    """
    Case-insensitive prefix lookup ("beauty" finds "beauty-berlin").

    Returns None when nothing matches.
    """
    result = await session.execute(
        select(Tenant)
        .where(Tenant.slug.ilike(f"{escape_like(fragment)}%", escape="\\"))
        .order_by(func.lower(Tenant.slug))
        .limit(PREFIX_CANDIDATE_LIMIT)
    )
    tenants = result.scalars().all()
    by_slug = {tenant.slug: tenant for tenant in tenants}
    chosen = select_slug_match(fragment, by_slug)
    if chosen is None:
        return None
    logger.debug(f"Resolved slug fragment '{fragment}' -> {chosen}")
    return by_slug[chosen]


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

async def get_tenant_context(
    slug: str,
    session: AsyncSession = Depends(get_session),
) -> TenantContext:
    """
    Resolve the tenant of a public page from its ``{slug}`` path parameter.

    Usage:
        @router.get("/book/{slug}/packages")
        async def packages(ctx: TenantContext = Depends(get_tenant_context)):
            ...
    """
    tenant = await resolve_tenant_by_slug(session, slug)
    if tenant is None:
        raise NotFound(messages.CLINIC_NOT_FOUND)
    return TenantContext.from_tenant(tenant)


# ────────────────────────────────────────────────────────────────
# Database Tenant Setting (row-level security)
# ────────────────────────────────────────────────────────────────

async def set_db_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> None:
    """
    Bind the current transaction to a tenant for the database row policies.

    Policies read ``current_setting('app.current_tenant_id')``.
    """
    await session.execute(
        text("SELECT set_config('app.current_tenant_id', :tenant_id, true)"),
        {"tenant_id": str(tenant_id)},
    )
