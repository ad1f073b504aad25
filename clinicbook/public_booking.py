"""
Public booking page API.

Everything here is reachable without login and is keyed by the clinic's
slug. Only clinics with a trial or active subscription are visible.
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from .confirmation import get_appointment_by_token
from .core import messages
from .core.db import get_session
from .core.responses import NotFound, error_response
from .models import PackageType
from .packages import list_active_packages
from .tenancy.context import TenantContext, get_tenant_context, resolve_tenant_by_slug
from .tenancy.queries import list_active_employees, list_locations, list_services
from .waitlist import WaitlistEntryRequest, add_public_waitlist_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/book", tags=["public-booking"])


# ────────────────────────────────────────────────────────────────
# Response models
# ────────────────────────────────────────────────────────────────

class ClinicInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    slug: str
    name: str
    description: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    whatsapp_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None


class PublicService(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: Decimal
    duration_minutes: int


class PublicEmployee(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    role: str
    bio: Optional[str] = None
    specialties: Optional[list[str]] = None


class PublicLocation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    is_primary: bool


class PublicPackageItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_id: uuid.UUID
    quantity: int
    service: Optional[PublicService] = None


class PublicPackage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    package_type: PackageType
    total_uses: int
    original_price: Decimal
    sale_price: Decimal
    discount_percentage: Optional[Decimal] = None
    validity_days: Optional[int] = None
    is_featured: bool
    service: Optional[PublicService] = None
    items: list[PublicPackageItem] = []


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@router.get("/appointments/{token}")
async def appointment_by_token(token: str, session: AsyncSession = Depends(get_session)):
    """Appointment details behind a confirmation link."""
    lookup = await get_appointment_by_token(session, token)
    if lookup.appointment is None:
        return error_response(lookup.error, 404)
    return {"appointment": lookup.appointment.model_dump(mode="json")}


@router.get("/{slug}")
async def booking_page(slug: str, session: AsyncSession = Depends(get_session)):
    tenant = await resolve_tenant_by_slug(session, slug)
    if tenant is None:
        raise NotFound(messages.CLINIC_NOT_FOUND)

    services = await list_services(session, tenant.id, active_only=True)
    employees = await list_active_employees(session, tenant.id)
    locations = await list_locations(session, tenant.id)
    return {
        "tenant": ClinicInfo.model_validate(tenant).model_dump(mode="json"),
        "services": [PublicService.model_validate(s).model_dump(mode="json") for s in services],
        "employees": [PublicEmployee.model_validate(e).model_dump(mode="json") for e in employees],
        "locations": [PublicLocation.model_validate(loc).model_dump(mode="json") for loc in locations],
    }


@router.get("/{slug}/packages")
async def booking_packages(
    location_id: Optional[uuid.UUID] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    packages = await list_active_packages(session, ctx.tenant_id, location_id)
    return {"packages": [PublicPackage.model_validate(p).model_dump(mode="json") for p in packages]}


@router.post("/{slug}/waitlist", status_code=201)
async def join_waitlist(
    slug: str,
    payload: WaitlistEntryRequest,
    session: AsyncSession = Depends(get_session),
):
    entry = await add_public_waitlist_entry(session, slug, payload)
    return {"success": True, "id": str(entry.id)}
