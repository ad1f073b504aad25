"""
Waitlist - customers waiting for a slot that is not available yet.

Staff manage the list from the dashboard; customers add themselves from the
public booking page. When an appointment is cancelled, ``find_waitlist_matches``
proposes the best-placed entries (priority first, then first come) and staff
notify one of them with a WhatsApp link.
"""

import logging
import uuid
from datetime import date, datetime, time, timezone
from typing import Optional, Sequence

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .core import messages
from .core.config import get_settings
from .core.db import get_session
from .core.request_context import StaffContext, get_staff_context
from .core.responses import BadRequest, NotFound
from .models import Tenant, WaitlistEntry, WaitlistStatus
from .tenancy.context import resolve_tenant_by_slug
from .tenancy.queries import count_waiting, find_customer_by_email, require_owned, scoped_select
from .whatsapp import generate_whatsapp_link, to_international_number, waitlist_notification_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/waitlist", tags=["waitlist"])

MATCH_LIMIT = 5
DAY_START_HHMM = 0
DAY_END_HHMM = 2359


# ────────────────────────────────────────────────────────────────
# Schemas
# ────────────────────────────────────────────────────────────────

class WaitlistEntryRequest(BaseModel):
    """Fields are optional here so that missing ones produce the localized message."""

    service_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None
    location_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    preferred_date_from: Optional[date] = None
    preferred_date_to: Optional[date] = None
    preferred_time_from: Optional[time] = None
    preferred_time_to: Optional[time] = None
    notes: Optional[str] = None
    priority: int = 0


class WaitlistStatusUpdate(BaseModel):
    status: str


class NotifyRequest(BaseModel):
    date: str
    time: str
    booking_url: Optional[str] = None


class _NamedRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str


class _EmployeeRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    first_name: str
    last_name: str


class WaitlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    service_id: uuid.UUID
    employee_id: Optional[uuid.UUID] = None
    location_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    preferred_date_from: date
    preferred_date_to: date
    preferred_time_from: Optional[time] = None
    preferred_time_to: Optional[time] = None
    status: WaitlistStatus
    priority: int
    notified_at: Optional[datetime] = None
    notification_count: int
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    service: Optional[_NamedRef] = None
    employee: Optional[_EmployeeRef] = None
    location: Optional[_NamedRef] = None


# ────────────────────────────────────────────────────────────────
# Rules
# ────────────────────────────────────────────────────────────────

def validate_entry_request(data: WaitlistEntryRequest) -> None:
    """Raise BadRequest unless service, name, date range and one contact channel are given."""
    if not (data.service_id and data.customer_name and data.preferred_date_from and data.preferred_date_to):
        raise BadRequest(messages.REQUIRED_FIELDS_MISSING)
    if not data.customer_email and not data.customer_phone:
        raise BadRequest(messages.CONTACT_REQUIRED)


def time_to_hhmm(value: time) -> int:
    return value.hour * 100 + value.minute


def matches_time_preference(entry: WaitlistEntry, slot_time: time) -> bool:
    """Entries without a time window accept any slot; an open end defaults to the day boundary."""
    if entry.preferred_time_from is None and entry.preferred_time_to is None:
        return True
    start = time_to_hhmm(entry.preferred_time_from) if entry.preferred_time_from else DAY_START_HHMM
    end = time_to_hhmm(entry.preferred_time_to) if entry.preferred_time_to else DAY_END_HHMM
    return start <= time_to_hhmm(slot_time) <= end


def matches_employee_preference(entry: WaitlistEntry, employee_id: Optional[uuid.UUID]) -> bool:
    return entry.employee_id is None or entry.employee_id == employee_id


def mark_notified(entry: WaitlistEntry, now: Optional[datetime] = None) -> WaitlistEntry:
    entry.status = WaitlistStatus.NOTIFIED
    entry.notified_at = now or datetime.now(timezone.utc)
    entry.notification_count = (entry.notification_count or 0) + 1
    return entry


def build_notification_link(
    entry: WaitlistEntry,
    service_name: Optional[str],
    slot_date: str,
    slot_time: str,
    clinic_name: str,
    booking_url: str,
) -> str:
    if not entry.customer_phone:
        raise BadRequest(messages.NO_PHONE_ON_FILE)
    message = waitlist_notification_message(
        customer_name=entry.customer_name,
        service_name=service_name or messages.DEFAULT_SERVICE_NAME,
        date=slot_date,
        time=slot_time,
        clinic_name=clinic_name,
        booking_url=booking_url,
    )
    return generate_whatsapp_link(to_international_number(entry.customer_phone), message)


# ────────────────────────────────────────────────────────────────
# Operations
# ────────────────────────────────────────────────────────────────

async def list_waitlist(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    status: Optional[WaitlistStatus] = None,
) -> Sequence[WaitlistEntry]:
    stmt = scoped_select(WaitlistEntry, tenant_id).options(
        selectinload(WaitlistEntry.service),
        selectinload(WaitlistEntry.employee),
        selectinload(WaitlistEntry.location),
    )
    if status is not None:
        stmt = stmt.where(WaitlistEntry.status == status)
    result = await session.execute(
        stmt.order_by(WaitlistEntry.priority.desc(), WaitlistEntry.created_at.asc())
    )
    return result.scalars().all()


def _new_entry(
    tenant_id: uuid.UUID,
    data: WaitlistEntryRequest,
    customer_id: Optional[uuid.UUID],
    priority: int,
) -> WaitlistEntry:
    return WaitlistEntry(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        service_id=data.service_id,
        employee_id=data.employee_id,
        location_id=data.location_id,
        customer_id=customer_id,
        customer_name=data.customer_name,
        customer_email=data.customer_email or None,
        customer_phone=data.customer_phone or None,
        preferred_date_from=data.preferred_date_from,
        preferred_date_to=data.preferred_date_to,
        preferred_time_from=data.preferred_time_from,
        preferred_time_to=data.preferred_time_to,
        notes=data.notes or None,
        priority=priority,
        status=WaitlistStatus.WAITING,
        notification_count=0,
    )


async def add_waitlist_entry(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    data: WaitlistEntryRequest,
) -> WaitlistEntry:
    """Staff-side add; priority and customer link are taken as given."""
    validate_entry_request(data)
    entry = _new_entry(tenant_id, data, data.customer_id, data.priority)
    session.add(entry)
    await session.commit()
    logger.info(f"Waitlist entry {entry.id} added for tenant {tenant_id}")
    return entry


async def add_public_waitlist_entry(
    session: AsyncSession,
    tenant_slug: Optional[str],
    data: WaitlistEntryRequest,
) -> WaitlistEntry:
    """
    Self-service add from the booking page.

    Priority is always 0. An existing customer with the same email is linked.
    """
    if not tenant_slug:
        raise BadRequest(messages.REQUIRED_FIELDS_MISSING)
    validate_entry_request(data)

    tenant = await resolve_tenant_by_slug(session, tenant_slug)
    if tenant is None:
        raise NotFound(messages.CLINIC_NOT_FOUND)

    customer_id = None
    if data.customer_email:
        customer = await find_customer_by_email(session, tenant.id, data.customer_email)
        customer_id = customer.id if customer else None

    entry = _new_entry(tenant.id, data, customer_id, priority=0)
    session.add(entry)
    await session.commit()
    logger.info(f"Public waitlist entry {entry.id} added for {tenant.slug}")
    return entry


async def _get_owned_entry(session: AsyncSession, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> WaitlistEntry:
    entry = await require_owned(session, WaitlistEntry, entry_id, tenant_id)
    if entry is None:
        raise NotFound(messages.WAITLIST_ENTRY_NOT_FOUND)
    return entry


async def update_waitlist_status(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    entry_id: uuid.UUID,
    status: WaitlistStatus,
) -> WaitlistEntry:
    entry = await _get_owned_entry(session, tenant_id, entry_id)
    if status == WaitlistStatus.NOTIFIED:
        mark_notified(entry)
    else:
        entry.status = status
    await session.commit()
    return entry


async def delete_waitlist_entry(session: AsyncSession, tenant_id: uuid.UUID, entry_id: uuid.UUID) -> None:
    await session.execute(
        delete(WaitlistEntry).where(WaitlistEntry.id == entry_id, WaitlistEntry.tenant_id == tenant_id)
    )
    await session.commit()


async def notify_waitlist_entry(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    entry_id: uuid.UUID,
    slot_date: str,
    slot_time: str,
    booking_url: Optional[str] = None,
) -> str:
    """Build the WhatsApp link for an entry and mark it notified."""
    result = await session.execute(
        scoped_select(WaitlistEntry, tenant_id)
        .where(WaitlistEntry.id == entry_id)
        .options(selectinload(WaitlistEntry.service))
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFound(messages.WAITLIST_ENTRY_NOT_FOUND)

    tenant = await session.get(Tenant, tenant_id)
    link = build_notification_link(
        entry,
        service_name=entry.service.name if entry.service else None,
        slot_date=slot_date,
        slot_time=slot_time,
        clinic_name=tenant.name,
        booking_url=booking_url or f"{get_settings().site_url.rstrip('/')}/book/{tenant.slug}",
    )
    mark_notified(entry)
    await session.commit()
    logger.info(f"Waitlist entry {entry.id} notified ({entry.notification_count}x)")
    return link


async def find_waitlist_matches(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    service_id: uuid.UUID,
    slot_date: date,
    slot_time: time,
    employee_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
) -> list[WaitlistEntry]:
    """Waiting entries that would accept a freed slot, best candidates first."""
    stmt = (
        scoped_select(WaitlistEntry, tenant_id)
        .where(
            WaitlistEntry.service_id == service_id,
            WaitlistEntry.status == WaitlistStatus.WAITING,
            WaitlistEntry.preferred_date_from <= slot_date,
            WaitlistEntry.preferred_date_to >= slot_date,
        )
        .options(selectinload(WaitlistEntry.service), selectinload(WaitlistEntry.employee))
        .order_by(WaitlistEntry.priority.desc(), WaitlistEntry.created_at.asc())
        .limit(MATCH_LIMIT)
    )
    if location_id is not None:
        stmt = stmt.where(or_(WaitlistEntry.location_id == location_id, WaitlistEntry.location_id.is_(None)))
    result = await session.execute(stmt)
    return [
        entry
        for entry in result.scalars().all()
        if matches_time_preference(entry, slot_time) and matches_employee_preference(entry, employee_id)
    ]


def _parse_status(value: str) -> WaitlistStatus:
    try:
        return WaitlistStatus(value)
    except ValueError:
        raise BadRequest(messages.INVALID_WAITLIST_STATUS)


def serialize_entry(entry: WaitlistEntry) -> dict:
    return WaitlistEntryOut.model_validate(entry).model_dump(mode="json")


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@router.get("")
async def get_waitlist(
    status: Optional[str] = None,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    wanted = _parse_status(status) if status else None
    entries = await list_waitlist(session, ctx.tenant_id, wanted)
    return {"entries": [serialize_entry(e) for e in entries]}


@router.post("", status_code=201)
async def create_waitlist_entry(
    payload: WaitlistEntryRequest,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    entry = await add_waitlist_entry(session, ctx.tenant_id, payload)
    return {"success": True, "id": str(entry.id)}


@router.get("/count")
async def get_waitlist_count(
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    return {"count": await count_waiting(session, ctx.tenant_id)}


@router.get("/matches")
async def get_waitlist_matches(
    service_id: uuid.UUID,
    slot_date: date = Query(alias="date"),
    slot_time: time = Query(alias="time"),
    employee_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    matches = await find_waitlist_matches(
        session, ctx.tenant_id, service_id, slot_date, slot_time, employee_id, location_id
    )
    return {"matches": [serialize_entry(e) for e in matches]}


@router.patch("/{entry_id}")
async def patch_waitlist_entry(
    entry_id: uuid.UUID,
    payload: WaitlistStatusUpdate,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    entry = await update_waitlist_status(session, ctx.tenant_id, entry_id, _parse_status(payload.status))
    return {"success": True, "status": entry.status.value, "notification_count": entry.notification_count}


@router.delete("/{entry_id}")
async def remove_waitlist_entry(
    entry_id: uuid.UUID,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    await delete_waitlist_entry(session, ctx.tenant_id, entry_id)
    return {"success": True}


@router.post("/{entry_id}/notify")
async def notify_entry(
    entry_id: uuid.UUID,
    payload: NotifyRequest,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    link = await notify_waitlist_entry(
        session, ctx.tenant_id, entry_id, payload.date, payload.time, payload.booking_url
    )
    return {"link": link}
