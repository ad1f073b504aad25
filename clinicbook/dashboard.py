"""
Dashboard page loaders.

Each page needs several independent lists. They are read concurrently, each
on its own session from the shared session factory, and merged into one view
model. A failing read fails the whole page.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.config import get_settings
from .core.db import get_session_factory
from .core.request_context import StaffContext, require_staff_page
from .models import (
    Appointment,
    AppointmentStatus,
    Customer,
    CustomerPackage,
    Employee,
    Package,
    Service,
    Tenant,
    WaitlistEntry,
)
from .packages import list_customer_packages, list_packages, serialize_customer_package, serialize_package
from .social_media import get_average_rating
from .tenancy.context import set_db_tenant
from .tenancy.queries import (
    count_customers,
    count_waiting,
    list_active_employees,
    list_appointments,
    list_customers,
    list_employees,
    list_services,
)
from .waitlist import list_waitlist, serialize_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

DEFAULT_CLINIC_NAME = "Ihre Klinik"


# ────────────────────────────────────────────────────────────────
# View models
# ────────────────────────────────────────────────────────────────

@dataclass
class ClinicSettings:
    slug: Optional[str]
    name: str


@dataclass
class CalendarData:
    appointments: Sequence[Appointment]
    customers: Sequence[Customer]
    services: Sequence[Service]
    employees: Sequence[Employee]


@dataclass
class WaitlistPageData:
    entries: Sequence[WaitlistEntry]
    services: Sequence[Service]
    customers: Sequence[Customer]
    employees: Sequence[Employee]
    settings: ClinicSettings


@dataclass
class PackagesPageData:
    packages: Sequence[Package]
    customer_packages: Sequence[CustomerPackage]
    services: Sequence[Service]
    customers: Sequence[Customer]


@dataclass
class OverviewData:
    today_appointments: Sequence[Appointment]
    waiting_count: int
    customer_count: int
    average_rating: Optional[float]
    review_count: int


class _CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class _ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    category: Optional[str] = None
    price: Decimal
    duration_minutes: int
    is_active: bool


class _EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    role: str
    is_active: bool


class _AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    employee_id: Optional[uuid.UUID] = None
    customer_notes: Optional[str] = None
    customer: Optional[_CustomerOut] = None
    service: Optional[_ServiceOut] = None


def _dump(model: type[BaseModel], rows: Sequence[Any]) -> list[dict]:
    return [model.model_validate(row).model_dump(mode="json") for row in rows]


# ────────────────────────────────────────────────────────────────
# Fan-out helpers
# ────────────────────────────────────────────────────────────────

async def _read(
    session_factory: async_sessionmaker,
    tenant_id: uuid.UUID,
    reader: Callable[..., Awaitable[Any]],
    *args: Any,
) -> Any:
    """Run one reader on a fresh session bound to the tenant."""
    async with session_factory() as session:
        await set_db_tenant(session, tenant_id)
        return await reader(session, tenant_id, *args)


async def get_clinic_settings(session: AsyncSession, tenant_id: uuid.UUID) -> ClinicSettings:
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        return ClinicSettings(slug=None, name=DEFAULT_CLINIC_NAME)
    return ClinicSettings(slug=tenant.slug, name=tenant.name or DEFAULT_CLINIC_NAME)


def day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


# ────────────────────────────────────────────────────────────────
# Loaders
# ────────────────────────────────────────────────────────────────

async def load_calendar_data(
    session_factory: async_sessionmaker,
    tenant_id: uuid.UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> CalendarData:
    appointments, customers, services, employees = await asyncio.gather(
        _read(session_factory, tenant_id, list_appointments, start, end),
        _read(session_factory, tenant_id, list_customers),
        _read(session_factory, tenant_id, list_services),
        _read(session_factory, tenant_id, list_active_employees),
    )
    return CalendarData(appointments=appointments, customers=customers, services=services, employees=employees)


async def load_waitlist_data(session_factory: async_sessionmaker, tenant_id: uuid.UUID) -> WaitlistPageData:
    entries, services, customers, employees, settings = await asyncio.gather(
        _read(session_factory, tenant_id, list_waitlist),
        _read(session_factory, tenant_id, list_services),
        _read(session_factory, tenant_id, list_customers),
        _read(session_factory, tenant_id, list_employees),
        _read(session_factory, tenant_id, get_clinic_settings),
    )
    return WaitlistPageData(
        entries=entries,
        services=services,
        customers=customers,
        employees=employees,
        settings=settings,
    )


async def load_packages_data(session_factory: async_sessionmaker, tenant_id: uuid.UUID) -> PackagesPageData:
    packages, customer_packages, services, customers = await asyncio.gather(
        _read(session_factory, tenant_id, list_packages),
        _read(session_factory, tenant_id, list_customer_packages),
        _read(session_factory, tenant_id, list_services),
        _read(session_factory, tenant_id, list_customers),
    )
    return PackagesPageData(
        packages=packages,
        customer_packages=customer_packages,
        services=services,
        customers=customers,
    )


async def load_overview_data(
    session_factory: async_sessionmaker,
    tenant_id: uuid.UUID,
    today: Optional[date] = None,
) -> OverviewData:
    tz_name = get_settings().default_timezone
    today = today or datetime.now(ZoneInfo(tz_name)).date()
    start, end = day_bounds(today, tz_name)
    appointments, waiting, customers, (average, reviews) = await asyncio.gather(
        _read(session_factory, tenant_id, list_appointments, start, end),
        _read(session_factory, tenant_id, count_waiting),
        _read(session_factory, tenant_id, count_customers),
        _read(session_factory, tenant_id, get_average_rating),
    )
    return OverviewData(
        today_appointments=appointments,
        waiting_count=waiting,
        customer_count=customers,
        average_rating=average,
        review_count=reviews,
    )


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@router.get("")
async def overview_page(
    ctx: StaffContext = Depends(require_staff_page),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    data = await load_overview_data(session_factory, ctx.tenant_id)
    return {
        "today_appointments": _dump(_AppointmentOut, data.today_appointments),
        "waiting_count": data.waiting_count,
        "customer_count": data.customer_count,
        "average_rating": data.average_rating,
        "review_count": data.review_count,
    }


@router.get("/calendar")
async def calendar_page(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    ctx: StaffContext = Depends(require_staff_page),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    data = await load_calendar_data(session_factory, ctx.tenant_id, start, end)
    return {
        "appointments": _dump(_AppointmentOut, data.appointments),
        "customers": _dump(_CustomerOut, data.customers),
        "services": _dump(_ServiceOut, data.services),
        "employees": _dump(_EmployeeOut, data.employees),
    }


@router.get("/waitlist")
async def waitlist_page(
    ctx: StaffContext = Depends(require_staff_page),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    data = await load_waitlist_data(session_factory, ctx.tenant_id)
    return {
        "entries": [serialize_entry(e) for e in data.entries],
        "services": _dump(_ServiceOut, data.services),
        "customers": _dump(_CustomerOut, data.customers),
        "employees": _dump(_EmployeeOut, data.employees),
        "tenant": {"slug": data.settings.slug, "name": data.settings.name},
    }


@router.get("/packages")
async def packages_page(
    ctx: StaffContext = Depends(require_staff_page),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    data = await load_packages_data(session_factory, ctx.tenant_id)
    return {
        "packages": [serialize_package(p) for p in data.packages],
        "customer_packages": [serialize_customer_package(cp) for cp in data.customer_packages],
        "services": _dump(_ServiceOut, data.services),
        "customers": _dump(_CustomerOut, data.customers),
    }
