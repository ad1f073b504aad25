"""
Tenant-scoped query helpers.

ALL reads of tenant-owned tables go through these helpers or carry an
explicit ``tenant_id`` filter.

Usage:
    from clinicbook.tenancy.queries import list_services, scoped_select

    services = await list_services(session, ctx.tenant_id)
    stmt = scoped_select(Service, tenant_id).where(Service.is_active.is_(True))
"""

import uuid
from datetime import datetime
from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, selectinload

from ..models import (
    Appointment,
    Customer,
    Employee,
    Faq,
    Location,
    Service,
    WaitlistEntry,
    WaitlistStatus,
)

T = TypeVar("T", bound=DeclarativeBase)


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], tenant_id: uuid.UUID) -> Select:
    """SELECT pre-filtered by tenant_id."""
    return select(model).where(model.tenant_id == tenant_id)


def tenant_filter(model: Type[T], tenant_id: uuid.UUID):
    return model.tenant_id == tenant_id


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id: uuid.UUID,
    tenant_id: uuid.UUID,
) -> Optional[T]:
    """
    Fetch an entity by id, validating tenant ownership.
    Returns None if not found or owned by another tenant.
    """
    result = await session.execute(
        select(model).where(model.id == entity_id, model.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Catalog
# ────────────────────────────────────────────────────────────────

async def list_services(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    active_only: bool = False,
) -> Sequence[Service]:
    stmt = scoped_select(Service, tenant_id)
    if active_only:
        stmt = stmt.where(Service.is_active.is_(True))
    result = await session.execute(stmt.order_by(Service.category, Service.name))
    return result.scalars().all()


async def list_employees(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    active_only: bool = False,
) -> Sequence[Employee]:
    stmt = scoped_select(Employee, tenant_id)
    if active_only:
        stmt = stmt.where(Employee.is_active.is_(True))
    result = await session.execute(stmt.order_by(Employee.first_name, Employee.last_name))
    return result.scalars().all()


async def list_active_employees(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[Employee]:
    return await list_employees(session, tenant_id, active_only=True)


async def list_locations(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[Location]:
    result = await session.execute(
        scoped_select(Location, tenant_id).order_by(Location.is_primary.desc(), Location.name)
    )
    return result.scalars().all()


async def list_active_faqs(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[Faq]:
    result = await session.execute(
        scoped_select(Faq, tenant_id).where(Faq.is_active.is_(True))
    )
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Customers
# ────────────────────────────────────────────────────────────────

async def list_customers(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[Customer]:
    result = await session.execute(
        scoped_select(Customer, tenant_id).order_by(Customer.last_name, Customer.first_name)
    )
    return result.scalars().all()


async def find_customer_by_email(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    email: str,
) -> Optional[Customer]:
    result = await session.execute(
        scoped_select(Customer, tenant_id)
        .where(func.lower(Customer.email) == email.strip().lower())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_customers(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count()).select_from(Customer).where(tenant_filter(Customer, tenant_id))
    )
    return result.scalar_one()


# ────────────────────────────────────────────────────────────────
# Appointments
# ────────────────────────────────────────────────────────────────

async def list_appointments(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Sequence[Appointment]:
    """Appointments with customer and service loaded, ordered by start time."""
    stmt = scoped_select(Appointment, tenant_id).options(
        selectinload(Appointment.customer),
        selectinload(Appointment.service),
        selectinload(Appointment.employee),
    )
    if start is not None:
        stmt = stmt.where(Appointment.start_time >= start)
    if end is not None:
        stmt = stmt.where(Appointment.start_time < end)
    result = await session.execute(stmt.order_by(Appointment.start_time))
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Waitlist
# ────────────────────────────────────────────────────────────────

async def count_waiting(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(WaitlistEntry)
        .where(
            tenant_filter(WaitlistEntry, tenant_id),
            WaitlistEntry.status == WaitlistStatus.WAITING,
        )
    )
    return result.scalar_one()
