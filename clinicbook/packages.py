"""
Treatment packages.

Two kinds of package are sold:

    bundle    a fixed set of services (package_items), used once
    multiuse  N uses of a single service ("5x Hydrafacial")

Selling a package creates a customer_packages row carrying its own use
counter; each redemption decrements it and the row becomes ``fully_used``
when it reaches zero.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .core import messages
from .core.db import get_session
from .core.request_context import StaffContext, get_staff_context
from .core.responses import BadRequest, NotFound
from .models import (
    CustomerPackage,
    CustomerPackageStatus,
    Package,
    PackageItem,
    PackageRedemption,
    PackageType,
)
from .tenancy.queries import require_owned, scoped_select

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/packages", tags=["packages"])
customer_packages_router = APIRouter(prefix="/api/customer-packages", tags=["packages"])

# Purchases that count against max_per_customer
COUNTED_STATUSES = (CustomerPackageStatus.ACTIVE, CustomerPackageStatus.FULLY_USED)

CENT = Decimal("0.01")


# ────────────────────────────────────────────────────────────────
# Schemas
# ────────────────────────────────────────────────────────────────

class PackageItemIn(BaseModel):
    service_id: uuid.UUID
    quantity: int = 1


class PackageRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    package_type: Optional[PackageType] = None
    service_id: Optional[uuid.UUID] = None
    total_uses: Optional[int] = None
    original_price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    validity_days: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    is_featured: bool = False
    max_purchases: Optional[int] = None
    max_per_customer: Optional[int] = None
    location_id: Optional[uuid.UUID] = None
    items: list[PackageItemIn] = []


class PackageItemsUpdate(BaseModel):
    items: list[PackageItemIn]


class SellPackageRequest(BaseModel):
    package_id: uuid.UUID
    customer_id: uuid.UUID
    notes: Optional[str] = None


class RedeemRequest(BaseModel):
    appointment_id: Optional[uuid.UUID] = None
    service_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None


class PackageItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    service_id: uuid.UUID
    quantity: int


class PackageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    package_type: PackageType
    service_id: Optional[uuid.UUID] = None
    total_uses: int
    original_price: Decimal
    sale_price: Decimal
    discount_percentage: Optional[Decimal] = None
    validity_days: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool
    is_featured: bool
    max_purchases: Optional[int] = None
    max_per_customer: int
    location_id: Optional[uuid.UUID] = None
    items: list[PackageItemOut] = []


class _PackageRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    package_type: PackageType
    service_id: Optional[uuid.UUID] = None


class _CustomerRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str


class CustomerPackageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    package_id: uuid.UUID
    purchase_price: Decimal
    purchased_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    total_uses: int
    uses_remaining: int
    status: CustomerPackageStatus
    notes: Optional[str] = None
    package: Optional[_PackageRef] = None
    customer: Optional[_CustomerRef] = None


# ────────────────────────────────────────────────────────────────
# Rules
# ────────────────────────────────────────────────────────────────

def calculate_discount(original_price: Decimal, sale_price: Decimal) -> Optional[Decimal]:
    """Discount in percent, two decimals; None when there is no original price."""
    if original_price <= 0:
        return None
    percent = (original_price - sale_price) / original_price * 100
    return percent.quantize(CENT, rounding=ROUND_HALF_UP)


def package_shape(
    package_type: PackageType,
    service_id: Optional[uuid.UUID],
    total_uses: Optional[int],
) -> tuple[Optional[uuid.UUID], int]:
    """Only multiuse packages carry a service and a use count; bundles are used once."""
    if package_type == PackageType.MULTIUSE:
        return service_id, total_uses or 1
    return None, 1


def compute_expiry(validity_days: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
    if not validity_days:
        return None
    return (now or datetime.now(timezone.utc)) + timedelta(days=validity_days)


def check_redeemable(customer_package: CustomerPackage) -> None:
    if customer_package.status != CustomerPackageStatus.ACTIVE:
        raise BadRequest(messages.PACKAGE_NOT_ACTIVE)
    if customer_package.uses_remaining <= 0:
        raise BadRequest(messages.PACKAGE_NO_USES_LEFT)


def apply_redemption(customer_package: CustomerPackage) -> CustomerPackage:
    check_redeemable(customer_package)
    customer_package.uses_remaining -= 1
    if customer_package.uses_remaining == 0:
        customer_package.status = CustomerPackageStatus.FULLY_USED
    return customer_package


def package_covers_service(package: Package, service_id: uuid.UUID) -> bool:
    if package.package_type == PackageType.MULTIUSE:
        return package.service_id == service_id
    return any(item.service_id == service_id for item in package.items)


def _validate_package_request(data: PackageRequest) -> None:
    if not data.name or data.package_type is None or data.original_price is None or data.sale_price is None:
        raise BadRequest(messages.REQUIRED_FIELDS_MISSING)


def _apply_package_fields(package: Package, data: PackageRequest) -> Package:
    service_id, total_uses = package_shape(data.package_type, data.service_id, data.total_uses)
    package.location_id = data.location_id
    package.name = data.name
    package.description = data.description or None
    package.package_type = data.package_type
    package.service_id = service_id
    package.total_uses = total_uses
    package.original_price = data.original_price
    package.sale_price = data.sale_price
    package.discount_percentage = calculate_discount(data.original_price, data.sale_price)
    package.validity_days = data.validity_days
    package.valid_from = data.valid_from
    package.valid_until = data.valid_until
    package.is_active = data.is_active
    package.is_featured = data.is_featured
    package.max_purchases = data.max_purchases
    package.max_per_customer = data.max_per_customer or 1
    return package


# ────────────────────────────────────────────────────────────────
# Operations
# ────────────────────────────────────────────────────────────────

async def list_packages(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[Package]:
    result = await session.execute(
        scoped_select(Package, tenant_id)
        .options(selectinload(Package.items))
        .order_by(Package.created_at.desc())
    )
    return result.scalars().all()


async def list_active_packages(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    location_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Sequence[Package]:
    """Packages currently on sale, featured first."""
    now = now or datetime.now(timezone.utc)
    stmt = (
        scoped_select(Package, tenant_id)
        .where(
            Package.is_active.is_(True),
            or_(Package.valid_from.is_(None), Package.valid_from <= now),
            or_(Package.valid_until.is_(None), Package.valid_until >= now),
        )
        .options(selectinload(Package.items).selectinload(PackageItem.service), selectinload(Package.service))
        .order_by(Package.is_featured.desc(), Package.created_at.desc())
    )
    if location_id is not None:
        stmt = stmt.where(or_(Package.location_id.is_(None), Package.location_id == location_id))
    result = await session.execute(stmt)
    return result.scalars().all()


async def create_package(session: AsyncSession, tenant_id: uuid.UUID, data: PackageRequest) -> Package:
    _validate_package_request(data)
    package = _apply_package_fields(Package(id=uuid.uuid4(), tenant_id=tenant_id), data)
    session.add(package)
    for item in data.items:
        session.add(PackageItem(package_id=package.id, service_id=item.service_id, quantity=item.quantity))
    await session.commit()
    logger.info(f"Package {package.id} ({package.package_type.value}) created for tenant {tenant_id}")
    return package


async def _get_owned_package(session: AsyncSession, tenant_id: uuid.UUID, package_id: uuid.UUID) -> Package:
    package = await require_owned(session, Package, package_id, tenant_id)
    if package is None:
        raise NotFound(messages.PACKAGE_NOT_FOUND)
    return package


async def update_package(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    package_id: uuid.UUID,
    data: PackageRequest,
) -> Package:
    _validate_package_request(data)
    package = await _get_owned_package(session, tenant_id, package_id)
    _apply_package_fields(package, data)
    await session.commit()
    return package


async def replace_package_items(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    package_id: uuid.UUID,
    items: Sequence[PackageItemIn],
) -> None:
    await _get_owned_package(session, tenant_id, package_id)
    await session.execute(delete(PackageItem).where(PackageItem.package_id == package_id))
    for item in items:
        session.add(PackageItem(package_id=package_id, service_id=item.service_id, quantity=item.quantity))
    await session.commit()


async def delete_package(session: AsyncSession, tenant_id: uuid.UUID, package_id: uuid.UUID) -> None:
    await session.execute(delete(Package).where(Package.id == package_id, Package.tenant_id == tenant_id))
    await session.commit()


async def sell_package(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    package_id: uuid.UUID,
    customer_id: uuid.UUID,
    notes: Optional[str] = None,
) -> CustomerPackage:
    """
    Sell a package to a customer.

    Raises:
        NotFound: unknown package
        BadRequest: the customer already holds max_per_customer of it
    """
    package = await _get_owned_package(session, tenant_id, package_id)

    result = await session.execute(
        select(func.count())
        .select_from(CustomerPackage)
        .where(
            CustomerPackage.customer_id == customer_id,
            CustomerPackage.package_id == package_id,
            CustomerPackage.status.in_(COUNTED_STATUSES),
        )
    )
    owned = result.scalar_one()
    if owned >= package.max_per_customer:
        raise BadRequest(messages.PACKAGE_LIMIT_REACHED.format(limit=package.max_per_customer))

    customer_package = CustomerPackage(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        customer_id=customer_id,
        package_id=package_id,
        purchase_price=package.sale_price,
        total_uses=package.total_uses,
        uses_remaining=package.total_uses,
        expires_at=compute_expiry(package.validity_days),
        status=CustomerPackageStatus.ACTIVE,
        notes=notes or None,
    )
    session.add(customer_package)
    await session.commit()
    logger.info(f"Package {package_id} sold to customer {customer_id}")
    return customer_package


async def list_customer_packages(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    customer_id: Optional[uuid.UUID] = None,
    status: Optional[CustomerPackageStatus] = None,
) -> Sequence[CustomerPackage]:
    stmt = scoped_select(CustomerPackage, tenant_id).options(
        selectinload(CustomerPackage.package).selectinload(Package.items),
        selectinload(CustomerPackage.customer),
    )
    if customer_id is not None:
        stmt = stmt.where(CustomerPackage.customer_id == customer_id)
    if status is not None:
        stmt = stmt.where(CustomerPackage.status == status)
    result = await session.execute(stmt.order_by(CustomerPackage.purchased_at.desc()))
    return result.scalars().all()


async def list_redeemable_packages(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    customer_id: uuid.UUID,
    service_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> list[CustomerPackage]:
    """A customer's packages that still have uses and have not expired, optionally for one service."""
    now = now or datetime.now(timezone.utc)
    result = await session.execute(
        scoped_select(CustomerPackage, tenant_id)
        .where(
            CustomerPackage.customer_id == customer_id,
            CustomerPackage.status == CustomerPackageStatus.ACTIVE,
            CustomerPackage.uses_remaining > 0,
            or_(CustomerPackage.expires_at.is_(None), CustomerPackage.expires_at >= now),
        )
        .options(
            selectinload(CustomerPackage.package).selectinload(Package.items),
            selectinload(CustomerPackage.customer),
        )
    )
    packages = list(result.scalars().all())
    if service_id is None:
        return packages
    return [cp for cp in packages if cp.package and package_covers_service(cp.package, service_id)]


async def redeem_package_use(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    customer_package_id: uuid.UUID,
    redeemed_by: Optional[uuid.UUID] = None,
    appointment_id: Optional[uuid.UUID] = None,
    service_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
) -> CustomerPackage:
    result = await session.execute(
        scoped_select(CustomerPackage, tenant_id)
        .where(CustomerPackage.id == customer_package_id)
        .with_for_update()
    )
    customer_package = result.scalar_one_or_none()
    if customer_package is None:
        raise NotFound(messages.PACKAGE_NOT_FOUND)

    apply_redemption(customer_package)
    session.add(
        PackageRedemption(
            customer_package_id=customer_package.id,
            appointment_id=appointment_id,
            service_id=service_id,
            redeemed_by=redeemed_by,
            notes=notes or None,
        )
    )
    await session.commit()
    logger.info(
        f"Customer package {customer_package.id} redeemed, {customer_package.uses_remaining} uses left"
    )
    return customer_package


def serialize_package(package: Package) -> dict:
    return PackageOut.model_validate(package).model_dump(mode="json")


def serialize_customer_package(customer_package: CustomerPackage) -> dict:
    return CustomerPackageOut.model_validate(customer_package).model_dump(mode="json")


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@router.get("")
async def get_packages(
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    return {"packages": [serialize_package(p) for p in await list_packages(session, ctx.tenant_id)]}


@router.post("", status_code=201)
async def post_package(
    payload: PackageRequest,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    package = await create_package(session, ctx.tenant_id, payload)
    return {"success": True, "id": str(package.id), "discount_percentage": package.discount_percentage}


@router.post("/sell", status_code=201)
async def post_sell_package(
    payload: SellPackageRequest,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    customer_package = await sell_package(
        session, ctx.tenant_id, payload.package_id, payload.customer_id, payload.notes
    )
    return {"success": True, "id": str(customer_package.id)}


@router.put("/{package_id}")
async def put_package(
    package_id: uuid.UUID,
    payload: PackageRequest,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    await update_package(session, ctx.tenant_id, package_id, payload)
    return {"success": True}


@router.put("/{package_id}/items")
async def put_package_items(
    package_id: uuid.UUID,
    payload: PackageItemsUpdate,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    await replace_package_items(session, ctx.tenant_id, package_id, payload.items)
    return {"success": True}


@router.delete("/{package_id}")
async def remove_package(
    package_id: uuid.UUID,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    await delete_package(session, ctx.tenant_id, package_id)
    return {"success": True}


@customer_packages_router.get("")
async def get_customer_packages(
    customer_id: Optional[uuid.UUID] = None,
    status: Optional[CustomerPackageStatus] = None,
    service_id: Optional[uuid.UUID] = None,
    redeemable: bool = False,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    """All sold packages, or with ``redeemable=true`` a customer's usable ones (optionally for a service)."""
    if redeemable and customer_id is not None:
        packages = await list_redeemable_packages(session, ctx.tenant_id, customer_id, service_id)
    else:
        packages = await list_customer_packages(session, ctx.tenant_id, customer_id, status)
    return {"customer_packages": [serialize_customer_package(cp) for cp in packages]}


@customer_packages_router.post("/{customer_package_id}/redeem")
async def post_redeem(
    customer_package_id: uuid.UUID,
    payload: Optional[RedeemRequest] = None,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    payload = payload or RedeemRequest()
    customer_package = await redeem_package_use(
        session,
        ctx.tenant_id,
        customer_package_id,
        redeemed_by=ctx.user_id,
        appointment_id=payload.appointment_id,
        service_id=payload.service_id,
        notes=payload.notes,
    )
    return {
        "success": True,
        "uses_remaining": customer_package.uses_remaining,
        "status": customer_package.status.value,
    }
