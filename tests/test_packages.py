"""
Tests for treatment packages: pricing, shape rules, selling limits and
redemption.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from clinicbook.core.responses import BadRequest, NotFound
from clinicbook.models import (
    CustomerPackage,
    CustomerPackageStatus,
    Package,
    PackageItem,
    PackageRedemption,
    PackageType,
)
from clinicbook.packages import (
    apply_redemption,
    calculate_discount,
    compute_expiry,
    list_redeemable_packages,
    package_covers_service,
    package_shape,
    redeem_package_use,
    sell_package,
)

from conftest import make_result


def make_customer_package(uses_remaining=3, status=CustomerPackageStatus.ACTIVE) -> CustomerPackage:
    return CustomerPackage(
        id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        customer_id=uuid.uuid4(),
        package_id=uuid.uuid4(),
        purchase_price=Decimal("499.00"),
        total_uses=5,
        uses_remaining=uses_remaining,
        status=status,
    )


def make_package(**kwargs) -> Package:
    defaults = {
        "id": uuid.uuid4(),
        "tenant_id": uuid.uuid4(),
        "name": "5x Hydrafacial",
        "package_type": PackageType.MULTIUSE,
        "service_id": uuid.uuid4(),
        "total_uses": 5,
        "original_price": Decimal("645.00"),
        "sale_price": Decimal("499.00"),
        "max_per_customer": 1,
    }
    return Package(**{**defaults, **kwargs})


# ────────────────────────────────────────────────────────────────
# Pricing and shape
# ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "original,sale,expected",
    [
        ("100.00", "79.99", Decimal("20.01")),
        ("30.00", "20.00", Decimal("33.33")),
        ("300.00", "100.00", Decimal("66.67")),
        ("50.00", "50.00", Decimal("0.00")),
    ],
)
def test_calculate_discount(original, sale, expected):
    assert calculate_discount(Decimal(original), Decimal(sale)) == expected


def test_discount_without_original_price():
    assert calculate_discount(Decimal("0"), Decimal("10")) is None


def test_multiuse_keeps_service_and_uses():
    service_id = uuid.uuid4()

    assert package_shape(PackageType.MULTIUSE, service_id, 5) == (service_id, 5)


def test_bundle_is_used_once_without_service():
    assert package_shape(PackageType.BUNDLE, uuid.uuid4(), 5) == (None, 1)


def test_compute_expiry():
    now = datetime(2026, 11, 1, tzinfo=timezone.utc)

    assert compute_expiry(90, now) == now + timedelta(days=90)
    assert compute_expiry(None, now) is None


def test_package_covers_service():
    service_id = uuid.uuid4()
    multiuse = make_package(service_id=service_id)
    bundle = make_package(package_type=PackageType.BUNDLE, service_id=None)
    bundle.items = [PackageItem(service_id=service_id, quantity=1), PackageItem(service_id=uuid.uuid4(), quantity=1)]

    assert package_covers_service(multiuse, service_id)
    assert not package_covers_service(multiuse, uuid.uuid4())
    assert package_covers_service(bundle, service_id)
    assert not package_covers_service(bundle, uuid.uuid4())


# ────────────────────────────────────────────────────────────────
# Redemption
# ────────────────────────────────────────────────────────────────

def test_redemption_decrements():
    cp = apply_redemption(make_customer_package(uses_remaining=3))

    assert cp.uses_remaining == 2
    assert cp.status == CustomerPackageStatus.ACTIVE


def test_last_redemption_marks_fully_used():
    cp = apply_redemption(make_customer_package(uses_remaining=1))

    assert cp.uses_remaining == 0
    assert cp.status == CustomerPackageStatus.FULLY_USED


def test_redeem_inactive_package():
    with pytest.raises(BadRequest) as exc_info:
        apply_redemption(make_customer_package(status=CustomerPackageStatus.EXPIRED))

    assert exc_info.value.message == "Paket ist nicht aktiv"


def test_redeem_without_uses_left():
    with pytest.raises(BadRequest) as exc_info:
        apply_redemption(make_customer_package(uses_remaining=0))

    assert exc_info.value.message == "Keine Verwendungen mehr übrig"


@pytest.mark.asyncio
async def test_redeem_records_redemption(mock_session):
    cp = make_customer_package(uses_remaining=2)
    staff_id, appointment_id = uuid.uuid4(), uuid.uuid4()
    mock_session.execute.return_value = make_result(cp)

    await redeem_package_use(mock_session, cp.tenant_id, cp.id, redeemed_by=staff_id, appointment_id=appointment_id)

    redemption = mock_session.add.call_args.args[0]
    assert isinstance(redemption, PackageRedemption)
    assert redemption.customer_package_id == cp.id
    assert redemption.redeemed_by == staff_id
    assert redemption.appointment_id == appointment_id
    assert cp.uses_remaining == 1
    mock_session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_redeem_unknown_package(mock_session):
    mock_session.execute.return_value = make_result(None)

    with pytest.raises(NotFound):
        await redeem_package_use(mock_session, uuid.uuid4(), uuid.uuid4())


@pytest.mark.asyncio
async def test_redeemable_packages_filtered_by_service(mock_session):
    service_id = uuid.uuid4()
    matching = make_customer_package()
    matching.package = make_package(service_id=service_id)
    other = make_customer_package()
    other.package = make_package()
    mock_session.execute.return_value = make_result(rows=[matching, other])

    packages = await list_redeemable_packages(mock_session, uuid.uuid4(), uuid.uuid4(), service_id)

    assert packages == [matching]


# ────────────────────────────────────────────────────────────────
# Selling
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_sell_copies_price_and_uses(mock_session):
    package = make_package(validity_days=365)
    customer_id = uuid.uuid4()
    mock_session.execute.side_effect = [make_result(package), make_result(0)]

    cp = await sell_package(mock_session, package.tenant_id, package.id, customer_id)

    assert cp.purchase_price == Decimal("499.00")
    assert cp.total_uses == cp.uses_remaining == 5
    assert cp.status == CustomerPackageStatus.ACTIVE
    assert cp.expires_at is not None
    mock_session.add.assert_called_once_with(cp)


@pytest.mark.asyncio
async def test_sell_respects_limit_per_customer(mock_session):
    package = make_package(max_per_customer=2)
    mock_session.execute.side_effect = [make_result(package), make_result(2)]

    with pytest.raises(BadRequest) as exc_info:
        await sell_package(mock_session, package.tenant_id, package.id, uuid.uuid4())

    assert exc_info.value.message == "Dieser Kunde hat bereits die maximale Anzahl (2) dieses Pakets"
    mock_session.add.assert_not_called()


@pytest.mark.asyncio
async def test_sell_unknown_package(mock_session):
    mock_session.execute.return_value = make_result(None)

    with pytest.raises(NotFound):
        await sell_package(mock_session, uuid.uuid4(), uuid.uuid4(), uuid.uuid4())


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_bundle_route(staff_client, staff_ctx, mock_session):
    service_a, service_b = uuid.uuid4(), uuid.uuid4()

    response = await staff_client.post(
        "/api/packages",
        json={
            "name": "Glow Bundle",
            "package_type": "bundle",
            "service_id": str(uuid.uuid4()),
            "total_uses": 5,
            "original_price": "100.00",
            "sale_price": "79.99",
            "items": [{"service_id": str(service_a)}, {"service_id": str(service_b), "quantity": 2}],
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert float(body["discount_percentage"]) == 20.01

    package, *items = [c.args[0] for c in mock_session.add.call_args_list]
    assert package.tenant_id == staff_ctx.tenant_id
    assert package.service_id is None
    assert package.total_uses == 1
    assert [(i.service_id, i.quantity) for i in items] == [(service_a, 1), (service_b, 2)]


@pytest.mark.asyncio
async def test_create_package_missing_fields(staff_client):
    response = await staff_client.post("/api/packages", json={"name": "Glow"})

    assert response.status_code == 400
    assert response.json() == {"error": "Bitte fülle alle Pflichtfelder aus"}


@pytest.mark.asyncio
async def test_redeem_route(staff_client, mock_session):
    cp = make_customer_package(uses_remaining=1)
    mock_session.execute.return_value = make_result(cp)

    response = await staff_client.post(f"/api/customer-packages/{cp.id}/redeem", json={})

    assert response.status_code == 200
    assert response.json() == {"success": True, "uses_remaining": 0, "status": "fully_used"}


@pytest.mark.asyncio
async def test_redeem_route_exhausted(staff_client, mock_session):
    cp = make_customer_package(uses_remaining=0, status=CustomerPackageStatus.FULLY_USED)
    mock_session.execute.return_value = make_result(cp)

    response = await staff_client.post(f"/api/customer-packages/{cp.id}/redeem")

    assert response.status_code == 400
    assert response.json() == {"error": "Paket ist nicht aktiv"}
    mock_session.commit.assert_not_awaited()
