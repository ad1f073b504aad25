"""Tests for the public booking page API."""
import uuid
from decimal import Decimal

import pytest

from clinicbook.models import (
    Employee,
    Location,
    Package,
    PackageType,
    Service,
    SubscriptionStatus,
    Tenant,
    WaitlistStatus,
)

from conftest import make_result


@pytest.fixture
def tenant():
    return Tenant(
        id=uuid.uuid4(),
        slug="beauty-berlin",
        name="Beauty Berlin",
        city="Berlin",
        subscription_status=SubscriptionStatus.TRIAL,
    )


@pytest.mark.asyncio
async def test_booking_page(client, mock_session, tenant):
    service = Service(id=uuid.uuid4(), name="Botox", price=Decimal("250.00"), duration_minutes=30)
    employee = Employee(id=uuid.uuid4(), first_name="Mia", last_name="Wolf", role="Ärztin", specialties=["Botox"])
    location = Location(id=uuid.uuid4(), name="Mitte", city="Berlin", is_primary=True)
    mock_session.execute.side_effect = [
        make_result(tenant),
        make_result(rows=[service]),
        make_result(rows=[employee]),
        make_result(rows=[location]),
    ]

    response = await client.get("/book/beauty-berlin")

    assert response.status_code == 200
    body = response.json()
    assert body["tenant"]["slug"] == "beauty-berlin"
    assert body["tenant"]["city"] == "Berlin"
    assert [s["name"] for s in body["services"]] == ["Botox"]
    assert body["employees"][0]["specialties"] == ["Botox"]
    assert body["locations"][0]["is_primary"] is True


@pytest.mark.asyncio
async def test_booking_packages(client, mock_session, tenant):
    package = Package(
        id=uuid.uuid4(),
        tenant_id=tenant.id,
        name="5x Hydrafacial",
        package_type=PackageType.MULTIUSE,
        total_uses=5,
        original_price=Decimal("645.00"),
        sale_price=Decimal("499.00"),
        discount_percentage=Decimal("22.64"),
        is_featured=True,
    )
    mock_session.execute.side_effect = [make_result(tenant), make_result(rows=[package])]

    response = await client.get("/book/beauty-berlin/packages")

    assert response.status_code == 200
    (out,) = response.json()["packages"]
    assert out["package_type"] == "multiuse"
    assert out["total_uses"] == 5
    assert out["items"] == []


@pytest.mark.asyncio
async def test_join_waitlist(client, mock_session, tenant):
    mock_session.execute.side_effect = [make_result(tenant), make_result(None)]

    response = await client.post(
        "/book/beauty-berlin/waitlist",
        json={
            "service_id": str(uuid.uuid4()),
            "customer_name": "Anna Schmidt",
            "customer_email": "anna@example.de",
            "preferred_date_from": "2026-11-01",
            "preferred_date_to": "2026-11-15",
            "preferred_time_from": "09:00",
            "priority": 99,
        },
    )

    assert response.status_code == 201
    entry = mock_session.add.call_args.args[0]
    assert response.json() == {"success": True, "id": str(entry.id)}
    assert entry.tenant_id == tenant.id
    assert entry.priority == 0
    assert entry.customer_id is None
    assert entry.status == WaitlistStatus.WAITING


@pytest.mark.asyncio
async def test_join_waitlist_unknown_clinic(client, mock_session):
    mock_session.execute.return_value = make_result(None)

    response = await client.post(
        "/book/nope/waitlist",
        json={
            "service_id": str(uuid.uuid4()),
            "customer_name": "Anna",
            "customer_phone": "0171 1234567",
            "preferred_date_from": "2026-11-01",
            "preferred_date_to": "2026-11-15",
        },
    )

    assert response.status_code == 404
    assert response.json() == {"error": "Klinik nicht gefunden"}


@pytest.mark.asyncio
async def test_appointment_by_unknown_token(client, mock_session):
    mock_session.execute.return_value = make_result(None)

    response = await client.get("/book/appointments/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Termin nicht gefunden"}
