"""
Tests for the appointment confirmation workflow.

Covers the customer transition rule, token generation, the service-level
confirm/decline calls and the /api/confirm routes.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from clinicbook.confirmation import (
    TOKEN_ALPHABET,
    apply_customer_response,
    can_transition,
    check_transition,
    confirm_appointment,
    decline_appointment,
    generate_confirmation_token,
    get_appointment_by_token,
)
from clinicbook.core.responses import Conflict
from clinicbook.models import (
    Appointment,
    AppointmentStatus,
    Customer,
    CustomerResponse,
    Service,
    Tenant,
)

from conftest import make_result


def make_appointment(status=AppointmentStatus.SCHEDULED, response=None) -> Appointment:
    tenant_id = uuid.uuid4()
    start = datetime(2026, 11, 3, 10, 0, tzinfo=timezone.utc)
    appointment = Appointment(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        customer_id=uuid.uuid4(),
        service_id=uuid.uuid4(),
        start_time=start,
        end_time=start + timedelta(minutes=45),
        status=status,
        customer_response=response,
        confirmation_token="abc123",
    )
    appointment.customer = Customer(first_name="Anna", last_name="Schmidt", email="anna@example.de")
    appointment.service = Service(name="Hydrafacial", duration_minutes=45, price=Decimal("129.00"))
    appointment.tenant = Tenant(
        id=tenant_id,
        slug="beauty-berlin",
        name="Beauty Berlin",
        contact_phone="030 123456",
    )
    return appointment


# ────────────────────────────────────────────────────────────────
# Transition rule
# ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "current,target",
    [
        (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.CANCELLED, AppointmentStatus.CANCELLED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.NO_SHOW, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.NO_SHOW, AppointmentStatus.CANCELLED),
    ],
)
def test_terminal_states_reject_changes(current, target):
    assert not can_transition(current, target)
    with pytest.raises(Conflict) as exc_info:
        check_transition(current, target)
    assert exc_info.value.status_code == 409


def test_confirm_sets_all_fields():
    appointment = make_appointment()
    now = datetime(2026, 11, 1, 9, 0, tzinfo=timezone.utc)

    apply_customer_response(appointment, CustomerResponse.CONFIRMED, now=now)

    assert appointment.status == AppointmentStatus.CONFIRMED
    assert appointment.customer_response == CustomerResponse.CONFIRMED
    assert appointment.customer_confirmed_at == now


def test_confirm_then_decline_ends_declined():
    appointment = make_appointment()

    apply_customer_response(appointment, CustomerResponse.CONFIRMED)
    apply_customer_response(appointment, CustomerResponse.DECLINED)

    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.customer_response == CustomerResponse.DECLINED


def test_decline_then_confirm_is_rejected():
    appointment = make_appointment()
    apply_customer_response(appointment, CustomerResponse.DECLINED)

    with pytest.raises(Conflict):
        apply_customer_response(appointment, CustomerResponse.CONFIRMED)

    # Nothing written by the rejected call
    assert appointment.status == AppointmentStatus.CANCELLED
    assert appointment.customer_response == CustomerResponse.DECLINED


def test_reconfirm_is_idempotent():
    appointment = make_appointment(AppointmentStatus.CONFIRMED, CustomerResponse.CONFIRMED)

    apply_customer_response(appointment, CustomerResponse.CONFIRMED)

    assert appointment.status == AppointmentStatus.CONFIRMED


def test_generated_tokens_are_long_and_unique():
    tokens = {generate_confirmation_token() for _ in range(200)}

    assert len(tokens) == 200
    for token in tokens:
        assert len(token) == 32
        assert set(token) <= set(TOKEN_ALPHABET)


# ────────────────────────────────────────────────────────────────
# Service calls
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lookup_unknown_token_returns_not_found(mock_session):
    mock_session.execute.return_value = make_result(None)

    lookup = await get_appointment_by_token(mock_session, "nope")

    assert lookup.appointment is None
    assert lookup.error == "Termin nicht gefunden"


@pytest.mark.asyncio
async def test_lookup_backend_error_is_not_raised(mock_session):
    mock_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

    lookup = await get_appointment_by_token(mock_session, "abc123")

    assert lookup.appointment is None
    assert lookup.error == "Termin nicht gefunden"


@pytest.mark.asyncio
async def test_lookup_returns_details(mock_session):
    mock_session.execute.return_value = make_result(make_appointment())

    lookup = await get_appointment_by_token(mock_session, "abc123")

    assert lookup.error is None
    assert lookup.appointment.customer.first_name == "Anna"
    assert lookup.appointment.service.name == "Hydrafacial"
    assert lookup.appointment.tenant.contact_phone == "030 123456"


@pytest.mark.asyncio
async def test_confirm_commits(mock_session):
    appointment = make_appointment()
    mock_session.execute.return_value = make_result(appointment)

    result = await confirm_appointment(mock_session, "abc123")

    assert result.success
    assert result.status == AppointmentStatus.CONFIRMED
    mock_session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_unknown_token_and_backend_error_look_the_same(mock_session):
    mock_session.execute.return_value = make_result(None)
    missing = await decline_appointment(mock_session, "nope")

    mock_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
    failed = await decline_appointment(mock_session, "abc123")

    assert not missing.success and not failed.success
    assert missing.error == failed.error


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_show_unknown_token_404(client, mock_session):
    mock_session.execute.return_value = make_result(None)

    response = await client.get("/api/confirm/unknown")

    assert response.status_code == 404
    assert response.json() == {"error": "Termin nicht gefunden"}


@pytest.mark.asyncio
async def test_decline_route(client, mock_session):
    appointment = make_appointment()
    mock_session.execute.return_value = make_result(appointment)

    response = await client.post("/api/confirm/abc123/decline")

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "cancelled"}
    assert appointment.customer_response == CustomerResponse.DECLINED


@pytest.mark.asyncio
async def test_confirm_after_completion_conflicts(client, mock_session):
    mock_session.execute.return_value = make_result(make_appointment(AppointmentStatus.COMPLETED))

    response = await client.post("/api/confirm/abc123/confirm")

    assert response.status_code == 409
    assert "error" in response.json()
    mock_session.commit.assert_not_awaited()
