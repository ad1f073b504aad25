"""
Appointment confirmation by link.

Customers receive a link carrying an opaque token and can confirm or decline
their appointment without logging in. The token is the only credential, so
it is generated with ``secrets`` and stored under a unique constraint.

Status changes driven by the customer go through ``check_transition``:

    scheduled  -> confirmed | cancelled
    confirmed  -> cancelled
    cancelled, completed, no_show are terminal

Re-sending the same answer is accepted and rewrites the same state.
"""

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .core import messages
from .core.db import get_session
from .core.responses import Conflict, error_response
from .models import Appointment, AppointmentStatus, CustomerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/confirm", tags=["confirmation"])

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 32

TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)

ALLOWED_TRANSITIONS = frozenset(
    {
        (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED),
        (AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
    }
)

RESPONSE_STATUS = {
    CustomerResponse.CONFIRMED: AppointmentStatus.CONFIRMED,
    CustomerResponse.DECLINED: AppointmentStatus.CANCELLED,
}


def generate_confirmation_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


# ────────────────────────────────────────────────────────────────
# Transition rule
# ────────────────────────────────────────────────────────────────

def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    if current == target:
        return True
    return (current, target) in ALLOWED_TRANSITIONS


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """Raise Conflict (409) when a customer answer may not move ``current`` to ``target``."""
    if not can_transition(current, target):
        logger.info(f"Rejected appointment transition {current.value} -> {target.value}")
        raise Conflict(messages.APPOINTMENT_ALREADY_CLOSED)


def apply_customer_response(
    appointment: Appointment,
    response: CustomerResponse,
    now: Optional[datetime] = None,
) -> Appointment:
    """Record the customer's answer on the appointment. Nothing else is touched."""
    target = RESPONSE_STATUS[response]
    check_transition(AppointmentStatus(appointment.status), target)
    appointment.customer_response = response
    appointment.status = target
    appointment.customer_confirmed_at = now or datetime.now(timezone.utc)
    return appointment


# ────────────────────────────────────────────────────────────────
# Views
# ────────────────────────────────────────────────────────────────

class ConfirmationCustomer(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    first_name: str
    last_name: str
    email: Optional[str] = None


class ConfirmationService(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    duration_minutes: int
    price: Decimal


class ConfirmationTenant(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    slug: str
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    whatsapp_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None


class ConfirmationAppointment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    customer_response: Optional[CustomerResponse] = None
    customer_confirmed_at: Optional[datetime] = None
    customer: ConfirmationCustomer
    service: ConfirmationService
    tenant: ConfirmationTenant


@dataclass
class ConfirmationLookup:
    """Either ``appointment`` is set, or ``error`` carries the not-found message."""

    appointment: Optional[ConfirmationAppointment]
    error: Optional[str] = None


@dataclass
class ConfirmationResult:
    success: bool
    status: Optional[AppointmentStatus] = None
    error: Optional[str] = None


# ────────────────────────────────────────────────────────────────
# Operations
# ────────────────────────────────────────────────────────────────

async def _find_by_token(session: AsyncSession, token: str, for_update: bool = False) -> Optional[Appointment]:
    stmt = (
        select(Appointment)
        .where(Appointment.confirmation_token == token)
        .options(
            selectinload(Appointment.customer),
            selectinload(Appointment.service),
            selectinload(Appointment.tenant),
        )
    )
    if for_update:
        stmt = stmt.with_for_update(of=Appointment)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_appointment_by_token(session: AsyncSession, token: str) -> ConfirmationLookup:
    """Look up the appointment behind a confirmation link. Never raises for a bad token."""
    try:
        appointment = await _find_by_token(session, token)
    except SQLAlchemyError:
        logger.exception("Confirmation lookup failed")
        appointment = None
    if appointment is None:
        return ConfirmationLookup(appointment=None, error=messages.APPOINTMENT_NOT_FOUND)
    return ConfirmationLookup(appointment=ConfirmationAppointment.model_validate(appointment))


async def respond_to_appointment(
    session: AsyncSession,
    token: str,
    response: CustomerResponse,
) -> ConfirmationResult:
    """
    Apply a customer's answer.

    Raises:
        Conflict: the appointment is already in a terminal state.
    """
    try:
        appointment = await _find_by_token(session, token, for_update=True)
        if appointment is None:
            logger.warning(f"Customer response '{response.value}' for unknown token")
            return ConfirmationResult(success=False, error=messages.UNEXPECTED_ERROR)
        apply_customer_response(appointment, response)
        await session.commit()
    except SQLAlchemyError:
        logger.exception(f"Failed to record customer response '{response.value}'")
        await session.rollback()
        return ConfirmationResult(success=False, error=messages.UNEXPECTED_ERROR)
    except Conflict:
        await session.rollback()
        raise

    logger.info(f"Appointment {appointment.id} {response.value} by customer")
    return ConfirmationResult(success=True, status=appointment.status)


async def confirm_appointment(session: AsyncSession, token: str) -> ConfirmationResult:
    return await respond_to_appointment(session, token, CustomerResponse.CONFIRMED)


async def decline_appointment(session: AsyncSession, token: str) -> ConfirmationResult:
    return await respond_to_appointment(session, token, CustomerResponse.DECLINED)


# ────────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────────

def _result_response(result: ConfirmationResult):
    if not result.success:
        return error_response(result.error or messages.UNEXPECTED_ERROR, 400)
    return {"success": True, "status": result.status.value}


@router.get("/{token}")
async def show_confirmation(token: str, session: AsyncSession = Depends(get_session)):
    lookup = await get_appointment_by_token(session, token)
    if lookup.appointment is None:
        return error_response(lookup.error, 404)
    return {"appointment": lookup.appointment.model_dump(mode="json")}


@router.post("/{token}/confirm")
async def confirm(token: str, session: AsyncSession = Depends(get_session)):
    return _result_response(await confirm_appointment(session, token))


@router.post("/{token}/decline")
async def decline(token: str, session: AsyncSession = Depends(get_session)):
    return _result_response(await decline_appointment(session, token))
