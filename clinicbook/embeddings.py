
"""
Knowledge-base embeddings for the booking assistant.

Every tenant's knowledge base is rebuilt from its catalog: one document for
the clinic itself plus one per active service, active employee, active FAQ
and location. Each document is embedded with OpenAI and stored in pgvector,
replacing the previous vector of the same (tenant, content_type, content_id).

Feature flag:
    Without OPENAI_API_KEY every embedding attempt fails softly (counted as
    an error, never raised).

Usage:
    from clinicbook.embeddings import generate_tenant_embeddings

    result = await generate_tenant_embeddings(session, tenant_id)
"""

import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Depends
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .core import messages
from .core.config import get_settings
from .core.db import get_session
from .core.responses import error_response
from .models import Embedding, Employee, Faq, Location, Service, Tenant
from .tenancy.context import resolve_tenant_by_id, resolve_tenant_by_slug_prefix
from .tenancy.queries import list_active_employees, list_active_faqs, list_locations, list_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/embeddings", tags=["embeddings"])


class ContentType:
    GENERAL = "general"
    SERVICE = "service"
    EMPLOYEE = "employee"
    FAQ = "faq"
    LOCATION = "location"


@dataclass
class KnowledgeDocument:
    content_type: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    content_id: Optional[uuid.UUID] = None


@dataclass
class EmbeddingRunResult:
    success: bool
    processed: int
    errors: int


def _squash(text: str) -> str:
    """Collapse the whitespace left behind by empty optional fields."""
    return " ".join(text.split())


def _format_price(price) -> str:
    return f"{price:g}" if isinstance(price, float) else str(price)


# ============================================================================
# Document builders
# ============================================================================

def build_tenant_document(tenant: Tenant) -> KnowledgeDocument:
    place = f" in {tenant.city or tenant.address}" if tenant.city or tenant.address else ""
    return KnowledgeDocument(
        content_type=ContentType.GENERAL,
        content=f"{tenant.name} ist eine Schönheitsklinik{place}.",
        metadata={"name": tenant.name, "type": "clinic_info"},
    )


def build_service_document(service: Service) -> KnowledgeDocument:
    content = (
        f"Behandlung: {service.name}. {service.description or ''} "
        f"Preis: {_format_price(service.price)}€. "
        f"Dauer: {service.duration_minutes} Minuten. "
        f"Kategorie: {service.category or 'Allgemein'}."
    )
    return KnowledgeDocument(
        content_type=ContentType.SERVICE,
        content=_squash(content),
        metadata={
            "name": service.name,
            "price": str(service.price),
            "duration": service.duration_minutes,
            "category": service.category,
        },
        content_id=service.id,
    )


def build_employee_document(employee: Employee) -> KnowledgeDocument:
    specialties = ", ".join(employee.specialties or [])
    content = (
        f"Experte: {employee.first_name} {employee.last_name}, {employee.role}. "
        f"{employee.bio or ''} "
        f"{f'Spezialisierungen: {specialties}.' if specialties else ''}"
    )
    return KnowledgeDocument(
        content_type=ContentType.EMPLOYEE,
        content=_squash(content),
        metadata={
            "name": f"{employee.first_name} {employee.last_name}",
            "role": employee.role,
            "specialties": list(employee.specialties or []),
        },
        content_id=employee.id,
    )


def build_faq_document(faq: Faq) -> KnowledgeDocument:
    return KnowledgeDocument(
        content_type=ContentType.FAQ,
        content=_squash(f"Frage: {faq.question} Antwort: {faq.answer}"),
        metadata={"question": faq.question, "category": faq.category},
        content_id=faq.id,
    )


def build_location_document(location: Location) -> KnowledgeDocument:
    content = (
        f"Standort: {location.name}. "
        f"Adresse: {location.address or ''}, {location.city or ''}. "
        f"{f'Telefon: {location.phone}.' if location.phone else ''} "
        f"{'Dies ist unser Hauptstandort.' if location.is_primary else ''}"
    )
    return KnowledgeDocument(
        content_type=ContentType.LOCATION,
        content=_squash(content),
        metadata={
            "name": location.name,
            "address": location.address,
            "city": location.city,
            "is_primary": location.is_primary,
        },
        content_id=location.id,
    )


async def collect_tenant_documents(session: AsyncSession, tenant: Tenant) -> list[KnowledgeDocument]:
    """All documents that make up a tenant's knowledge base, clinic info first."""
    services = await list_services(session, tenant.id, active_only=True)
    employees = await list_active_employees(session, tenant.id)
    faqs = await list_active_faqs(session, tenant.id)
    locations = await list_locations(session, tenant.id)

    documents = [build_tenant_document(tenant)]
    documents.extend(build_service_document(s) for s in services)
    documents.extend(build_employee_document(e) for e in employees)
    documents.extend(build_faq_document(f) for f in faqs)
    documents.extend(build_location_document(loc) for loc in locations)
    return documents


# ============================================================================
# Embedding + storage
# ============================================================================

@lru_cache(maxsize=1)
def get_openai_client() -> Optional[AsyncOpenAI]:
    settings = get_settings()
    if not settings.openai_api_key:
        return None
    return AsyncOpenAI(api_key=settings.openai_api_key)


async def generate_embedding(text: str) -> Optional[list[float]]:
    """Embed one text. Returns None when no API key is configured or the call fails."""
    client = get_openai_client()
    if client is None:
        logger.debug("OPENAI_API_KEY not configured, skipping embedding")
        return None
    try:
        response = await client.embeddings.create(
            model=get_settings().embedding_model,
            input=text,
        )
    except OpenAIError as e:
        logger.error(f"Error generating embedding: {e}")
        return None
    return response.data[0].embedding


async def store_embedding(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    document: KnowledgeDocument,
) -> bool:
    """
    Embed and store one document, replacing the previous vector for the
    same content.

    Returns:
        True if the row was written, False on any failure.
    """
    vector = await generate_embedding(document.content)
    if vector is None:
        return False

    try:
        stmt = delete(Embedding).where(
            Embedding.tenant_id == tenant_id,
            Embedding.content_type == document.content_type,
        )
        if document.content_id is None:
            stmt = stmt.where(Embedding.content_id.is_(None))
        else:
            stmt = stmt.where(Embedding.content_id == document.content_id)
        await session.execute(stmt)

        session.add(
            Embedding(
                tenant_id=tenant_id,
                content_type=document.content_type,
                content_id=document.content_id,
                content=document.content,
                metadata_json=document.metadata,
                embedding=vector,
            )
        )
        await session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Error storing {document.content_type} embedding for tenant {tenant_id}: {e}")
        await session.rollback()
        return False
    return True


async def generate_tenant_embeddings(session: AsyncSession, tenant_id: uuid.UUID) -> EmbeddingRunResult:
    """
    Rebuild a tenant's knowledge base.

    A missing tenant counts as a single error. Individual document failures
    are counted and do not stop the run.
    """
    tenant = await resolve_tenant_by_id(session, tenant_id)
    if tenant is None:
        logger.error(f"Tenant not found for ID: {tenant_id}")
        return EmbeddingRunResult(success=False, processed=0, errors=1)

    documents = await collect_tenant_documents(session, tenant)
    # A failed store rolls back and expires the tenant instance
    slug = tenant.slug
    processed = 0
    errors = 0
    for document in documents:
        if await store_embedding(session, tenant_id, document):
            processed += 1
        else:
            errors += 1

    logger.info(f"Embeddings for tenant {slug}: {processed} stored, {errors} failed")
    return EmbeddingRunResult(success=errors == 0, processed=processed, errors=errors)


# ============================================================================
# Route
# ============================================================================

class GenerateEmbeddingsRequest(BaseModel):
    tenantSlug: Optional[str] = None
    tenantId: Optional[str] = None


def _parse_tenant_id(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


@router.post("/generate")
async def generate_embeddings(
    payload: Optional[GenerateEmbeddingsRequest] = None,
    session: AsyncSession = Depends(get_session),
):
    """
    Rebuild the knowledge base of one tenant.

    ``tenantId`` wins over ``tenantSlug``; the slug may be a prefix
    ("beauty" finds "beauty-berlin").
    """
    payload = payload or GenerateEmbeddingsRequest()
    if not payload.tenantSlug and not payload.tenantId:
        return error_response(messages.TENANT_REFERENCE_REQUIRED, 400)

    try:
        if payload.tenantId:
            tenant_id = _parse_tenant_id(payload.tenantId)
            result = (
                await generate_tenant_embeddings(session, tenant_id)
                if tenant_id is not None
                else EmbeddingRunResult(success=False, processed=0, errors=1)
            )
        else:
            tenant = await resolve_tenant_by_slug_prefix(session, payload.tenantSlug)
            if tenant is None:
                return error_response(messages.TENANT_NOT_FOUND, 404)
            result = await generate_tenant_embeddings(session, tenant.id)
    except Exception:
        logger.exception("Embedding generation failed")
        return error_response(messages.EMBEDDING_GENERATION_FAILED, 500)

    return {
        "success": result.success,
        "message": f"{result.processed} Embeddings erstellt, {result.errors} Fehler",
        "processed": result.processed,
        "errors": result.errors,
    }
