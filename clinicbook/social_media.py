"""
Cached social media reviews (Google, Facebook, ...).

Reviews are owned by a social account, which is owned by a tenant; every
query joins through ``social_accounts`` to stay inside the tenant.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .core import messages
from .core.db import get_session
from .core.request_context import StaffContext, get_staff_context
from .core.responses import BadRequest, NotFound
from .models import SocialAccount, SocialPlatform, SocialReview

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/social", tags=["social"])


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    platform: SocialPlatform
    author_name: Optional[str] = None
    rating: Optional[int] = None
    content: Optional[str] = None
    reviewed_at: datetime
    business_response: Optional[str] = None
    business_response_at: Optional[datetime] = None


class RespondRequest(BaseModel):
    response: Optional[str] = None


def _tenant_reviews(tenant_id: uuid.UUID):
    return (
        select(SocialReview)
        .join(SocialAccount, SocialReview.social_account_id == SocialAccount.id)
        .where(SocialAccount.tenant_id == tenant_id)
    )


async def list_reviews(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    platform: Optional[SocialPlatform] = None,
    limit: int = 50,
) -> Sequence[SocialReview]:
    stmt = _tenant_reviews(tenant_id)
    if platform is not None:
        stmt = stmt.where(SocialReview.platform == platform)
    result = await session.execute(stmt.order_by(SocialReview.reviewed_at.desc()).limit(limit))
    return result.scalars().all()


async def get_average_rating(session: AsyncSession, tenant_id: uuid.UUID) -> tuple[Optional[float], int]:
    """Average star rating over rated reviews, rounded to one decimal, and their count."""
    result = await session.execute(
        select(func.avg(SocialReview.rating), func.count(SocialReview.rating))
        .join(SocialAccount, SocialReview.social_account_id == SocialAccount.id)
        .where(SocialAccount.tenant_id == tenant_id, SocialReview.rating.is_not(None))
    )
    average, count = result.one()
    if not count:
        return None, 0
    return round(float(average), 1), count


async def respond_to_review(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    review_id: uuid.UUID,
    text: str,
) -> SocialReview:
    result = await session.execute(_tenant_reviews(tenant_id).where(SocialReview.id == review_id))
    review = result.scalar_one_or_none()
    if review is None:
        raise NotFound(messages.REVIEW_NOT_FOUND)
    review.business_response = text
    review.business_response_at = datetime.now(timezone.utc)
    await session.commit()
    logger.info(f"Responded to review {review_id}")
    return review


@router.get("/reviews")
async def get_reviews(
    platform: Optional[SocialPlatform] = None,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    reviews = await list_reviews(session, ctx.tenant_id, platform)
    return {"reviews": [ReviewOut.model_validate(r).model_dump(mode="json") for r in reviews]}


@router.get("/rating")
async def get_rating(
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    average, count = await get_average_rating(session, ctx.tenant_id)
    return {"average": average, "count": count}


@router.post("/reviews/{review_id}/respond")
async def post_review_response(
    review_id: uuid.UUID,
    payload: RespondRequest,
    ctx: StaffContext = Depends(get_staff_context),
    session: AsyncSession = Depends(get_session),
):
    if not payload.response or not payload.response.strip():
        raise BadRequest(messages.REQUIRED_FIELDS_MISSING)
    review = await respond_to_review(session, ctx.tenant_id, review_id, payload.response.strip())
    return {"success": True, "business_response_at": review.business_response_at.isoformat()}
