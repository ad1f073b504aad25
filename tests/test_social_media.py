"""Tests for cached social media reviews."""
import uuid
from unittest.mock import MagicMock

import pytest

from clinicbook.core.responses import NotFound
from clinicbook.models import SocialPlatform, SocialReview
from clinicbook.social_media import get_average_rating, respond_to_review

from conftest import make_result


def rating_result(average, count):
    result = MagicMock()
    result.one.return_value = (average, count)
    return result


@pytest.mark.asyncio
async def test_average_rating_is_rounded(mock_session):
    mock_session.execute.return_value = rating_result(4.3333, 3)

    assert await get_average_rating(mock_session, uuid.uuid4()) == (4.3, 3)


@pytest.mark.asyncio
async def test_average_rating_without_reviews(mock_session):
    mock_session.execute.return_value = rating_result(None, 0)

    assert await get_average_rating(mock_session, uuid.uuid4()) == (None, 0)


@pytest.mark.asyncio
async def test_respond_to_review(mock_session):
    review = SocialReview(id=uuid.uuid4(), platform=SocialPlatform.GOOGLE, rating=5)
    mock_session.execute.return_value = make_result(review)

    await respond_to_review(mock_session, uuid.uuid4(), review.id, "Danke!")

    assert review.business_response == "Danke!"
    assert review.business_response_at is not None
    mock_session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_respond_to_foreign_review(mock_session):
    mock_session.execute.return_value = make_result(None)

    with pytest.raises(NotFound):
        await respond_to_review(mock_session, uuid.uuid4(), uuid.uuid4(), "Danke!")


@pytest.mark.asyncio
async def test_rating_route(staff_client, mock_session):
    mock_session.execute.return_value = rating_result(4.76, 8)

    response = await staff_client.get("/api/social/rating")

    assert response.status_code == 200
    assert response.json() == {"average": 4.8, "count": 8}


@pytest.mark.asyncio
async def test_empty_response_rejected(staff_client, mock_session):
    response = await staff_client.post(f"/api/social/reviews/{uuid.uuid4()}/respond", json={"response": "  "})

    assert response.status_code == 400
    mock_session.execute.assert_not_awaited()
