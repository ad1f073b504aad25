"""
Tests for tenant resolution.

Slug fragments are resolved deterministically: an exact match wins,
otherwise the alphabetically first candidate. LIKE wildcards in a fragment
are matched literally.
"""
import uuid

import pytest

from clinicbook.core.responses import NotFound
from clinicbook.models import SubscriptionStatus, Tenant
from clinicbook.tenancy.context import (
    escape_like,
    get_tenant_context,
    resolve_tenant_by_slug_prefix,
    select_slug_match,
    set_db_tenant,
)

from conftest import make_result


def make_tenant(slug: str) -> Tenant:
    return Tenant(
        id=uuid.uuid4(),
        slug=slug,
        name=slug.replace("-", " ").title(),
        subscription_status=SubscriptionStatus.ACTIVE,
    )


# ────────────────────────────────────────────────────────────────
# select_slug_match
# ────────────────────────────────────────────────────────────────

def test_exact_match_beats_prefix_matches():
    assert select_slug_match("beauty", ["beauty-berlin", "beauty", "beauty-almaty"]) == "beauty"


def test_exact_match_ignores_case():
    assert select_slug_match("Beauty-Berlin", ["beauty-berlin", "beauty-berlin-mitte"]) == "beauty-berlin"


def test_alphabetically_first_without_exact_match():
    assert select_slug_match("beauty", ["beauty-berlin", "beauty-almaty"]) == "beauty-almaty"


def test_single_candidate():
    assert select_slug_match("glow", ["glow-studio"]) == "glow-studio"


def test_no_candidates():
    assert select_slug_match("nothing", []) is None


def test_ambiguous_fragment_is_logged(caplog):
    with caplog.at_level("WARNING", logger="clinicbook.tenancy.context"):
        select_slug_match("beauty", ["beauty-berlin", "beauty-almaty"])

    assert "ambiguous" in caplog.text


@pytest.mark.parametrize(
    "fragment,expected",
    [
        ("beauty", "beauty"),
        ("100%", "100\\%"),
        ("a_b", "a\\_b"),
        ("back\\slash", "back\\\\slash"),
    ],
)
def test_escape_like(fragment, expected):
    assert escape_like(fragment) == expected


# ────────────────────────────────────────────────────────────────
# Database lookups
# ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_prefix_resolution_returns_chosen_tenant(mock_session):
    almaty, berlin = make_tenant("beauty-almaty"), make_tenant("beauty-berlin")
    mock_session.execute.return_value = make_result(rows=[berlin, almaty])

    tenant = await resolve_tenant_by_slug_prefix(mock_session, "beauty")

    assert tenant is almaty


@pytest.mark.asyncio
async def test_prefix_resolution_without_candidates(mock_session):
    mock_session.execute.return_value = make_result(rows=[])

    assert await resolve_tenant_by_slug_prefix(mock_session, "unknown") is None


@pytest.mark.asyncio
async def test_tenant_context_from_slug(mock_session):
    tenant = make_tenant("beauty-berlin")
    mock_session.execute.return_value = make_result(tenant)

    ctx = await get_tenant_context("beauty-berlin", mock_session)

    assert ctx.tenant_id == tenant.id
    assert ctx.slug == "beauty-berlin"
    assert ctx.name == tenant.name


@pytest.mark.asyncio
async def test_tenant_context_unknown_slug(mock_session):
    mock_session.execute.return_value = make_result(None)

    with pytest.raises(NotFound) as exc_info:
        await get_tenant_context("nope", mock_session)

    assert exc_info.value.message == "Klinik nicht gefunden"


@pytest.mark.asyncio
async def test_set_db_tenant_binds_setting(mock_session):
    tenant_id = uuid.uuid4()

    await set_db_tenant(mock_session, tenant_id)

    stmt, params = mock_session.execute.await_args.args
    assert "app.current_tenant_id" in str(stmt)
    assert params == {"tenant_id": str(tenant_id)}


@pytest.mark.asyncio
async def test_public_page_unknown_slug_404(client, mock_session):
    mock_session.execute.return_value = make_result(None)

    response = await client.get("/book/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Klinik nicht gefunden"}
