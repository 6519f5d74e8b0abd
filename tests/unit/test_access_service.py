"""
Unit tests for api/services/access_service.py

Uses AsyncMock to isolate from database.
Tests: token hashing, portal URLs, count folding, verify() rejections.
"""

import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from api.config import settings
from api.errors import AccessDeniedError, ValidationError
from api.services.access_service import (
    AccessCounts,
    _fold_counts,
    generate_token,
    hash_token,
    issue_pin_session,
    pause_channel,
    pin_session_valid,
    portal_url,
    verify,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_grant(state: str = "active", **overrides):
    g = MagicMock()
    g.id = uuid.uuid4()
    g.bid_invite_id = uuid.uuid4()
    g.channel = "link"
    g.state = state
    g.expires_at = None
    g.max_access_count = None
    g.access_count = 0
    g.pin_required = False
    g.pin_hash = None
    for key, value in overrides.items():
        setattr(g, key, value)
    return g


def _make_invite(require_account: bool = False):
    i = MagicMock()
    i.id = uuid.uuid4()
    i.tenant_id = uuid.uuid4()
    i.require_account = require_account
    return i


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _execute_result(scalar_value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar_value
    return result


# ---------------------------------------------------------------------------
# tokens
# ---------------------------------------------------------------------------


def test_generated_tokens_are_256_bit_hex():
    token = generate_token()
    assert len(token) == 64
    int(token, 16)
    assert generate_token() != token


def test_hash_token_is_stable_and_keyed():
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    with patch.object(settings, "BID_PORTAL_SECRET", "another-secret"):
        other = hash_token("abc")
    assert other != hash_token("abc")


def test_hash_token_requires_secret():
    with patch.object(settings, "BID_PORTAL_SECRET", ""):
        with pytest.raises(RuntimeError):
            hash_token("abc")


def test_portal_url_uses_app_url():
    with patch.object(settings, "APP_URL", "bids.example.com/"):
        assert portal_url("tok") == "https://bids.example.com/b/tok"


# ---------------------------------------------------------------------------
# counts
# ---------------------------------------------------------------------------


def test_fold_counts_separates_channels():
    invite_id = uuid.uuid4()
    rows = [
        (invite_id, "link", "active", 2),
        (invite_id, "link", "paused", 1),
        (invite_id, "link", "revoked", 3),
        (invite_id, "account", "active", 1),
        (invite_id, "account", "paused", 1),
        (invite_id, "account", "revoked", 4),
    ]
    c = _fold_counts(rows)[str(invite_id)]
    assert c == AccessCounts(
        active_access_count=2,
        paused_access_count=1,
        access_total=6,
        linked_account_count=2,
        linked_active_account_count=1,
        linked_paused_account_count=1,
    )
    assert c.live_grant_count == 5


def test_live_grant_count_ignores_revoked_history():
    c = AccessCounts(access_total=4)
    assert c.live_grant_count == 0


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_verify_unknown_token_is_not_found():
    session = _mock_session()
    session.execute = AsyncMock(return_value=_execute_result(None))

    with pytest.raises(AccessDeniedError) as exc_info:
        await verify(session, "nope")
    assert exc_info.value.reason == "not_found"
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("state", ["paused", "revoked"])
async def test_verify_rejects_inactive_link(state):
    session = _mock_session()
    session.execute = AsyncMock(
        side_effect=[_execute_result(_make_grant(state)), _execute_result(_make_invite())]
    )

    with pytest.raises(AccessDeniedError) as exc_info:
        await verify(session, "tok")
    assert exc_info.value.reason == state
    assert exc_info.value.code == f"ACCESS_{state.upper()}"


@pytest.mark.asyncio
async def test_verify_expired_link_is_not_found():
    session = _mock_session()
    grant = _make_grant(expires_at=datetime.utcnow() - timedelta(minutes=1))
    session.execute = AsyncMock(
        side_effect=[_execute_result(grant), _execute_result(_make_invite())]
    )

    with pytest.raises(AccessDeniedError) as exc_info:
        await verify(session, "tok")
    assert exc_info.value.reason == "not_found"


@pytest.mark.asyncio
async def test_verify_bare_link_refused_when_account_required():
    session = _mock_session()
    session.execute = AsyncMock(
        side_effect=[_execute_result(_make_grant()), _execute_result(_make_invite(require_account=True))]
    )

    with pytest.raises(AccessDeniedError) as exc_info:
        await verify(session, "tok")
    assert exc_info.value.reason == "account_required"
    assert "sign in" in exc_info.value.message


@pytest.mark.asyncio
async def test_verify_active_link_returns_invite():
    session = _mock_session()
    invite = _make_invite()
    grant = _make_grant()
    session.execute = AsyncMock(side_effect=[_execute_result(grant), _execute_result(invite)])

    access = await verify(session, "tok")
    assert access.invite is invite
    assert access.channel == "link"
    assert access.grant_state == "active"
    assert access.user_id is None


# ---------------------------------------------------------------------------
# transitions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_pause_unknown_channel_is_validation_error():
    session = _mock_session()
    with pytest.raises(ValidationError):
        await pause_channel(session, uuid.uuid4(), "sms")
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_pause_with_no_active_grants_is_a_noop():
    session = _mock_session()
    update_result = MagicMock()
    update_result.rowcount = 0
    session.execute = AsyncMock(side_effect=[_execute_result(_make_invite()), update_result])

    with patch("api.services.access_service.create_audit_log", new_callable=AsyncMock) as audit:
        changed = await pause_channel(session, uuid.uuid4(), "link")

    assert changed == 0
    audit.assert_not_called()


# ---------------------------------------------------------------------------
# PIN sessions
# ---------------------------------------------------------------------------

def test_pin_session_round_trip():
    grant = _make_grant(pin_required=True, pin_hash="$2b$10$abcdefghijklmnopqrstuv")
    token, expires_at = issue_pin_session(grant)
    assert expires_at > datetime.utcnow()
    assert pin_session_valid(grant, token) is True


def test_pin_session_is_bound_to_grant_and_pin():
    grant = _make_grant(pin_required=True, pin_hash="$2b$10$abcdefghijklmnopqrstuv")
    token, _ = issue_pin_session(grant)

    other = _make_grant(pin_required=True, pin_hash=grant.pin_hash)
    assert pin_session_valid(other, token) is False

    grant.pin_hash = "$2b$10$zyxwvutsrqponmlkjihgfe"
    assert pin_session_valid(grant, token) is False


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_pin_session_rejects_garbage(token):
    grant = _make_grant(pin_required=True, pin_hash="$2b$10$abcdefghijklmnopqrstuv")
    assert pin_session_valid(grant, token) is False


def test_expired_pin_session_is_rejected():
    grant = _make_grant(pin_required=True, pin_hash="$2b$10$abcdefghijklmnopqrstuv")
    with patch.object(settings, "PIN_SESSION_TTL_MINUTES", -5):
        token, _ = issue_pin_session(grant)
    assert pin_session_valid(grant, token) is False


@pytest.mark.asyncio
async def test_verify_refuses_pin_link_without_session():
    session = _mock_session()
    link = _make_grant(pin_required=True, pin_hash="$2b$10$abcdefghijklmnopqrstuv")
    session.execute = AsyncMock(
        side_effect=[_execute_result(link), _execute_result(_make_invite())]
    )

    with pytest.raises(AccessDeniedError) as exc_info:
        await verify(session, "tok")
    assert exc_info.value.reason == "pin_required"
    assert exc_info.value.status_code == 403
