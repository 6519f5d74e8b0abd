"""
Unit tests for api/services/submission_service.py

Uses AsyncMock to isolate from database.
Tests: payload validation, the package status read under a share lock.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from api.errors import InvalidTransitionError, ValidationError
from api.services.submission_service import SubmissionPayload, submit


def _make_invite():
    i = MagicMock()
    i.id = uuid.uuid4()
    i.tenant_id = uuid.uuid4()
    i.bid_package_id = uuid.uuid4()
    return i


def _status_result(status: str):
    result = MagicMock()
    result.scalar_one.return_value = status
    return result


@pytest.mark.parametrize(
    "payload",
    [
        SubmissionPayload(total_cents=-1),
        SubmissionPayload(lead_time_days=-3),
        SubmissionPayload(currency="dollars"),
    ],
)
def test_payload_rejects_bad_values(payload):
    with pytest.raises(ValidationError):
        payload.validate()


def test_payload_lowercases_currency():
    assert SubmissionPayload(total_cents=100, currency="USD").as_columns()["currency"] == "usd"


@pytest.mark.asyncio
async def test_submit_reads_package_status_under_share_lock():
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_status_result("awarded"))
    invite = _make_invite()

    with patch(
        "api.services.submission_service.invite_service.get_invite",
        new=AsyncMock(return_value=invite),
    ) as get_invite:
        with pytest.raises(InvalidTransitionError):
            await submit(session, invite.id, SubmissionPayload(total_cents=1000))

    assert get_invite.await_args.kwargs["for_update"] is True
    stmt = session.execute.await_args_list[0].args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    assert "bid_packages" in sql
    assert sql.rstrip().endswith("FOR SHARE")


@pytest.mark.asyncio
async def test_submit_rejects_closed_package_before_writing():
    session = AsyncMock()
    session.execute = AsyncMock(return_value=_status_result("closed"))
    session.add = MagicMock()
    invite = _make_invite()

    with patch(
        "api.services.submission_service.invite_service.get_invite",
        new=AsyncMock(return_value=invite),
    ):
        with pytest.raises(InvalidTransitionError) as exc_info:
            await submit(session, invite.id, SubmissionPayload(total_cents=1000))

    assert exc_info.value.details == {"status": "closed"}
    assert session.execute.await_count == 1
    session.add.assert_not_called()
