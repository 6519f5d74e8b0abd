"""
Unit tests for api/services/commitment_service.py

The HTTP call is patched at _post_commitment; retries are not exercised.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from api.config import settings
from api.services import commitment_service
from api.services.commitment_service import _CommitmentRetryableError, create_commitment


def _kwargs():
    return {
        "tenant_id": "t-1",
        "project_id": "p-1",
        "bid_package_id": "bp-1",
        "submission_id": "s-1",
        "company_id": "c-1",
        "title": "Electrical rough-in",
        "total_cents": 250000,
        "currency": "usd",
    }


@pytest.mark.asyncio
async def test_unconfigured_api_is_reported_not_raised():
    with patch.object(settings, "COMMITMENTS_API_URL", ""):
        result = await create_commitment(**_kwargs())
    assert result.success is False
    assert result.error == "Commitments API is not configured"


@pytest.mark.asyncio
async def test_created_commitment_returns_id():
    response = httpx.Response(201, json={"id": 981})
    with patch.object(settings, "COMMITMENTS_API_URL", "https://commitments.test/v1/commitments"), patch.object(
        commitment_service, "_post_commitment", new=AsyncMock(return_value=response)
    ) as post:
        result = await create_commitment(**_kwargs())

    assert result.success is True
    assert result.commitment_id == "981"
    payload = post.call_args.args[0]
    assert payload["source"] == "bid_award"
    assert payload["bid_submission_id"] == "s-1"


@pytest.mark.asyncio
async def test_rejected_commitment_is_failure():
    response = httpx.Response(422, text="project is closed")
    with patch.object(settings, "COMMITMENTS_API_URL", "https://commitments.test/v1/commitments"), patch.object(
        commitment_service, "_post_commitment", new=AsyncMock(return_value=response)
    ):
        result = await create_commitment(**_kwargs())

    assert result.success is False
    assert "422" in result.error


@pytest.mark.asyncio
async def test_exhausted_retries_are_failure():
    with patch.object(settings, "COMMITMENTS_API_URL", "https://commitments.test/v1/commitments"), patch.object(
        commitment_service,
        "_post_commitment",
        new=AsyncMock(side_effect=_CommitmentRetryableError("Commitments API returned 503")),
    ):
        result = await create_commitment(**_kwargs())

    assert result.success is False
    assert result.error == "Commitments API returned 503"
