"""
Downstream commitment creation for awarded bids.

The award is already committed when this runs; a failure here is reported
back as a degraded award rather than raised.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log
import structlog

from api.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None


@dataclass
class CommitmentResult:
    success: bool
    commitment_id: Optional[str] = None
    error: Optional[str] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class _CommitmentRetryableError(Exception):
    """5xx or network failure talking to the commitments API."""


@retry(
    retry=retry_if_exception_type(_CommitmentRetryableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_commitment(payload: dict) -> httpx.Response:
    headers = {"content-type": "application/json"}
    if settings.COMMITMENTS_API_TOKEN:
        headers["authorization"] = f"Bearer {settings.COMMITMENTS_API_TOKEN}"
    try:
        response = await get_http_client().post(
            settings.COMMITMENTS_API_URL, headers=headers, json=payload
        )
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        raise _CommitmentRetryableError(str(exc)) from exc
    if response.status_code >= 500:
        raise _CommitmentRetryableError(f"Commitments API returned {response.status_code}")
    return response


async def create_commitment(
    tenant_id: str,
    project_id: str,
    bid_package_id: str,
    submission_id: str,
    company_id: Optional[str],
    title: str,
    total_cents: int,
    currency: str,
) -> CommitmentResult:
    """Ask the commitments API for a subcontract record. Never raises."""
    if not settings.COMMITMENTS_API_URL:
        logger.warning("commitments_api_not_configured", bid_package_id=bid_package_id)
        return CommitmentResult(success=False, error="Commitments API is not configured")

    payload = {
        "tenant_id": tenant_id,
        "project_id": project_id,
        "source": "bid_award",
        "bid_package_id": bid_package_id,
        "bid_submission_id": submission_id,
        "company_id": company_id,
        "title": title,
        "total_cents": total_cents,
        "currency": currency,
    }

    try:
        response = await _post_commitment(payload)
    except (_CommitmentRetryableError, httpx.HTTPError) as exc:
        logger.error("commitment_create_failed", bid_package_id=bid_package_id, error=str(exc))
        return CommitmentResult(success=False, error=str(exc))

    if response.status_code not in (200, 201):
        logger.error(
            "commitment_create_rejected",
            bid_package_id=bid_package_id,
            status_code=response.status_code,
            response=response.text[:500],
        )
        return CommitmentResult(
            success=False, error=f"Commitments API returned {response.status_code}"
        )

    commitment_id = response.json().get("id")
    logger.info("commitment_created", bid_package_id=bid_package_id, commitment_id=commitment_id)
    return CommitmentResult(success=True, commitment_id=str(commitment_id) if commitment_id else None)
