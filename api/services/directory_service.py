# api/services/directory_service.py
"""
Company / contact directory lookups used during bulk invite creation.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.models.company import Company, Contact

logger = structlog.get_logger()


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


async def find_by_email(db: AsyncSession, tenant_id, email: str) -> Optional[Company]:
    """Case-insensitive match on company email, oldest record first."""
    result = await db.execute(
        select(Company)
        .where(
            Company.tenant_id == tenant_id,
            func.lower(Company.email) == normalize_email(email),
            Company.deleted_at == None,  # noqa: E711
        )
        .order_by(Company.created_at.asc())
    )
    return result.scalars().first()


async def create(
    db: AsyncSession,
    tenant_id,
    email: str,
    name: Optional[str] = None,
    trade: Optional[str] = None,
) -> Company:
    email = normalize_email(email)
    company = Company(
        tenant_id=tenant_id,
        name=(name or "").strip() or email,
        email=email,
        trade=trade,
    )
    db.add(company)
    await db.flush()
    logger.info("company_created", company_id=str(company.id), email=email)
    return company


async def get_company(db: AsyncSession, tenant_id, company_id) -> Optional[Company]:
    result = await db.execute(
        select(Company).where(
            Company.id == company_id,
            Company.tenant_id == tenant_id,
            Company.deleted_at == None,  # noqa: E711
        )
    )
    return result.scalar_one_or_none()


async def get_contact(db: AsyncSession, tenant_id, contact_id) -> Optional[Contact]:
    result = await db.execute(
        select(Contact).where(Contact.id == contact_id, Contact.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()
