import os

# Settings are read at import time
os.environ.setdefault("BID_PORTAL_SECRET", "test-portal-secret")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("APP_URL", "https://bids.example.test")

import uuid
from types import SimpleNamespace
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import api.models  # noqa: F401
from api.database import Base, build_engine, get_db
from api.main import app
from api.middleware.auth import get_current_user, get_optional_user
from api.models.bid_invite import BidInvite
from api.models.bid_package import BidPackage
from api.models.company import Company
from api.models.tenant import Tenant
from api.models.user import User
from api.services import access_service


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite; concurrent sessions queue on the write lock."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'bids.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def seeded(session_factory):
    """One tenant, an operator, a vendor account and an open bid package."""
    async with session_factory() as s:
        tenant = Tenant(name="Acme Builders", slug=f"acme-{uuid.uuid4().hex[:8]}")
        s.add(tenant)
        await s.flush()

        operator = User(
            tenant_id=tenant.id,
            email=f"pm-{uuid.uuid4().hex[:6]}@acme.test",
            full_name="Pat Manager",
            role="project_manager",
        )
        vendor = User(
            tenant_id=tenant.id,
            email=f"estimator-{uuid.uuid4().hex[:6]}@sparky.test",
            full_name="Sam Estimator",
            role="vendor",
        )
        package = BidPackage(
            tenant_id=tenant.id,
            project_id=uuid.uuid4(),
            title="Electrical rough-in",
            trade="electrical",
            status="open",
        )
        s.add_all([operator, vendor, package])
        await s.commit()

    return SimpleNamespace(
        tenant_id=tenant.id,
        operator_id=operator.id,
        vendor_user_id=vendor.id,
        package_id=package.id,
    )


@pytest.fixture
def make_company(session_factory, seeded):
    async def _make(name: str = "Sparky Electric", email: Optional[str] = None) -> Company:
        async with session_factory() as s:
            company = Company(
                tenant_id=seeded.tenant_id,
                name=name,
                email=email or f"bids-{uuid.uuid4().hex[:8]}@vendor.test",
                trade="electrical",
            )
            s.add(company)
            await s.commit()
            return company

    return _make


@pytest.fixture
def make_invite(session_factory, seeded, make_company):
    """Invite a fresh company to the seeded package and mint one link."""
    async def _make(status: str = "sent", package_id=None):
        company = await make_company()
        async with session_factory() as s:
            invite = BidInvite(
                tenant_id=seeded.tenant_id,
                bid_package_id=package_id or seeded.package_id,
                company_id=company.id,
                invite_email=company.email,
                status=status,
            )
            s.add(invite)
            await s.flush()
            issued = await access_service.issue_link_grant(s, invite.id, mark_sent=False)
            await s.commit()
            return SimpleNamespace(id=invite.id, token=issued.token, company_id=company.id)

    return _make


@pytest.fixture
def email_gateway():
    with patch("api.services.email_service.send", new=AsyncMock(return_value=True)) as send:
        yield send


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def operator_user(seeded):
    return {
        "user_id": str(seeded.operator_id),
        "tenant_id": str(seeded.tenant_id),
        "role": "project_manager",
        "email": "pm@acme.test",
    }


@pytest_asyncio.fixture
async def client(session_factory, operator_user):
    async def _get_test_db():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_current_user] = lambda: operator_user
    app.dependency_overrides[get_optional_user] = lambda: None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
