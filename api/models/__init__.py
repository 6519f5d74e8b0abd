"""Central model registry: import all models so Alembic autodiscover works."""

from api.database import Base  # noqa: F401

from api.models.tenant import Tenant  # noqa: F401
from api.models.user import User  # noqa: F401
from api.models.company import Company, Contact  # noqa: F401
from api.models.bid_package import BidPackage, BidAddendum, BidAddendumAcknowledgement  # noqa: F401
from api.models.bid_invite import BidInvite  # noqa: F401
from api.models.access_grant import AccessGrant  # noqa: F401
from api.models.bid_submission import BidSubmission  # noqa: F401
from api.models.bid_award import BidAward  # noqa: F401
from api.models.file_link import FileLink  # noqa: F401
from api.models.audit_log import AuditLog  # noqa: F401
