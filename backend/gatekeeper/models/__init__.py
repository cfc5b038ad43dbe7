# Import all models so Base.metadata is populated for create_all.
from gatekeeper.models.user import User, UserRole  # noqa: F401
from gatekeeper.models.session import Session  # noqa: F401
from gatekeeper.models.api_key import ApiKey  # noqa: F401
from gatekeeper.models.audit import AuditLogEvent  # noqa: F401
