from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.container import Services
from gatekeeper.core.authenticator import ANONYMOUS, Identity
from gatekeeper.core.errors import AuthenticationRequired, Forbidden


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_db(services: Services = Depends(get_services)) -> AsyncIterator[AsyncSession]:
    """Yield a DB session. Routes commit explicitly; anything uncommitted is rolled back."""
    async with services.session_factory() as session:
        yield session


def get_client_ip(request: Request, services: Services = Depends(get_services)) -> str:
    client_host = request.client.host if request.client else None
    return services.authenticator.client_address(request.headers, client_host)


def get_identity(request: Request) -> Identity:
    """Identity resolved by GatewayMiddleware for this request."""
    return getattr(request.state, "identity", ANONYMOUS)


def require_user(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.user_id is None:
        raise AuthenticationRequired()
    return identity


def require_session(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.kind != "session":
        raise AuthenticationRequired("Valid session required")
    return identity


def require_admin(identity: Identity = Depends(require_session)) -> Identity:
    if not identity.is_admin:
        raise Forbidden()
    return identity
