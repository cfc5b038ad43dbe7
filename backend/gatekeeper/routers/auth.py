"""Auth routes: register, login, validate, logout."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.container import Services
from gatekeeper.dependencies import get_client_ip, get_db, get_services, require_session
from gatekeeper.schemas.user import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    SessionValidateRequest,
    SessionValidateResponse,
    UserCreate,
    UserRead,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    ip: str = Depends(get_client_ip),
):
    session, user = await services.sessions.register(
        db,
        username=body.username,
        email=body.email,
        password=body.password,
        ip_address=ip,
    )
    await db.commit()
    return AuthResponse(
        message="Registration successful",
        session_id=session.session_id,
        expires_at=session.expires_at,
        user=UserRead.model_validate(user),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    ip: str = Depends(get_client_ip),
):
    session, user = await services.sessions.login(
        db, username=body.username, password=body.password, ip_address=ip
    )
    await db.commit()
    return AuthResponse(
        message="Login successful",
        session_id=session.session_id,
        expires_at=session.expires_at,
        user=UserRead.model_validate(user),
    )


@router.post("/validate", response_model=SessionValidateResponse)
async def validate(
    body: SessionValidateRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user = await services.sessions.validate_session(db, body.session_id)
    return SessionValidateResponse(user=UserRead.model_validate(user))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    ip: str = Depends(get_client_ip),
    _identity=Depends(require_session),
):
    token = request.state.credentials.bearer
    await services.sessions.logout(db, token, ip_address=ip)
    await db.commit()
    return MessageResponse(message="Logged out")
