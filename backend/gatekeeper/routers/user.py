"""User routes: who am I."""

from fastapi import APIRouter, Depends

from gatekeeper.core.authenticator import Identity
from gatekeeper.dependencies import require_user
from gatekeeper.schemas.user import CurrentUser

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/me", response_model=CurrentUser)
async def me(identity: Identity = Depends(require_user)):
    return CurrentUser(
        user_id=identity.user_id,
        username=identity.username,
        email=identity.email,
        is_admin=identity.role == "Admin",
        auth_method=identity.kind,
    )
