"""Authentication API endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel

from home_inventory.modules.auth.dependencies import CurrentUser

router = APIRouter()


class AuthUserResponse(BaseModel):
    id: str
    external_id: str
    email: str


class AuthMeResponse(BaseModel):
    user: AuthUserResponse


@router.get("/me", response_model=AuthMeResponse)
async def auth_me(user: CurrentUser) -> AuthMeResponse:
    """Resolve (provisioning on first contact) the local user behind the session."""
    return AuthMeResponse(
        user=AuthUserResponse(id=str(user.id), external_id=user.external_id, email=user.email)
    )
