"""API Router for the authenticated user's own profile."""

from fastapi import APIRouter, HTTPException, status

from home_inventory.core.logging import get_logger
from home_inventory.db.models import User
from home_inventory.db.session import DbSession
from home_inventory.modules.auth.dependencies import CurrentUser
from home_inventory.modules.users.schemas import UserProfileResponse, UserProfileUpdate

router = APIRouter()
logger = get_logger(__name__)


async def _load(db: DbSession, user: CurrentUser) -> User:
    row = await db.get(User, user.id)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "USER_NOT_FOUND", "message": "User profile not found"},
        )
    return row


@router.get("/me", response_model=UserProfileResponse)
async def get_me(db: DbSession, user: CurrentUser) -> UserProfileResponse:
    """Return the profile of the signed-in user."""
    row = await _load(db, user)
    return UserProfileResponse.model_validate(row)


@router.patch("/me", response_model=UserProfileResponse)
async def update_me(
    body: UserProfileUpdate,
    db: DbSession,
    user: CurrentUser,
) -> UserProfileResponse:
    """
    Update the display name and/or avatar of the signed-in user.

    Later IdP profile events overwrite these fields again.
    """
    row = await _load(db, user)
    if "display_name" in body.model_fields_set and body.display_name is not None:
        row.display_name = body.display_name
    if "avatar_url" in body.model_fields_set:
        row.avatar_url = str(body.avatar_url) if body.avatar_url is not None else None

    await db.flush()
    await db.refresh(row)
    logger.info("user_profile_updated", user_id=str(row.id), fields=sorted(body.model_fields_set))
    return UserProfileResponse.model_validate(row)
