from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.api.deps import db_session, get_current_actor
from cisa.core.exceptions import NotFound
from cisa.core.security import AuthorizationContext
from cisa.repositories.user_repository import UserRepository
from cisa.schemas.users import CurrentUser, RoleChangeRequest
from cisa.services.user_service import UserService

router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentUser)
async def get_me(
    actor: AuthorizationContext = Depends(get_current_actor), db: AsyncSession = Depends(db_session)
):
    user = await UserRepository(db).get_by_id(actor.uid)
    if not user:
        raise NotFound("User not found")
    return UserService(db).serialize_user(user)


@router.patch("/users/{uid}/role", response_model=CurrentUser)
async def change_role(
    uid: str,
    payload: RoleChangeRequest,
    actor: AuthorizationContext = Depends(get_current_actor),
    db: AsyncSession = Depends(db_session),
):
    return await UserService(db).change_role(actor, uid, payload.role, payload.assignedCompetency)
