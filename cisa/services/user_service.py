import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.constants import Role
from cisa.core.exceptions import NotFound, PermissionDenied, ValidationError, store_errors
from cisa.core.security import AuthorizationContext
from cisa.models.domain import User
from cisa.repositories.user_repository import UserRepository

logger = structlog.get_logger()


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = UserRepository(db)

    async def change_role(
        self, actor: AuthorizationContext, uid: str, role: Role, assigned_competency: str | None = None
    ) -> dict:
        if not actor.is_super_admin:
            raise PermissionDenied("Only super admins can change roles")
        if uid == actor.uid and role != Role.SUPER_ADMIN:
            raise ValidationError("Super admins cannot demote themselves")
        user = await self.repo.get_by_id(uid)
        if not user:
            raise NotFound("User not found")
        user.role = role
        user.assigned_competency = assigned_competency if role == Role.ADMIN else None
        with store_errors("change role"):
            await self.db.commit()
        logger.info("user_role_changed", uid=uid, role=role.value, actor=actor.uid)
        return self.serialize_user(user)

    def serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "studentId": user.student_id,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "classRoom": user.class_room,
            "assignedCompetency": user.assigned_competency,
        }
