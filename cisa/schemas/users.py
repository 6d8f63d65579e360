from pydantic import BaseModel

from cisa.core.constants import Role


class CurrentUser(BaseModel):
    id: str
    email: str | None
    role: Role
    studentId: str | None
    firstName: str | None
    lastName: str | None
    classRoom: str | None
    assignedCompetency: str | None


class RoleChangeRequest(BaseModel):
    role: Role
    assignedCompetency: str | None = None
