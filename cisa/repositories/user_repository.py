from sqlalchemy.ext.asyncio import AsyncSession

from cisa.models.domain import User


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, uid: str) -> User | None:
        return await self.db.get(User, uid)
