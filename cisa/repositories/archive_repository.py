from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.models.domain import SubmissionArchive


class ArchiveRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, archive_id: str) -> SubmissionArchive | None:
        return await self.db.get(SubmissionArchive, archive_id)

    async def upsert(self, row: SubmissionArchive) -> SubmissionArchive:
        merged = await self.db.merge(row)
        await self.db.flush()
        return merged

    async def list_for_student(self, student_id: str) -> list[SubmissionArchive]:
        res = await self.db.execute(
            select(SubmissionArchive)
            .where(SubmissionArchive.student_id == student_id)
            .order_by(SubmissionArchive.archived_at.desc())
        )
        return list(res.scalars().all())

    async def count_for_student_exam(self, student_id: str, exam_id: str) -> int:
        res = await self.db.execute(
            select(func.count(SubmissionArchive.id)).where(
                SubmissionArchive.student_id == student_id,
                SubmissionArchive.exam_id == exam_id,
            )
        )
        return int(res.scalar() or 0)
