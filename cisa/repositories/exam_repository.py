from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.models.domain import Exam, Submission, SubmissionArchive


class ExamRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, exam_id: str) -> Exam | None:
        return await self.db.get(Exam, exam_id)

    async def list_exams(self, competency: str | None = None, active_only: bool = False) -> list[Exam]:
        query = select(Exam).order_by(Exam.created_at.desc())
        if competency:
            query = query.where(Exam.competency == competency)
        if active_only:
            query = query.where(Exam.is_active.is_(True))
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def add(self, row: Exam) -> Exam:
        self.db.add(row)
        await self.db.flush()
        return row

    async def delete(self, row: Exam) -> None:
        await self.db.delete(row)

    async def reference_count(self, exam_id: str) -> int:
        live = await self.db.execute(select(func.count(Submission.id)).where(Submission.exam_id == exam_id))
        archived = await self.db.execute(
            select(func.count(SubmissionArchive.id)).where(SubmissionArchive.exam_id == exam_id)
        )
        return int(live.scalar() or 0) + int(archived.scalar() or 0)
