from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.constants import SubmissionStatus
from cisa.models.domain import Submission


class SubmissionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, row: Submission) -> Submission:
        self.db.add(row)
        await self.db.flush()
        return row

    async def get(self, submission_id: str) -> Submission | None:
        return await self.db.get(Submission, submission_id)

    async def find_live(self, student_id: str, exam_id: str) -> Submission | None:
        res = await self.db.execute(
            select(Submission)
            .where(Submission.student_id == student_id, Submission.exam_id == exam_id)
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def list_for_student(self, student_id: str) -> list[Submission]:
        res = await self.db.execute(
            select(Submission)
            .where(Submission.student_id == student_id)
            .order_by(Submission.submitted_at.desc())
        )
        return list(res.scalars().all())

    async def list_filtered(
        self,
        status: SubmissionStatus | None = None,
        competency: str | None = None,
        exam_id: str | None = None,
        limit: int = 200,
    ) -> list[Submission]:
        query = select(Submission).order_by(Submission.submitted_at.desc()).limit(limit)
        if status:
            query = query.where(Submission.status == status)
        if competency:
            query = query.where(Submission.competency == competency)
        if exam_id:
            query = query.where(Submission.exam_id == exam_id)
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def select_pending(self, limit: int, competency: str | None, now: datetime) -> list[Submission]:
        """Oldest-first queue of pending submissions nobody currently holds a lease on."""
        query = (
            select(Submission)
            .where(
                Submission.status == SubmissionStatus.PENDING,
                or_(Submission.lease_expires_at.is_(None), Submission.lease_expires_at < now),
            )
            .order_by(Submission.submitted_at.asc(), Submission.id.asc())
            .limit(limit)
        )
        if competency:
            query = query.where(Submission.competency == competency)
        res = await self.db.execute(query)
        return list(res.scalars().all())

    async def claim(self, submission_id: str, expected_version: int, token: str, expires_at: datetime) -> bool:
        res = await self.db.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.version == expected_version,
                Submission.status == SubmissionStatus.PENDING,
            )
            .values(version=Submission.version + 1, lease_token=token, lease_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def complete(self, submission_id: str, token: str, values: dict) -> bool:
        """Leave ``pending`` for a terminal status, only while still holding the lease."""
        res = await self.db.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.lease_token == token,
                Submission.status == SubmissionStatus.PENDING,
            )
            .values(
                **values,
                version=Submission.version + 1,
                lease_token=None,
                lease_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def release(self, submission_id: str, token: str) -> None:
        await self.db.execute(
            update(Submission)
            .where(Submission.id == submission_id, Submission.lease_token == token)
            .values(lease_token=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, row: Submission) -> None:
        await self.db.delete(row)
