from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.constants import DEFAULT_RESET_REASON
from cisa.core.exceptions import NotFound, store_errors
from cisa.core.security import AuthorizationContext, ensure_staff
from cisa.models.domain import SUBMISSION_FIELDS, Submission, SubmissionArchive
from cisa.repositories.archive_repository import ArchiveRepository
from cisa.repositories.submission_repository import SubmissionRepository

logger = structlog.get_logger()


def archive_fields(row: Submission) -> dict:
    """Copy of the live record with unset values dropped."""
    values = {key: getattr(row, key) for key in SUBMISSION_FIELDS}
    return {key: value for key, value in values.items() if value is not None}


class ArchiveService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.submissions = SubmissionRepository(db)
        self.archives = ArchiveRepository(db)

    async def archive_and_reset(
        self,
        submission_id: str,
        actor: AuthorizationContext,
        reason: str | None = DEFAULT_RESET_REASON,
    ) -> SubmissionArchive:
        """Move a live submission into ``submission_archives`` so the student can retake.

        The archive is written and committed before the live row is deleted. If
        the delete fails both copies exist and calling this again finishes the job.
        """
        ensure_staff(actor, "reset submissions")
        reason = (reason or "").strip() or DEFAULT_RESET_REASON

        row = await self.submissions.get(submission_id)
        if row is None:
            existing = await self.archives.get(submission_id)
            if existing is None:
                raise NotFound("Submission not found")
            logger.info("archive_already_done", submission_id=submission_id)
            return existing

        existing = await self.archives.get(row.id)
        if existing is not None:
            # an earlier attempt wrote the archive but never removed the live row
            logger.info("archive_retry_resumed", submission_id=submission_id, archived_by=existing.archived_by)
            audit = {
                "archived_at": existing.archived_at,
                "archived_by": existing.archived_by,
                "archived_by_email": existing.archived_by_email,
                "reset_reason": existing.reset_reason,
            }
        else:
            audit = {
                "archived_at": datetime.now(UTC),
                "archived_by": actor.uid,
                "archived_by_email": actor.email,
                "reset_reason": reason,
            }
        archive = SubmissionArchive(id=row.id, original_submission_id=row.id, **audit, **archive_fields(row))
        with store_errors("archive submission"):
            archive = await self.archives.upsert(archive)
            await self.db.commit()
        logger.info("submission_archived", submission_id=submission_id, actor=actor.uid, reason=archive.reset_reason)

        with store_errors("delete archived submission"):
            await self.submissions.delete(row)
            await self.db.commit()
        logger.info("submission_reset", submission_id=submission_id, exam_id=archive.exam_id)
        return archive
