from enum import StrEnum


class Role(StrEnum):
    STUDENT = "student"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    GENERAL_USER = "general_user"


STAFF_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


class QuestionType(StrEnum):
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_SELECT = "multiple_select"
    DRAG_DROP = "drag_drop"
    MATCHING = "matching"
    CHECKLIST = "checklist"
    SHORT_RESPONSE = "short_response"
    EXTENDED_RESPONSE = "extended_response"


class MediaType(StrEnum):
    TEXT = "text"
    SIMULATION = "simulation"


class SubmissionStatus(StrEnum):
    PENDING = "pending"
    GRADED = "graded"
    ERROR = "error"


class Tier(StrEnum):
    GOLD = "Gold"
    SILVER = "Silver"
    BRONZE = "Bronze"


class OutboxStatus(StrEnum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


ALL_COMPETENCIES = "All"
DEFAULT_RESET_REASON = "Admin Reset"
SUBMISSION_GRADED_EVENT = "submission.graded"

OVERALL_SCORE_SCALE = 10
SHORT_RESPONSE_MAX_CHARS = 500
TEXT_ANSWER_MAX_CHARS = 10_000
RANDOM_SEED_CEILING = 1_000_000
