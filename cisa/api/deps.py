from collections.abc import AsyncIterator

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from cisa.core.exceptions import Unauthenticated
from cisa.core.security import AuthorizationContext, decode_access_token
from cisa.db.session import get_db
from cisa.integrations.ai.gemini import GeminiClient
from cisa.integrations.mail.smtp import Mailer, get_mailer
from cisa.repositories.user_repository import UserRepository
from cisa.services.grader_service import AIGrader
from cisa.services.submission_service import RequestAudit

bearer = HTTPBearer(auto_error=False)


async def db_session() -> AsyncIterator[AsyncSession]:
    async for s in get_db():
        yield s


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(db_session),
) -> AuthorizationContext:
    if not credentials:
        raise Unauthenticated("Missing auth token")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise Unauthenticated("Invalid auth token") from exc
    if payload.get("type") != "access" or not payload.get("sub"):
        raise Unauthenticated("Invalid auth token")
    user = await UserRepository(db).get_by_id(str(payload["sub"]))
    if not user or not user.is_active:
        raise Unauthenticated("User is inactive")
    return AuthorizationContext(
        uid=user.id,
        role=user.role,
        email=user.email or payload.get("email"),
        assigned_competency=user.assigned_competency,
    )


async def get_grader() -> AsyncIterator[AIGrader]:
    client = GeminiClient()
    try:
        yield AIGrader(client)
    finally:
        await client.aclose()


def get_result_mailer() -> Mailer:
    return get_mailer()


def get_request_audit(request: Request) -> RequestAudit:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    return RequestAudit(ip=ip, user_agent=request.headers.get("user-agent"))
