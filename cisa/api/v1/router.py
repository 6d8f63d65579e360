from fastapi import APIRouter

from cisa.api.v1.endpoints import exams, grading, health, submissions, users

api_router = APIRouter()
api_router.include_router(users.router)
api_router.include_router(exams.router)
api_router.include_router(submissions.router)
api_router.include_router(grading.router)
api_router.include_router(health.router)
