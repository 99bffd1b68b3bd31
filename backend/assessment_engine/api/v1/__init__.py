"""Team Assessment Engine - API v1 Router."""
from fastapi import APIRouter

from assessment_engine.api.v1.tests import router as tests_router
from assessment_engine.api.v1.attempts import router as attempts_router
from assessment_engine.api.v1.grading import router as grading_router

api_router = APIRouter()

api_router.include_router(tests_router)
api_router.include_router(attempts_router)
api_router.include_router(grading_router)
