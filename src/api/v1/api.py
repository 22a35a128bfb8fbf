from fastapi import APIRouter

from .consulting import router as consulting_router
from .health import router as health_router


api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
# Consulting routes carry their own rate-limit dependency
api_router.include_router(consulting_router)
