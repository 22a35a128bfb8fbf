from fastapi import APIRouter, Depends

from core.config import Settings, get_settings
from schemas.api import ApiResponse


router = APIRouter()


@router.get("/health", response_model=ApiResponse[dict[str, str]])
def health_check(
    settings: Settings = Depends(get_settings),
) -> ApiResponse[dict[str, str]]:
    """Liveness probe; does not call the generation service."""
    return ApiResponse(
        success=True,
        data={
            "status": "healthy",
            "message": f"{settings.APP_NAME} API is running",
            "environment": settings.ENVIRONMENT,
        },
        message="Health check successful",
    )
