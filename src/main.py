import logging

from core.observability import configure_observability


# Must run before FastAPI is imported so requests are instrumented
configure_observability()

from fastapi import FastAPI  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html  # noqa: E402
from starlette.exceptions import HTTPException as StarletteHTTPException  # noqa: E402

from api.v1.api import api_router  # noqa: E402
from core.config import get_settings  # noqa: E402
from core.error_handler import (  # noqa: E402
    ExceptionNormalizationMiddleware,
    global_exception_handler,
    setup_logging,
)
from core.exceptions import DomainError  # noqa: E402
from core.middleware import CorrelationIdMiddleware  # noqa: E402
from services.consulting.exceptions import FallbackInvocationError  # noqa: E402


setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="AI business consulting with streamed, self-healing JSON results",
    version="0.1.0",
    docs_url=None,  # mounted under /api/v1/docs
    redoc_url=None,
)

# Middleware order: the last added runs first, so correlation IDs are set
# before the normalization safety net can log anything.
app.add_middleware(ExceptionNormalizationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "Retry-After"],
)
app.add_middleware(CorrelationIdMiddleware)

for exc_type in (
    StarletteHTTPException,
    RequestValidationError,
    FallbackInvocationError,
    DomainError,
):
    app.add_exception_handler(exc_type, global_exception_handler)

app.include_router(api_router, prefix="/api/v1")


@app.get("/api/v1/docs", include_in_schema=False)
def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/openapi.json", title=f"{settings.APP_NAME} API Docs"
    )


@app.get("/api/v1/redoc", include_in_schema=False)
def redoc_html():
    return get_redoc_html(
        openapi_url="/openapi.json", title=f"{settings.APP_NAME} API Redoc"
    )


@app.get("/")
def read_root() -> dict[str, str]:
    return {"message": f"{settings.APP_NAME} API", "docs": "/api/v1/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
