import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.casehub.api.v1.routes_cases import router as cases_router_v1
from src.casehub.api.v1.routes_changes import router as changes_router_v1
from src.casehub.api.v1.routes_consultations import router as consultations_router_v1
from src.casehub.api.v1.routes_documents import router as documents_router_v1
from src.casehub.api.v1.routes_lgpd import router as lgpd_router_v1
from src.casehub.api.v1.routes_notifications import router as notifications_router_v1
from src.casehub.api.v1.routes_profiles import router as profiles_router_v1
from src.casehub.api.v1.routes_reports import router as reports_router_v1
from src.casehub.api.v1.routes_requests import router as requests_router_v1
from src.casehub.api.v1.routes_storage import router as storage_router_v1
from src.casehub.api.v1.routes_system import router as system_router_v1
from src.casehub.config import settings
from src.casehub.errors import CaseHubError
from src.casehub.infra.db.bootstrap import init_sql_repositories
from src.casehub.logging_config import configure_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Case Hub API")


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    Configures logging, then, when USE_SQL_REPOS is enabled and a
    DATABASE_URL is configured, switches every repository to its SQL-backed
    implementation. In other environments (tests, local dev without a
    database), the in-memory repositories remain active.
    """

    configure_logging()
    init_sql_repositories()


@app.exception_handler(CaseHubError)
async def casehub_error_handler(request: Request, exc: CaseHubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# CORS configuration – permissive by default for development. Tighten via
# CORS_ALLOW_ORIGINS in production deployments.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness probe for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(system_router_v1, prefix="/api/v1")
app.include_router(profiles_router_v1, prefix="/api/v1")
app.include_router(cases_router_v1, prefix="/api/v1")
app.include_router(requests_router_v1, prefix="/api/v1")
app.include_router(consultations_router_v1, prefix="/api/v1")
app.include_router(reports_router_v1, prefix="/api/v1")
app.include_router(documents_router_v1, prefix="/api/v1")
app.include_router(notifications_router_v1, prefix="/api/v1")
app.include_router(lgpd_router_v1, prefix="/api/v1")
app.include_router(storage_router_v1, prefix="/api/v1")
app.include_router(changes_router_v1, prefix="/api/v1")
