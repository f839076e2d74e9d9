"""
Appraisely - Main Application Entry Point

Multi-tenant performance appraisal platform.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from audit_trail.ledger import AuditWriteError
from backend.config import get_settings
from backend.db.session import engine
from backend.middleware.audit_log import AuditLogMiddleware
from backend.middleware.rate_limit import RateLimitMiddleware
from backend.middleware.rbac import NOT_AUTHORIZED
from backend.routers.v1 import admin, appraisals, audit, auth, cycles, employees, roles
from backend.services.appraisal_workflow import AppraisalAccessDenied, AppraisalConflictError
from backend.services.appraiser_assignment import AssignmentRejectedError
from backend.services.role_mimicking import MimicDeniedError
from backend.services.role_service import RoleGrantError
from backend.services.tenant_guard import TenantViolationError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
if settings.sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"appraisely@{settings.app_version}",
        traces_sample_rate=0.1 if settings.environment == "production" else 1.0,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    # Database connection pool is lazy-initialized by SQLAlchemy
    logger.info(f"{settings.app_name} {settings.app_version} starting ({settings.environment})")
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description=(
        "Appraisely runs performance appraisals for many organizations on one "
        "platform: ranked roles, hierarchy-aware appraiser assignment, a guarded "
        "appraisal workflow and a tamper-evident audit trail."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    openapi_url="/api/openapi.json" if settings.debug else None,
)

# Request logging middleware (outermost, captures all requests)
app.add_middleware(AuditLogMiddleware)

# Rate limiting middleware
app.add_middleware(RateLimitMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Domain exception handlers ──


@app.exception_handler(TenantViolationError)
async def tenant_violation_handler(request: Request, exc: TenantViolationError) -> JSONResponse:
    # Already logged and audited at the point of detection
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": NOT_AUTHORIZED})


@app.exception_handler(AppraisalAccessDenied)
async def appraisal_access_handler(request: Request, exc: AppraisalAccessDenied) -> JSONResponse:
    # Reasons stay in the audit entry written by the service
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": NOT_AUTHORIZED})


@app.exception_handler(MimicDeniedError)
async def mimic_denied_handler(request: Request, exc: MimicDeniedError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": NOT_AUTHORIZED})


@app.exception_handler(AppraisalConflictError)
async def appraisal_conflict_handler(request: Request, exc: AppraisalConflictError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(AssignmentRejectedError)
async def assignment_rejected_handler(request: Request, exc: AssignmentRejectedError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Invalid appraiser assignment", "reasons": exc.reasons},
    )


@app.exception_handler(RoleGrantError)
async def role_grant_handler(request: Request, exc: RoleGrantError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(AuditWriteError)
async def audit_write_handler(request: Request, exc: AuditWriteError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Audit trail unavailable"},
    )


# Health check endpoints
@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "appraisely-api"}


@app.get("/health/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check with service metadata."""
    return {
        "status": "ready",
        "service": "appraisely-api",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# API v1 routes
app.include_router(
    auth.router,
    prefix=f"{settings.api_v1_prefix}/auth",
    tags=["Auth"],
)
app.include_router(
    employees.router,
    prefix=f"{settings.api_v1_prefix}/organizations/{{org_id}}/employees",
    tags=["Employees"],
)
app.include_router(
    roles.router,
    prefix=f"{settings.api_v1_prefix}/organizations/{{org_id}}/roles",
    tags=["Roles"],
)
app.include_router(
    cycles.router,
    prefix=f"{settings.api_v1_prefix}/organizations/{{org_id}}/cycles",
    tags=["Cycles"],
)
app.include_router(
    appraisals.router,
    prefix=f"{settings.api_v1_prefix}/organizations/{{org_id}}/appraisals",
    tags=["Appraisals"],
)
app.include_router(
    audit.router,
    prefix=f"{settings.api_v1_prefix}/organizations/{{org_id}}/audit",
    tags=["Audit"],
)
app.include_router(
    admin.router,
    prefix=f"{settings.api_v1_prefix}/organizations/{{org_id}}/admin",
    tags=["Admin"],
)
