from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from atlas.core import config
from atlas.core.database.engine import AsyncSessionLocal, init_db
from atlas.features.permissions.catalog import catalog, sync_catalog
from atlas.features.permissions.dependencies import get_decision_point
from atlas.features.permissions.exceptions import (
    AuthorizationDenied,
    Conflict,
    NotFound,
    ValidationError,
)
from atlas.features.permissions.routes import router as permission_router
from atlas.features.users.dependencies import get_authorization_header
from atlas.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="ATLAS Inventory Backend",
    description="IT asset inventory API with role-based permissions",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.atlas.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(ValidationError)
async def engine_validation_handler(_request: Request, exc: ValidationError):
    log.info("Validation error: %s", exc.message)
    return JSONResponse(status_code=400, content=jsonable_encoder({"detail": exc.message, **exc.details}))


@app.exception_handler(NotFound)
async def not_found_handler(_request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content=jsonable_encoder({"detail": exc.message, **exc.details}))


@app.exception_handler(Conflict)
async def conflict_handler(_request: Request, exc: Conflict):
    log.info("Conflict: %s", exc.message)
    return JSONResponse(status_code=409, content=jsonable_encoder({"detail": exc.message, **exc.details}))


@app.exception_handler(AuthorizationDenied)
async def authorization_denied_handler(_request: Request, _exc: AuthorizationDenied):
    # Never say which permission was missing
    return JSONResponse(status_code=403, content={"detail": "Permission denied"})


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Create tables and mirror the permission catalog."""
    log.info("Initializing database...")
    await init_db()
    async with AsyncSessionLocal() as db:
        await sync_catalog(db, catalog)
    if get_decision_point().allows_everything:
        log.warning("AUTHZ_ALLOW_ALL is set: every authorization check is allowed")
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "ATLAS Inventory API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/api/permissions/*", "/api/roles/*", "/api/audit-logs"],
            "public_endpoints": ["/", "/health"]
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Roles, permission catalog, assignments, audit log
app.include_router(permission_router, prefix="/api", tags=["permissions"])
