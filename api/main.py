from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.config import settings
from api.database import init_db, close_db, get_db
from api.errors import BidflowError
from api.logging_config import setup_logging
from api.middleware.correlation import CorrelationIdMiddleware
from api.services import commitment_service, email_service

# Import models so they are registered with Base.metadata
import api.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_bidflow", env=settings.ENVIRONMENT)
    if not settings.BID_PORTAL_SECRET:
        logger.error("bid_portal_secret_missing", message="Bid links cannot be issued or verified")
    await init_db()
    yield
    await email_service.close_http_client()
    await commitment_service.close_http_client()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: normalize all errors to structured format:
# {"error": {"code": "...", "message": "...", "details": {...}}}
# ---------------------------------------------------------------------------

@app.exception_handler(BidflowError)
async def bidflow_exception_handler(request: Request, exc: BidflowError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", code=exc.code, path=request.url.path, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                # model_validator errors carry the raised ValueError in ctx
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID", "X-Bid-Pin-Session"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from api.routes.bid_packages import router as bid_packages_router  # noqa: E402
from api.routes.bid_invites import router as bid_invites_router  # noqa: E402
from api.routes.attachments import router as attachments_router  # noqa: E402
from api.routes.bid_portal import router as bid_portal_router  # noqa: E402

app.include_router(bid_packages_router, prefix="/api/v1/bid-packages", tags=["Bid Packages"])
app.include_router(bid_invites_router, prefix="/api/v1/bid-invites", tags=["Bid Invites"])
app.include_router(attachments_router, prefix="/api/v1/attachments", tags=["Attachments"])
app.include_router(bid_portal_router, prefix="/portal/bids", tags=["Bid Portal"])
