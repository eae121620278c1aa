"""
Assessment Engine HTTP service

Quiz authoring, timed attempts, objective and AI-assisted grading, enrollment capacity.
Every /api route resolves the caller from X-User-Id and goes through AssessmentEngine;
failures come back as {"error", "message", ...} with the status from STATUS_BY_ERROR.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment_engine.api import attempts, grading, notifications, offerings, quizzes, semesters
from assessment_engine.config import settings
from assessment_engine.database import SessionLocal, init_db
from assessment_engine.services.permissions import capability_registry
from assessment_engine.utils.cache import cache_service
from assessment_engine.utils.rate_limiter import rate_limiter

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

UNLIMITED_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json"}


def load_capabilities() -> None:
    """Load the capability catalog, seeding it from settings on first run"""
    db = SessionLocal()
    try:
        capability_registry.load(db, settings.DEFAULT_CAPABILITIES)
    finally:
        db.close()
    logger.info(f"Loaded {len(capability_registry)} capabilities")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    try:
        init_db()
        load_capabilities()
    except Exception:
        logger.exception("Database initialization failed")
        raise
    yield
    logger.info("Shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=__doc__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, error: str, message, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "status_code": status_code, **extra},
    )


@app.middleware("http")
async def throttle_and_time(request: Request, call_next):
    """Per-caller rate limit on API paths, then a timing line for every request"""
    if request.url.path not in UNLIMITED_PATHS:
        try:
            await rate_limiter.check_rate_limit(request)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content=e.detail)

    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({time.perf_counter() - started:.3f}s)"
    )
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    # engine failures arrive with a dict detail that already names the error code
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={**exc.detail, "status_code": exc.status_code})
    return error_response(exc.status_code, "http_error", exc.detail)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return error_response(422, "validation_failed", "Request body is invalid", retryable=False, details={"errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(
        500,
        "internal_server_error",
        "An unexpected error occurred. Please try again later.",
        detail=str(exc) if settings.DEBUG else None,
    )


@app.get("/health")
async def health_check():
    """Liveness plus the optional dependencies this instance runs with"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "ai_provider": settings.AI_PROVIDER,
        "cache": "redis" if cache_service.enabled else "disabled",
        "timestamp": time.time(),
    }


@app.get("/")
async def root():
    return {"message": "Assessment Engine API", "version": settings.APP_VERSION, "docs": "/docs"}


for module in (quizzes, attempts, grading, offerings, semesters, notifications):
    app.include_router(module.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("assessment_engine.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
