"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from lms.config import settings
from lms.api import attempts_router, health_router, tests_router
from lms.core.exceptions import AttemptError
from lms.db import models  # noqa: F401  (register tables)
from lms.db.session import Base, get_engine
from lms.schemas.common import ErrorResponse

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("LMS attempts backend starting (%s)…", settings.ENV)
    if settings.CREATE_TABLES_ON_STARTUP:
        Base.metadata.create_all(bind=get_engine())
        logger.info("Database tables ensured")
    yield
    logger.info("LMS attempts backend shut down")


app = FastAPI(
    title="LMS Attempts API",
    description="Timed test attempts: session persistence, scoring and analytics",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)


# ── Errors ─────────────────────────────────────────────────────────────────────


@app.exception_handler(AttemptError)
async def attempt_error_handler(request: Request, exc: AttemptError):
    """Domain errors that escaped a route's own mapping."""
    logger.warning("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    body = ErrorResponse(error_code=type(exc).__name__, message=str(exc))
    return JSONResponse(status_code=400, content=body.model_dump())


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(tests_router, prefix="/api/tests", tags=["Tests"])
app.include_router(attempts_router, prefix="/api/attempts", tags=["Attempts"])


@app.get("/")
async def root():
    return {
        "name": "LMS Attempts API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
