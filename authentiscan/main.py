"""
Authentiscan API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups,
and manages the MongoDB connection lifecycle.

Composition root: the shared collaborators every request uses are built
once here and hung off app.state:
  app.state.detector — DetectorClient (detection provider)
  app.state.paystack — PaystackClient (payment provider)
  app.state.cache    — ResponseCache (per-process read cache)

Extension points:
  - Add new route groups with app.include_router() below
  - Add new middleware in the middleware block
  - Change startup behaviour in the lifespan context manager
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from authentiscan.ai.detector_client import DetectorClient
from authentiscan.core.config import settings
from authentiscan.core.database import close_mongo_connection, connect_to_mongo
from authentiscan.core.errors import AuthentiscanError
from authentiscan.core.rate_limit import limiter
from authentiscan.core.request_context import (
    REQUEST_ID_HEADER,
    RequestIdFilter,
    RequestIdMiddleware,
    get_request_id,
)
from authentiscan.routes.health import API_VERSION
from authentiscan.routes.health import router as health_router
from authentiscan.routes.payments import router as payments_router
from authentiscan.routes.results import router as results_router
from authentiscan.routes.scans import router as scans_router
from authentiscan.routes.users import router as users_router
from authentiscan.services.paystack_client import PaystackClient
from authentiscan.services.response_cache import ResponseCache

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s | %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage startup and shutdown lifecycle.

    Code before `yield` runs on startup; code after runs on shutdown.
    """
    logger.info("Starting Authentiscan API (env: %s)", settings.environment)
    await connect_to_mongo()
    yield
    logger.info("Shutting down Authentiscan API")
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Authentiscan API",
    description=(
        "Deepfake verification for images, video and audio with metered credits. "
        "All detection results are probabilistic — not guaranteed."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    # Disable docs in production to reduce attack surface
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)

app.state.detector = DetectorClient.from_settings()
app.state.paystack = PaystackClient.from_settings()
app.state.cache = ResponseCache.from_settings()


# ─── Error handling ────────────────────────────────────────────────────────────
async def _domain_error_handler(request: Request, exc: AuthentiscanError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or get_request_id()
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": request_id},
        headers={REQUEST_ID_HEADER: request_id},
    )


app.add_exception_handler(AuthentiscanError, _domain_error_handler)
app.add_exception_handler(Exception, _unhandled_error_handler)

# Attach the limiter to app state so slowapi can find it.
# Routes opt-in with @limiter.limit("N/minute") + request: Request parameter.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(users_router)
app.include_router(scans_router)
app.include_router(results_router)
app.include_router(payments_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "Authentiscan API",
        "version": API_VERSION,
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
