import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from xcrol.config import settings
from xcrol.core.exceptions import InvalidRequestError, OAuthError
from xcrol.database import async_session, dispose_engine, init_db

APP_VERSION = "0.1.0"
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: create tables
    await init_db()

    # Expired code/token cleanup. Expiry is enforced on read, so this only keeps tables small.
    async def _sweep_loop() -> None:
        from xcrol.oauth2.tokens import purge_expired

        while True:
            await asyncio.sleep(settings.oauth_sweep_interval_seconds)
            try:
                async with async_session() as db:
                    await purge_expired(db)
            except Exception:
                logger.exception("Background task error")

    sweep_task = None
    if settings.oauth_sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(_sweep_loop())

    yield

    # Shutdown: cancel background tasks and dispose connection pool
    if sweep_task is not None:
        sweep_task.cancel()
    await dispose_engine()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        if request.url.path.startswith("/oauth2/"):
            response.headers.setdefault("Cache-Control", "no-store")
            response.headers.setdefault("Pragma", "no-cache")
        return response


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    """Render protocol errors as ``{"error", "error_description"}`` (RFC 6749 section 5.2)."""
    headers = {"Cache-Control": "no-store", "Pragma": "no-cache"}
    if exc.status_code in (401, 403):
        headers["WWW-Authenticate"] = f'Bearer error="{exc.error}"'
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.error, exc.description)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """Malformed OAuth requests get an ``invalid_request`` body; other routes keep FastAPI's default."""
    if not request.url.path.startswith("/oauth2/"):
        return await request_validation_exception_handler(request, exc)
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    description = f"Malformed parameters: {', '.join(fields)}" if fields else None
    return await oauth_error_handler(request, InvalidRequestError(description))


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    app = FastAPI(
        title="Login with XCROL",
        description="OAuth 2.0 authorization server for XCROL accounts",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # CORS configurable via CORS_ORIGINS env var
    allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_exception_handler(OAuthError, oauth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # OAuth2 protocol endpoints
    from xcrol.oauth2.routes import discovery_router, router as oauth2_router

    app.include_router(oauth2_router)
    app.include_router(discovery_router)

    # Register REST routers
    from xcrol.api import API_PREFIX, API_ROUTERS

    for router in API_ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    return app


app = create_app()
