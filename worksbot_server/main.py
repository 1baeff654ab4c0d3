"""Works Bot Server.

Keeps the NAVER WORKS bot's OAuth credentials valid and exposes the manual
authorization callback. Run with:

    uvicorn --factory worksbot_server.main:create_app
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded

from worksbot_server import api
from worksbot_server.config import Settings, get_settings
from worksbot_server.exceptions import TokenAcquisitionFailed
from worksbot_server.logging import configure_logging
from worksbot_server.rate_limit import limiter, rate_limit_exceeded_handler
from worksbot_server.services import ServicesFactory, build_services


async def token_acquisition_failed_handler(request: Request, exc: Exception) -> JSONResponse:
    """No tier could produce a token; OAuth details stay in the logs."""
    logger.error(
        "Token acquisition failed while serving request",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable. Please try again later."},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def create_app(
    settings: Settings | None = None,
    services_factory: ServicesFactory = build_services,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    configure_logging(
        is_production=settings.is_production,
        log_level=settings.log_level,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting works bot server on port {settings.port}")

        services = await services_factory(settings)
        app.state.services = services

        yield

        await services.aclose()
        logger.info("Shutting down works bot server")

    app = FastAPI(
        title="Works Bot Server",
        description="OAuth credential lifecycle for the NAVER WORKS bot",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
    )

    app.add_exception_handler(TokenAcquisitionFailed, token_acquisition_failed_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.state.limiter = limiter

    app.include_router(api.router, prefix="/api")
    app.include_router(api.callback_router)

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "worksbot_server.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=not settings.is_production,
    )
