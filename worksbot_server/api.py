"""HTTP endpoints for the works bot server.

Endpoints:
- GET /api/health         - Health check
- GET /api/health/ready   - Readiness check, reports the token coordinator state
- GET /callback           - OAuth redirect target for a manual re-authorization

Token logic is delegated to the Services built in the application lifespan.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from worksbot_server.logging import mask
from worksbot_server.rate_limit import CALLBACK_RATE_LIMIT, limiter
from worksbot_server.services import Services

SERVICE_NAME = "worksbot-server"

router = APIRouter()
callback_router = APIRouter()


def get_services(request: Request) -> Services:
    """Get the Services instance from app state."""
    return request.app.state.services


# =============================================================================
# Health Endpoints
# =============================================================================


@router.get("/health")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/health/ready")
async def readiness_check(services: Services = Depends(get_services)) -> dict:
    return {
        "status": "ready",
        "service": SERVICE_NAME,
        "environment": services.settings.environment,
        "token_state": services.coordinator.state.value,
    }


# =============================================================================
# OAuth Callback
# =============================================================================


@callback_router.get("/callback")
@limiter.limit(CALLBACK_RATE_LIMIT)
async def oauth_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    services: Services = Depends(get_services),
) -> dict:
    """Finish a manual authorization: exchange the code and store the new pair.

    Used when an operator re-authorizes the bot by hand. The browser tier
    intercepts this URL itself and never lets its code reach here.
    """
    if error:
        logger.warning(
            "OAuth callback returned error",
            extra={"error": error, "error_description": error_description},
        )
        raise HTTPException(
            status_code=400,
            detail={"error": error, "error_description": error_description},
        )

    if not code:
        raise HTTPException(status_code=400, detail="Authorization code is missing")

    logger.info("OAuth callback received", extra={"code": mask(code), "state": state})

    tokens = await services.credential_source.exchange_authorization_code_grant(code)
    if tokens is None:
        raise HTTPException(
            status_code=502,
            detail="Token exchange failed. Please try again later.",
        )

    await services.credential_source.save_token_pair(tokens)
    logger.info("Tokens saved from OAuth callback", extra={"expires_in": tokens.expires_in})

    return {
        "success": True,
        "message": "Access token issued and saved",
        "token_type": tokens.token_type,
        "expires_in": tokens.expires_in,
    }
