"""Scheduled token refresh.

Rotates the token pair ahead of time so the refresh token never ages out
between bot interactions. Meant to be run from cron or a scheduler:

    python -m worksbot_server.refresh_job

Exit codes: 0 when a valid access token is stored, 1 when no tier could
produce one, 2 on configuration errors.
"""

import argparse
import asyncio
import sys
from typing import NoReturn

from loguru import logger
from pydantic import ValidationError

from worksbot_server.config import Settings, get_settings
from worksbot_server.exceptions import TokenAcquisitionFailed
from worksbot_server.logging import configure_logging, mask
from worksbot_server.services import ServicesFactory, build_services

EXIT_OK = 0
EXIT_ACQUISITION_FAILED = 1
EXIT_CONFIG_ERROR = 2


async def run(
    settings: Settings,
    *,
    force: bool = True,
    services_factory: ServicesFactory = build_services,
) -> int:
    """Refresh the stored token pair and return the process exit code.

    Args:
        settings: Application settings
        force: Rotate even if an access token is cached. Without it, the
            job only makes sure some token is available.
        services_factory: Builds the services (injectable for testing)
    """
    services = await services_factory(settings)
    try:
        if force:
            token = await services.coordinator.handle_refresh()
        else:
            token = await services.coordinator.get_access_token()
    except TokenAcquisitionFailed as e:
        logger.error("Scheduled token refresh failed", extra={"error": str(e)})
        return EXIT_ACQUISITION_FAILED
    finally:
        await services.aclose()

    logger.info("Scheduled token refresh completed", extra={"access_token": mask(token)})
    return EXIT_OK


def main() -> NoReturn:
    """Main entry point for the refresh job."""
    parser = argparse.ArgumentParser(
        prog="worksbot-refresh",
        description="Refresh the NAVER WORKS bot access token",
    )
    parser.add_argument(
        "--if-missing",
        action="store_true",
        help="Only acquire a token when none is stored (default: always rotate)",
    )
    args = parser.parse_args()

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(is_production=settings.is_production, log_level=settings.log_level)
    sys.exit(asyncio.run(run(settings, force=not args.if_missing)))


if __name__ == "__main__":
    main()
