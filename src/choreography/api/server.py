"""
Process entry point serving the HTTP API next to the running choreography.

Usage:
    CHOREOGRAPHY_LOG_LEVEL=DEBUG choreography-api
"""

import asyncio
import logging

import uvicorn

from choreography.api.app import create_app
from choreography.bootstrap import ChoreographySystem, build_system
from choreography.config import ChoreographySettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_server(system: ChoreographySystem, settings: ChoreographySettings) -> uvicorn.Server:
    """Build (without starting) the uvicorn server for a wired system."""
    app = create_app(
        order_service=system.order_service,
        payment_service=system.payment_service,
        fault_simulation=settings.fault_simulation_config(),
    )
    config = uvicorn.Config(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )
    return uvicorn.Server(config)


async def serve(settings: ChoreographySettings) -> None:
    """Start the system, serve HTTP until shutdown, then stop the system."""
    system = await build_system(settings)
    server = build_server(system, settings)
    async with system:
        logger.info(
            "Serving HTTP API on %s:%d",
            settings.http_host,
            settings.http_port,
            extra={"host": settings.http_host, "port": settings.http_port},
        )
        await server.serve()


def main() -> None:
    settings = ChoreographySettings.from_env()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
