"""
Fault simulation for the payment API.

When enabled, every request is delayed by a random duration and, with
probability ``error_rate``, answered with HTTP 500 instead of being handled.
Used to exercise the circuit breaker and retry path of the order service.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

SIMULATED_FAULT_BODY = {"error": "Simulated fault", "message": "Fault simulation is active"}


@dataclass(frozen=True)
class FaultSimulationConfig:
    """
    Configuration for fault simulation.

    Attributes:
        enabled: Whether the middleware is installed
        error_rate: Probability (0-1) of answering with HTTP 500
        min_delay: Lower bound of the injected delay in seconds
        max_delay: Upper bound of the injected delay in seconds
        path_prefix: Only requests under this path are affected
    """

    enabled: bool = False
    error_rate: float = 0.5
    min_delay: float = 0.5
    max_delay: float = 1.5
    path_prefix: str = "/api/v1/payments"

    def __post_init__(self) -> None:
        if not 0.0 <= self.error_rate <= 1.0:
            raise ValueError(f"error_rate must be between 0.0 and 1.0, got {self.error_rate}")
        if self.min_delay < 0:
            raise ValueError(f"min_delay must be >= 0, got {self.min_delay}")
        if self.max_delay < self.min_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= min_delay ({self.min_delay})"
            )


def install_fault_simulation(
    app: FastAPI,
    config: FaultSimulationConfig,
    *,
    rng: random.Random | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """
    Install the fault simulation middleware if the config enables it.

    Returns:
        True if the middleware was installed
    """
    if not config.enabled:
        return False

    source = rng or random.Random()  # nosec B311 - not security sensitive
    logger.warning(
        "Fault simulation is ACTIVE: error_rate=%.2f, delay=%.2f-%.2fs",
        config.error_rate,
        config.min_delay,
        config.max_delay,
        extra={"error_rate": config.error_rate, "path_prefix": config.path_prefix},
    )

    @app.middleware("http")
    async def fault_simulation_middleware(request: Request, call_next):
        if not request.url.path.startswith(config.path_prefix):
            return await call_next(request)

        delay = source.uniform(config.min_delay, config.max_delay)
        await sleep(delay)

        if source.random() < config.error_rate:
            logger.info(
                "Fault simulation: returning HTTP 500 (delay=%.3fs)",
                delay,
                extra={"path": request.url.path, "delay_seconds": delay},
            )
            return JSONResponse(status_code=500, content=SIMULATED_FAULT_BODY)

        logger.debug("Fault simulation: passing through (delay=%.3fs)", delay)
        return await call_next(request)

    return True


__all__ = ["FaultSimulationConfig", "SIMULATED_FAULT_BODY", "install_fault_simulation"]
