"""
HTTP surface of the order and payment services.

Requires the ``api`` extra (fastapi, uvicorn).
"""

from choreography.api.app import create_app
from choreography.api.faults import (
    SIMULATED_FAULT_BODY,
    FaultSimulationConfig,
    install_fault_simulation,
)
from choreography.api.routes import orders_router, payments_router

__all__ = [
    "FaultSimulationConfig",
    "SIMULATED_FAULT_BODY",
    "create_app",
    "install_fault_simulation",
    "orders_router",
    "payments_router",
]
