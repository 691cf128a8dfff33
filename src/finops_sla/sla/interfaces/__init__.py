"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for SLA monitoring module.

Contains:
- Controllers: FastAPI route handlers
- Dependencies: service graph wiring for the routes

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from finops_sla.sla.interfaces.controllers import sla_router
from finops_sla.sla.interfaces.dependencies import (
    SLAServices,
    build_sla_services,
    get_sla_services,
)

__all__ = ["sla_router", "SLAServices", "build_sla_services", "get_sla_services"]
