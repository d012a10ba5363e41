"""API routes."""

from tally.api.routes.exceptions import router as exceptions_router
from tally.api.routes.health import router as health_router
from tally.api.routes.packs import router as packs_router
from tally.api.routes.pay_runs import router as pay_runs_router
from tally.api.routes.variances import router as variances_router

__all__ = [
    "exceptions_router",
    "health_router",
    "packs_router",
    "pay_runs_router",
    "variances_router",
]
