"""API routes."""

from hr_ledger.api.routes.health import router as health_router
from hr_ledger.api.routes.jobs import router as jobs_router
from hr_ledger.api.routes.leaves import router as leaves_router
from hr_ledger.api.routes.payroll_runs import router as payroll_runs_router
from hr_ledger.api.routes.workflows import router as workflows_router

__all__ = [
    "health_router",
    "jobs_router",
    "leaves_router",
    "payroll_runs_router",
    "workflows_router",
]
