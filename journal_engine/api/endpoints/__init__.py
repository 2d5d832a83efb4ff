"""
API endpoint routers.
"""
from fastapi import APIRouter

from journal_engine.api.endpoints.cron import router as cron_router
from journal_engine.api.endpoints.tasks import router as tasks_router

# Create main API router
router = APIRouter()

# Include sub-routers
router.include_router(tasks_router, prefix="/tasks", tags=["Tasks"])
router.include_router(cron_router, prefix="/cron", tags=["Cron"])
