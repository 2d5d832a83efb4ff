"""
Scheduled endpoints, called by an external scheduler with the internal secret.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from journal_engine.api.deps import (
    get_continuation,
    get_monthly_summary_service,
    get_summary_service,
    get_task_store,
    get_weekly_summary_service,
    verify_internal_secret,
)
from journal_engine.core.logging import logger
from journal_engine.db.tasks import TaskStore
from journal_engine.graph.continuation import ChainContinuation
from journal_engine.graph.sweep import run_recovery_sweep
from journal_engine.services.summaries import (
    DailySummaryService,
    MonthlySummaryService,
    SummaryResult,
    SummaryService,
    WeeklySummaryService,
)


router = APIRouter(dependencies=[Depends(verify_internal_secret)])


class SweepResponse(BaseModel):
    stale_failed: int
    processed: int
    succeeded: int
    failed: int
    skipped: int


class SummaryBatchResponse(BaseModel):
    date: str
    results: List[SummaryResult]


@router.post("/process-tasks", response_model=SweepResponse)
async def process_tasks(
    tasks: TaskStore = Depends(get_task_store),
    continuation: ChainContinuation = Depends(get_continuation),
):
    """Recover stalled chains."""
    try:
        return SweepResponse(**await run_recovery_sweep(tasks, continuation))
    except Exception as e:
        logger.exception(f"Error running recovery sweep: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process tasks: {str(e)}",
        )



async def _run_summaries(service: SummaryService, start: Optional[date]) -> SummaryBatchResponse:
    target = start.isoformat() if start else service.default_period()
    try:
        results = await service.run_batch(target)
        return SummaryBatchResponse(date=target, results=results)
    except Exception as e:
        logger.exception(f"Error generating {service.period} summaries: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate {service.period} summaries: {str(e)}",
        )


@router.post("/daily-summary", response_model=SummaryBatchResponse)
async def daily_summary(
    day: Optional[date] = None,
    service: DailySummaryService = Depends(get_summary_service),
):
    """Generate daily summaries for all users (yesterday by default)."""
    return await _run_summaries(service, day)


@router.post("/weekly-summary", response_model=SummaryBatchResponse)
async def weekly_summary(
    week_start: Optional[date] = None,
    service: WeeklySummaryService = Depends(get_weekly_summary_service),
):
    """Generate weekly summaries for all users (last week by default)."""
    return await _run_summaries(service, week_start)


@router.post("/monthly-summary", response_model=SummaryBatchResponse)
async def monthly_summary(
    month_start: Optional[date] = None,
    service: MonthlySummaryService = Depends(get_monthly_summary_service),
):
    """Generate monthly summaries for all users (last month by default)."""
    return await _run_summaries(service, month_start)
