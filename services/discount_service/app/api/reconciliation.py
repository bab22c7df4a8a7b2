"""Manual trigger for a reconciliation pass."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_reconciliation_job
from ..reconciliation import ReconciliationJob
from ..schemas import ReconciliationReportResponse

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post("/run", response_model=ReconciliationReportResponse)
async def run_reconciliation(
    job: ReconciliationJob | None = Depends(get_reconciliation_job),
) -> ReconciliationReportResponse:
    if job is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Reconciliation not configured")
    report = await job.run()
    return ReconciliationReportResponse.model_validate(report.as_payload())
