from fastapi import APIRouter, Request, status

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", status_code=status.HTTP_200_OK)
async def healthcheck(request: Request) -> dict[str, str]:
    """Report liveness and whether the reconciliation schedule is running."""

    scheduler = getattr(request.app.state, "scheduler", None)
    reconciliation = "scheduled" if scheduler is not None and scheduler.running else "disabled"
    return {"status": "ok", "reconciliation": reconciliation}
