"""System API: health check, scheduler status, event log."""

from fastapi import APIRouter, Depends

from hedgebot.api.deps import get_bot_runtime, require_token
from hedgebot.engine.runtime import BotRuntime
from hedgebot.schemas.bot_state import EventRead

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler", dependencies=[Depends(require_token)])
def scheduler_status():
    """Current scheduler state with job details."""
    from hedgebot.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/events", response_model=list[EventRead], dependencies=[Depends(require_token)])
def list_events(
    kind: str | None = None,
    limit: int = 100,
    offset: int = 0,
    runtime: BotRuntime = Depends(get_bot_runtime),
):
    """Event log, newest first."""
    limit = max(1, min(limit, 1000))
    return runtime.store.recent_events(limit=limit, offset=max(0, offset), kind=kind)
