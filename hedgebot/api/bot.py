"""Bot control API: status, start/stop, state, PnL, reset, emergency stop."""

from fastapi import APIRouter, Depends, HTTPException

from hedgebot.api.deps import get_bot_runtime, require_token
from hedgebot.engine.errors import HedgeBotError
from hedgebot.engine.runtime import BotRuntime
from hedgebot.schemas.bot_state import (
    BotStatusRead,
    EmergencyStopRequest,
    EmergencyStopResult,
    PnlRead,
    StateRead,
)

router = APIRouter(prefix="/api/bot", tags=["bot"], dependencies=[Depends(require_token)])


def _state_payload(runtime: BotRuntime) -> dict:
    state = runtime.state
    return {**state.to_dict(), "phase": state.phase.value}


@router.get("/status", response_model=BotStatusRead)
def bot_status(runtime: BotRuntime = Depends(get_bot_runtime)):
    return runtime.status()


@router.post("/start", response_model=BotStatusRead)
async def start_bot(runtime: BotRuntime = Depends(get_bot_runtime)):
    try:
        await runtime.start()
    except HedgeBotError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return runtime.status()


@router.post("/stop", response_model=BotStatusRead)
async def stop_bot(runtime: BotRuntime = Depends(get_bot_runtime)):
    await runtime.stop()
    return runtime.status()


@router.get("/state", response_model=StateRead)
def get_state(runtime: BotRuntime = Depends(get_bot_runtime)):
    """Full persisted snapshot as currently held in memory."""
    return _state_payload(runtime)


@router.get("/pnl", response_model=PnlRead)
def get_pnl(runtime: BotRuntime = Depends(get_bot_runtime)):
    state = runtime.state
    return {
        "total": state.realized_pnl,
        "count": len(state.profit_loss_log),
        "entries": [entry.to_dict() for entry in state.profit_loss_log],
    }


@router.post("/reset", response_model=StateRead)
async def reset_state(runtime: BotRuntime = Depends(get_bot_runtime)):
    """Wipe the persisted state. Refused while the bot is running."""
    if runtime.is_running:
        raise HTTPException(status_code=409, detail="Stop the bot before resetting its state")
    await runtime.reset()
    return _state_payload(runtime)


@router.post("/emergency-stop", response_model=EmergencyStopResult)
async def emergency_stop(
    body: EmergencyStopRequest | None = None,
    runtime: BotRuntime = Depends(get_bot_runtime),
):
    """Stop the bot and optionally close main and hedge positions."""
    from hedgebot.services.emergency_stop import run_emergency_stop

    close_positions = body.close_positions if body else True
    return await run_emergency_stop(runtime, close_positions=close_positions)
