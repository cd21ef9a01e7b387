"""Emergency stop: halt the bot and close the main and hedge positions."""

import logging

from hedgebot.engine.errors import HedgeBotError

logger = logging.getLogger(__name__)


async def run_emergency_stop(runtime, close_positions: bool = True) -> dict:
    """Stop the monitor loop, then flatten the book.

    Closing realizes PnL at the latest known price; the hedge is closed first
    so the main is never promoted. Failures are collected, not raised.

    Returns dict with stopped, positions_closed and errors.
    """
    result = {"stopped": False, "positions_closed": 0, "errors": []}

    try:
        result["stopped"] = await runtime.stop()
    except HedgeBotError as e:
        result["errors"].append(f"Stop failed: {e}")

    if close_positions:
        state = runtime.state
        open_before = sum(1 for t in (state.main_trade, state.hedge_trade) if t is not None)

        if not await runtime.client.cancel_all_orders():
            result["errors"].append("Failed to cancel open orders")

        price = runtime.feed.get_current_price() or state.last_price
        try:
            result["errors"].extend(await runtime.machine.flatten(price, reason="emergency_stop"))
        except HedgeBotError as e:
            logger.critical(f"[emergency_stop] State update failed: {e}")
            result["errors"].append(str(e))

        state = runtime.state
        open_after = sum(1 for t in (state.main_trade, state.hedge_trade) if t is not None)
        result["positions_closed"] = open_before - open_after

    for error in result["errors"]:
        logger.error(f"[emergency_stop] {error}")
    summary = f"Emergency stop: bot stopped, {result['positions_closed']} positions closed"
    if result["errors"]:
        summary += f", {len(result['errors'])} errors"
    logger.warning(summary)
    runtime.notify(summary)
    return result
