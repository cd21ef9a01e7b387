"""Position sync: compare the persisted trades with the exchange on startup.

Report only. The snapshot is never modified here: a disagreement between the
ledger and the exchange needs an operator to decide which side is right.

Scenarios:
1. State has a trade, exchange has the matching position side -> OK
2. State has a trade, exchange has none on that side -> reported (stale trade)
3. Exchange has a position the state does not track -> reported (untracked)
"""

import logging

from hedgebot.engine.state import PersistedState
from hedgebot.services.binance_client import position_side_for

logger = logging.getLogger(__name__)


async def sync_positions_on_startup(state: PersistedState, client, notify=None) -> list[str]:
    """Return human-readable mismatches (empty when everything agrees)."""
    if client.dry_run:
        logger.info("Position sync: dry-run mode, skipping")
        return []

    try:
        exchange_positions = await client.get_positions()
    except Exception as e:
        logger.error(f"Position sync: failed to fetch exchange positions: {e}")
        return []

    by_side = {p["position_side"]: p for p in exchange_positions}
    tracked = {}
    if state.main_trade:
        tracked[position_side_for(state.main_trade.side)] = ("main", state.main_trade)
    if state.hedge_trade:
        tracked[position_side_for(state.hedge_trade.side)] = ("hedge", state.hedge_trade)

    if not tracked and not by_side:
        logger.info("Position sync: no positions in state or on exchange, all clear")
        return []

    mismatches = []
    for position_side, (role, trade) in tracked.items():
        pos = by_side.get(position_side)
        if pos:
            logger.info(
                f"Position sync: {role} {trade.side.value} confirmed on exchange "
                f"(size {pos['size']}, entry {pos['entry_price']})"
            )
        else:
            mismatches.append(
                f"{role} {trade.side.value} opened at {trade.open_price:.2f} is in state "
                f"but no {position_side} position exists on the exchange"
            )

    for position_side, pos in by_side.items():
        if position_side not in tracked:
            mismatches.append(
                f"Untracked {position_side} position on exchange "
                f"(size {pos['size']}, entry {pos['entry_price']})"
            )

    for message in mismatches:
        logger.warning(f"Position sync: {message}. Manual review recommended.")
        if notify:
            notify(f"Position sync: {message}")
    return mismatches
