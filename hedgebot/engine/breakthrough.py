"""Breakthrough threshold: the favorable-excursion target of a trade.

Pure functions, no I/O.
"""

from hedgebot.engine.state import Side, Trade


def breakthrough_price(side: Side, open_price: float, profit_point: float) -> float:
    """openPrice + PROFIT_POINT for Long, openPrice - PROFIT_POINT for Short."""
    return open_price + side.sign * profit_point


def breakthrough(trade: Trade | None, profit_point: float) -> float | None:
    """Breakthrough of an existing trade computed from its entry, None without a trade."""
    if trade is None:
        return None
    return breakthrough_price(trade.side, trade.open_price, profit_point)


def is_beyond_breakthrough(side: Side, price: float, threshold: float) -> bool:
    """True once price has reached the threshold in the trade's favor."""
    if side is Side.LONG:
        return price >= threshold
    return price <= threshold


def realized_pnl(side: Side, open_price: float, close_price: float) -> float:
    """(close - open) * (+1 Long, -1 Short), per unit."""
    return (close_price - open_price) * side.sign
