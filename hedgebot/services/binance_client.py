"""Binance USDT-M futures client wrapper for order placement.

Wraps python-binance's AsyncClient. The account runs in hedge (dual-position)
mode, so the main and hedge trades live in the LONG and SHORT position slots
of the same symbol; they are always on opposite sides and never collide.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from binance import AsyncClient
from binance.exceptions import BinanceAPIException, BinanceRequestException

from hedgebot.engine.state import Role, Side
from hedgebot.utils.constants import MAX_LEVERAGE, POSITION_SIDE_LONG, POSITION_SIDE_SHORT

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    success: bool
    order_id: str | None = None
    error: str | None = None
    filled_price: float | None = None
    filled_amount: float | None = None
    order_status: str | None = None
    raw_response: str | None = None


def position_side_for(side: Side) -> str:
    return POSITION_SIDE_LONG if side is Side.LONG else POSITION_SIDE_SHORT


def _opening_order_side(side: Side) -> str:
    return "BUY" if side is Side.LONG else "SELL"


def _closing_order_side(side: Side) -> str:
    return "SELL" if side is Side.LONG else "BUY"


def _float_or_none(value) -> float | None:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result or None


class BinanceFuturesClient:
    """Opens and closes main/hedge positions on one futures symbol."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        symbol: str,
        leverage: int,
        testnet: bool = False,
        dry_run: bool = True,
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.symbol = symbol
        self.leverage = leverage
        self.testnet = testnet
        self.dry_run = dry_run
        self.timeout = timeout
        self._client: AsyncClient | None = None
        self._hedge_mode_enabled = False
        self._leverage_set = False

    async def _ensure_client(self):
        """Lazily create the python-binance AsyncClient."""
        if self._client is not None:
            return
        self._client = await asyncio.wait_for(
            AsyncClient.create(
                api_key=self.api_key or None,
                api_secret=self.api_secret or None,
                testnet=self.testnet,
            ),
            timeout=self.timeout,
        )
        logger.info(f"Binance futures client initialized (testnet={self.testnet}, dry_run={self.dry_run})")

    async def _call(self, method_name: str, **kwargs):
        """Invoke an AsyncClient method with a bounded timeout."""
        await self._ensure_client()
        method = getattr(self._client, method_name)
        return await asyncio.wait_for(method(**kwargs), timeout=self.timeout)

    async def enable_hedge_mode(self):
        """Switch the account to dual-position mode once per process."""
        if self._hedge_mode_enabled or self.dry_run:
            return
        current = await self._call("futures_get_position_mode")
        if not current.get("dualSidePosition"):
            await self._call("futures_change_position_mode", dualSidePosition="true")
            logger.info("Hedge mode enabled for account")
        self._hedge_mode_enabled = True

    async def set_leverage(self):
        """Apply the configured leverage to the symbol once per process."""
        if self._leverage_set or self.dry_run:
            return
        if not 1 <= int(self.leverage) <= MAX_LEVERAGE:
            raise ValueError(f"Invalid leverage: {self.leverage}")
        resp = await self._call("futures_change_leverage", symbol=self.symbol, leverage=int(self.leverage))
        if int(resp.get("leverage", 0)) != int(self.leverage):
            raise RuntimeError(f"Leverage not applied: {resp}")
        logger.info(f"Leverage set to {self.leverage}x for {self.symbol}")
        self._leverage_set = True

    async def open_position(self, role: Role, side: Side, qty: float) -> OrderResult:
        """Open a MARKET position for the given role on the given side."""
        position_side = position_side_for(side)
        order_side = _opening_order_side(side)

        if self.dry_run:
            order_id = f"dry-{int(time.time() * 1000)}"
            logger.info(f"DRY RUN open {role.value}: {order_side} {qty} {self.symbol} ({position_side})")
            return OrderResult(success=True, order_id=order_id, order_status="DRY_RUN")

        try:
            await self.enable_hedge_mode()
            await self.set_leverage()
            order = await self._call(
                "futures_create_order",
                symbol=self.symbol,
                side=order_side,
                type="MARKET",
                quantity=qty,
                positionSide=position_side,
            )
            logger.info(f"{role.value} opened: {order_side} {qty} ({position_side}) order={order.get('orderId')}")
            return self._result_from_order(order)
        except asyncio.TimeoutError:
            logger.error(f"Open {role.value} timed out after {self.timeout}s")
            return OrderResult(success=False, error=f"timeout after {self.timeout}s")
        except (BinanceAPIException, BinanceRequestException) as e:
            logger.error(f"Open {role.value} rejected: {e}")
            return OrderResult(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Open {role.value} failed: {e}", exc_info=True)
            return OrderResult(success=False, error=str(e))

    async def close_position(self, role: Role, side: Side, qty: float) -> OrderResult:
        """Close up to ``qty`` of the position on ``side``.

        A missing position counts as closed so a retried close is harmless.
        """
        position_side = position_side_for(side)
        order_side = _closing_order_side(side)

        if self.dry_run:
            order_id = f"dry-{int(time.time() * 1000)}"
            logger.info(f"DRY RUN close {role.value}: {order_side} {qty} {self.symbol} ({position_side})")
            return OrderResult(success=True, order_id=order_id, order_status="DRY_RUN")

        try:
            await self.enable_hedge_mode()
            positions = await self._call("futures_position_information", symbol=self.symbol)
            pos = next((p for p in positions if p.get("positionSide") == position_side), None)
            amount = abs(float(pos.get("positionAmt", 0))) if pos else 0.0
            if amount == 0:
                logger.info(f"No {position_side} position to close for {role.value}")
                return OrderResult(success=True, order_status="NO_POSITION")

            close_qty = min(amount, float(qty))
            order = await self._call(
                "futures_create_order",
                symbol=self.symbol,
                side=order_side,
                type="MARKET",
                quantity=close_qty,
                positionSide=position_side,
            )
            logger.info(f"{role.value} closed: {order_side} {close_qty} ({position_side}) order={order.get('orderId')}")
            return self._result_from_order(order)
        except asyncio.TimeoutError:
            logger.error(f"Close {role.value} timed out after {self.timeout}s")
            return OrderResult(success=False, error=f"timeout after {self.timeout}s")
        except (BinanceAPIException, BinanceRequestException) as e:
            logger.error(f"Close {role.value} rejected: {e}")
            return OrderResult(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Close {role.value} failed: {e}", exc_info=True)
            return OrderResult(success=False, error=str(e))

    @staticmethod
    def _result_from_order(order: dict) -> OrderResult:
        return OrderResult(
            success=True,
            order_id=str(order.get("orderId")) if order.get("orderId") is not None else None,
            filled_price=_float_or_none(order.get("avgPrice")),
            filled_amount=_float_or_none(order.get("executedQty")),
            order_status=order.get("status"),
            raw_response=str(order),
        )

    async def get_positions(self) -> list[dict]:
        """Open positions on the symbol: position_side, size, entry_price."""
        if self.dry_run:
            return []
        raw = await self._call("futures_position_information", symbol=self.symbol)
        positions = []
        for pos in raw:
            size = float(pos.get("positionAmt", 0))
            if abs(size) < 1e-12:
                continue
            positions.append({
                "position_side": pos.get("positionSide"),
                "size": abs(size),
                "entry_price": float(pos.get("entryPrice", 0)),
            })
        return positions

    async def cancel_all_orders(self) -> bool:
        """Cancel every open order on the symbol."""
        if self.dry_run:
            logger.info(f"DRY RUN cancel all orders for {self.symbol}")
            return True
        try:
            await self._call("futures_cancel_all_open_orders", symbol=self.symbol)
            logger.info(f"All open orders canceled for {self.symbol}")
            return True
        except Exception as e:
            logger.error(f"Failed to cancel open orders for {self.symbol}: {e}")
            return False

    async def get_klines(self, interval: str, limit: int) -> list[list]:
        """Raw futures klines (public endpoint, also used in dry-run)."""
        return await self._call("futures_klines", symbol=self.symbol, interval=interval, limit=limit)

    async def close(self):
        """Close the underlying HTTP session."""
        if self._client is not None:
            try:
                await self._client.close_connection()
            except Exception as e:
                logger.debug(f"Error closing Binance client: {e}")
        self._client = None
        self._hedge_mode_enabled = False
        self._leverage_set = False
