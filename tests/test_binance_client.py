"""Tests for the Binance futures order client (SDK mocked)."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from hedgebot.engine.state import Role, Side
from hedgebot.services.binance_client import BinanceFuturesClient


def _make_client(dry_run: bool = False) -> BinanceFuturesClient:
    client = BinanceFuturesClient(
        api_key="key", api_secret="secret", symbol="BTCUSDT", leverage=10, dry_run=dry_run, timeout=1.0
    )
    if not dry_run:
        sdk = AsyncMock()
        sdk.futures_get_position_mode.return_value = {"dualSidePosition": True}
        sdk.futures_change_leverage.return_value = {"leverage": 10, "symbol": "BTCUSDT"}
        sdk.futures_create_order.return_value = {
            "orderId": 123, "avgPrice": "50010.5", "executedQty": "0.001", "status": "FILLED",
        }
        # Skip AsyncClient.create by pretending we already initialised
        client._client = sdk
    return client


# ---------------------------------------------------------------------------
# 1. Dry run
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_dry_run_open_is_synthetic_success(caplog):
    client = _make_client(dry_run=True)
    with caplog.at_level(logging.INFO):
        result = await client.open_position(Role.MAIN, Side.LONG, 0.001)
    assert result.success is True
    assert result.order_status == "DRY_RUN"
    assert result.order_id.startswith("dry-")
    assert "DRY RUN open main" in caplog.text


@pytest.mark.asyncio
async def test_dry_run_has_no_positions():
    client = _make_client(dry_run=True)
    assert await client.get_positions() == []
    assert await client.cancel_all_orders() is True


# ---------------------------------------------------------------------------
# 2. Orders
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_open_long_uses_buy_on_long_position_side():
    client = _make_client()

    result = await client.open_position(Role.MAIN, Side.LONG, 0.001)

    client._client.futures_create_order.assert_awaited_once_with(
        symbol="BTCUSDT", side="BUY", type="MARKET", quantity=0.001, positionSide="LONG",
    )
    assert result.success is True
    assert result.order_id == "123"
    assert result.filled_price == 50010.5
    assert result.order_status == "FILLED"


@pytest.mark.asyncio
async def test_open_enables_hedge_mode_and_leverage_once():
    client = _make_client()
    client._client.futures_get_position_mode.return_value = {"dualSidePosition": False}

    await client.open_position(Role.MAIN, Side.LONG, 0.001)
    await client.open_position(Role.HEDGE, Side.SHORT, 0.001)

    client._client.futures_change_position_mode.assert_awaited_once_with(dualSidePosition="true")
    client._client.futures_change_leverage.assert_awaited_once_with(symbol="BTCUSDT", leverage=10)


@pytest.mark.asyncio
async def test_close_short_buys_back_up_to_position_size():
    client = _make_client()
    client._client.futures_position_information.return_value = [
        {"positionSide": "LONG", "positionAmt": "0.002"},
        {"positionSide": "SHORT", "positionAmt": "-0.0005"},
    ]

    result = await client.close_position(Role.HEDGE, Side.SHORT, 0.001)

    assert result.success is True
    client._client.futures_create_order.assert_awaited_once_with(
        symbol="BTCUSDT", side="BUY", type="MARKET", quantity=0.0005, positionSide="SHORT",
    )


@pytest.mark.asyncio
async def test_close_without_position_is_successful_noop():
    client = _make_client()
    client._client.futures_position_information.return_value = [
        {"positionSide": "LONG", "positionAmt": "0"},
    ]

    result = await client.close_position(Role.MAIN, Side.LONG, 0.001)

    assert result.success is True
    assert result.order_status == "NO_POSITION"
    client._client.futures_create_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_exchange_error_returns_failure():
    client = _make_client()
    client._client.futures_create_order.side_effect = RuntimeError("insufficient margin")

    result = await client.open_position(Role.MAIN, Side.SHORT, 0.001)

    assert result.success is False
    assert "insufficient margin" in result.error


@pytest.mark.asyncio
async def test_timeout_returns_failure():
    client = _make_client()
    client._client.futures_create_order.side_effect = asyncio.TimeoutError()

    result = await client.open_position(Role.MAIN, Side.LONG, 0.001)

    assert result.success is False
    assert "timeout" in result.error


@pytest.mark.asyncio
async def test_invalid_leverage_fails_open():
    client = _make_client()
    client.leverage = 500

    result = await client.open_position(Role.MAIN, Side.LONG, 0.001)

    assert result.success is False
    client._client.futures_create_order.assert_not_awaited()


# ---------------------------------------------------------------------------
# 3. Account queries
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_positions_skips_empty_slots():
    client = _make_client()
    client._client.futures_position_information.return_value = [
        {"positionSide": "LONG", "positionAmt": "0.001", "entryPrice": "50000.0"},
        {"positionSide": "SHORT", "positionAmt": "0.0", "entryPrice": "0.0"},
    ]

    positions = await client.get_positions()

    assert positions == [{"position_side": "LONG", "size": 0.001, "entry_price": 50000.0}]


@pytest.mark.asyncio
async def test_close_releases_sdk_session():
    client = _make_client()
    sdk = client._client

    await client.close()

    sdk.close_connection.assert_awaited_once()
    assert client._client is None
