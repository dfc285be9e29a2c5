import asyncio

import pytest

from src.deriv_agent.deriv import ConfigurationError, DerivAPIError, DerivClient
from src.deriv_agent.models import OpenTrade
from src.deriv_agent.series import SeriesStore
from src.deriv_agent.state import AgentState
from src.deriv_agent.trades import TradeStore
from tests.fakes import FakeConnector, deriv_responder, wait_for


def _client(connector: FakeConnector | None = None, **kwargs) -> tuple[DerivClient, SeriesStore, TradeStore, AgentState]:
    series = SeriesStore()
    trades = TradeStore()
    state = AgentState()
    client = DerivClient(
        series,
        trades,
        state,
        reconnect_delay_seconds=0.01,
        connector=connector or FakeConnector(),
        **kwargs,
    )
    return client, series, trades, state


def test_endpoint_carries_app_id() -> None:
    client, *_ = _client()

    assert client.endpoint("1089") == "wss://ws.derivws.com/websockets/v3?app_id=1089"


def test_connect_requires_app_id() -> None:
    client, *_ = _client()

    async def _run() -> None:
        with pytest.raises(ConfigurationError):
            await client.connect("")

    asyncio.run(_run())


def test_connect_is_idempotent_and_moves_through_statuses() -> None:
    connector = FakeConnector()
    client, _, _, state = _client(connector)
    seen: list[str] = []
    state.subscribe(lambda: seen.append(state.status))

    async def _run() -> None:
        await client.connect("1089")
        await client.connect("1089")
        assert len(connector.connections) == 1
        await client.authorize("token")
        assert client.authorized is True
        await client.close()

    asyncio.run(_run())

    assert "connecting" in seen
    assert "connected" in seen
    assert "authorized" in seen
    assert state.balance == 1000.0
    assert state.status == "disconnected"


def test_connect_failure_sets_error_status() -> None:
    client, _, _, state = _client(FakeConnector(fail_times=1))

    async def _run() -> None:
        with pytest.raises(ConnectionError):
            await client.connect("1089")

    asyncio.run(_run())

    assert state.status == "error"


def test_send_injects_increasing_req_ids() -> None:
    connector = FakeConnector()
    client, *_ = _client(connector)

    async def _run() -> None:
        await client.connect("1089")
        await client.send({"forget": "a"})
        await client.send({"forget": "b"})
        await client.close()

    asyncio.run(_run())

    ids = [request["req_id"] for request in connector.connections[0].sent]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_send_without_connection_raises_connection_error() -> None:
    client, *_ = _client()

    async def _run() -> None:
        with pytest.raises(ConnectionError, match="WebSocket not open"):
            await client.send({"ping": 1})

    asyncio.run(_run())


def test_subscribe_ticks_is_idempotent() -> None:
    connector = FakeConnector()
    client, series, _, _ = _client(connector)

    async def _run() -> None:
        await client.connect("1089")
        await client.subscribe_ticks("R_100")
        await client.subscribe_ticks("R_100")
        await client.close()

    asyncio.run(_run())

    assert len(connector.connections[0].requests("ticks")) == 1
    assert series.get_last_tick("R_100") is not None


def test_subscribe_while_disconnected_is_armed_on_connect() -> None:
    connector = FakeConnector()
    client, *_ = _client(connector)

    async def _run() -> None:
        await client.subscribe_ticks("R_50")
        assert client.subscriptions()["ticks"] == ["R_50"]
        await client.connect("1089")
        assert "R_50" in client.subscriptions()["live_tick_ids"]
        await client.close()

    asyncio.run(_run())

    assert [r["ticks"] for r in connector.connections[0].requests("ticks")] == ["R_50"]


def test_unsubscribe_ticks_forgets_subscription_id() -> None:
    connector = FakeConnector()
    client, *_ = _client(connector)

    async def _run() -> None:
        await client.connect("1089")
        await client.subscribe_ticks("R_100")
        sub_id = client.subscriptions()["live_tick_ids"]["R_100"]
        await client.unsubscribe_ticks("R_100")
        await client.unsubscribe_ticks("R_100")
        await client.close()
        return sub_id

    sub_id = asyncio.run(_run())

    forgets = connector.connections[0].requests("forget")
    assert [r["forget"] for r in forgets] == [sub_id]
    assert client.subscriptions()["ticks"] == []


def test_venue_error_rejects_request_and_records_last_error() -> None:
    def responder(conn, request):
        if request.get("ticks") == "BAD":
            return [
                {
                    "msg_type": "tick",
                    "error": {"code": "InvalidSymbol", "message": "Unknown symbol"},
                    "req_id": request["req_id"],
                }
            ]
        return deriv_responder(conn, request)

    client, _, _, state = _client(FakeConnector(responder))

    async def _run() -> None:
        await client.connect("1089")
        with pytest.raises(DerivAPIError) as excinfo:
            await client.subscribe_ticks("BAD")
        await client.close()
        return excinfo.value

    error = asyncio.run(_run())

    assert error.code == "InvalidSymbol"
    assert state.last_error == "Unknown symbol"
    assert "BAD" not in client.subscriptions()["ticks"]
    assert client.pending_count == 0


def test_subscribe_many_reports_failed_symbols() -> None:
    def responder(conn, request):
        if request.get("ticks") == "BAD":
            return [{"msg_type": "tick", "error": {"code": "InvalidSymbol", "message": "nope"}, "req_id": request["req_id"]}]
        return deriv_responder(conn, request)

    client, *_ = _client(FakeConnector(responder))

    async def _run() -> list[str]:
        await client.connect("1089")
        failed = await client.subscribe_many(["R_10", "BAD", "R_25"])
        await client.close()
        return failed

    failed = asyncio.run(_run())

    assert failed == ["BAD"]
    assert client.subscriptions()["ticks"] == ["R_10", "R_25"]


def test_subscribe_candles_loads_history() -> None:
    connector = FakeConnector()
    client, series, _, _ = _client(connector)

    async def _run() -> None:
        await client.connect("1089")
        await client.subscribe_candles("R_100", 60, count=3)
        await client.close()

    asyncio.run(_run())

    request = connector.connections[0].requests("ticks_history")[0]
    assert request["style"] == "candles"
    assert request["granularity"] == 60
    assert request["subscribe"] == 1
    assert len(series.get_candles("R_100", 60)) == 3


def test_close_rejects_pending_requests() -> None:
    def responder(conn, request):
        if "proposal" in request:
            return []
        return deriv_responder(conn, request)

    connector = FakeConnector(responder)
    client, _, trades, state = _client(connector)

    async def _run() -> None:
        await client.connect("1089")
        buy = asyncio.create_task(client.buy("R_100", 1.0))
        assert await wait_for(lambda: client.pending_count == 1)
        connector.connections[0].drop()
        with pytest.raises(ConnectionError, match="Socket closed"):
            await buy
        await client.close()

    asyncio.run(_run())

    assert client.pending_count == 0
    assert trades.open_trades() == []
    assert state.last_error == "Socket closed"


def test_buy_rejects_unknown_direction() -> None:
    client, *_ = _client()

    async def _run() -> None:
        with pytest.raises(ValueError, match="unsupported direction"):
            await client.buy("R_100", 1.0, "SIDEWAYS")

    asyncio.run(_run())


def test_dispatches_tick_candles_and_ohlc_pushes() -> None:
    client, series, _, _ = _client()

    client.handle_message({"msg_type": "tick", "tick": {"symbol": "R_100", "quote": 101.5, "epoch": 10}})
    client.handle_message(
        {
            "msg_type": "candles",
            "echo_req": {"ticks_history": "R_100", "granularity": 60},
            "candles": [
                {"epoch": 0, "open": 1, "high": 2, "low": 0.5, "close": 1.5},
                {"epoch": 60, "open": 1.5, "high": 2, "low": 1, "close": 1.8},
            ],
        }
    )
    client.handle_message(
        {
            "msg_type": "ohlc",
            "ohlc": {
                "symbol": "R_100",
                "granularity": 60,
                "open_time": 60,
                "epoch": 95,
                "open": 1.5,
                "high": 2.5,
                "low": 1,
                "close": 2.4,
            },
        }
    )
    client.handle_message(
        {
            "msg_type": "ohlc",
            "ohlc": {
                "symbol": "R_100",
                "granularity": 60,
                "open_time": 120,
                "epoch": 121,
                "open": 2.4,
                "high": 2.4,
                "low": 2.4,
                "close": 2.4,
            },
        }
    )

    assert series.get_last_tick("R_100").quote == 101.5
    candles = series.get_candles("R_100", 60)
    assert [c.epoch for c in candles] == [0, 60, 120]
    assert candles[1].close == 2.4
    assert candles[1].high == 2.5


def test_error_push_sets_last_error() -> None:
    client, _, _, state = _client()

    client.handle_message({"msg_type": "error", "error": {"code": "RateLimit", "message": "Too many requests"}})

    assert state.last_error == "Too many requests"


def test_unmatched_response_is_ignored() -> None:
    client, series, _, _ = _client()

    client.handle_message({"msg_type": "tick", "req_id": 99, "tick": {"symbol": "R_10", "quote": 1.0, "epoch": 1}})

    assert client.pending_count == 0
    assert series.get_last_tick("R_10").quote == 1.0


def test_open_contract_updates_then_settles() -> None:
    client, _, trades, _ = _client()
    trades.add_open_trade(OpenTrade(contract_id=7, symbol="R_100", entry=100.0, stake=1.0, start_time=0.0))

    client.handle_message(
        {
            "msg_type": "proposal_open_contract",
            "proposal_open_contract": {"contract_id": 7, "is_sold": 0, "profit": 0.25, "current_spot": 100.4},
        }
    )
    assert trades.get_open_trade(7).pnl == 0.25
    assert trades.get_open_trade(7).current_spot == 100.4

    sold = {
        "msg_type": "proposal_open_contract",
        "proposal_open_contract": {
            "contract_id": 7,
            "is_sold": 1,
            "profit": -1.0,
            "current_spot": 99.0,
            "exit_tick": 99.1,
        },
    }
    client.handle_message(sold)
    client.handle_message(sold)

    assert trades.open_trades() == []
    logs = trades.logs()
    assert len(logs) == 1
    assert logs[0].result == "loss"
    assert logs[0].exit == 99.1
    assert logs[0].pnl == -1.0


def test_zero_profit_settles_as_win() -> None:
    client, _, trades, _ = _client()
    trades.add_open_trade(OpenTrade(contract_id=8, symbol="R_50", entry=1.0, stake=1.0, start_time=0.0))

    client.handle_message(
        {
            "msg_type": "proposal_open_contract",
            "proposal_open_contract": {"contract_id": 8, "is_sold": 1, "profit": 0, "current_spot": 1.0},
        }
    )

    assert trades.logs()[0].result == "win"
