from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import websockets

from .candles import parse_candle
from .models import LONG, SHORT, OpenTrade, Settlement
from .series import SeriesStore
from .state import AgentState
from .trades import TradeStore

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "wss://ws.derivws.com/websockets/v3"
CONTRACT_TYPES = {LONG: "CALL", SHORT: "PUT"}

Connector = Callable[..., Awaitable[Any]]


class ConfigurationError(ValueError):
    pass


class DerivAPIError(Exception):
    def __init__(self, code: str, message: str, details: object = None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def from_payload(cls, payload: object) -> "DerivAPIError":
        if not isinstance(payload, dict):
            return cls("UnknownError", "Deriv error")
        return cls(
            code=str(payload.get("code") or "UnknownError"),
            message=str(payload.get("message") or "Deriv error"),
            details=payload.get("details"),
        )


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _subscription_id(message: dict, *fallback_keys: str) -> str | None:
    subscription = message.get("subscription")
    if isinstance(subscription, dict) and subscription.get("id"):
        return str(subscription["id"])
    for key in fallback_keys:
        body = message.get(key)
        if isinstance(body, dict) and body.get("id"):
            return str(body["id"])
    return None


class DerivClient:
    """Single logical connection to the Deriv WebSocket API."""

    def __init__(
        self,
        series: SeriesStore,
        trades: TradeStore,
        state: AgentState,
        *,
        ws_url: str = DEFAULT_WS_URL,
        reconnect_delay_seconds: float = 1.5,
        ping_interval_seconds: int = 15,
        contract_duration: int = 1,
        contract_duration_unit: str = "m",
        currency: str = "USD",
        connector: Connector | None = None,
    ) -> None:
        self.ws_url = ws_url
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self.ping_interval_seconds = ping_interval_seconds
        self.contract_duration = contract_duration
        self.contract_duration_unit = contract_duration_unit
        self.currency = currency
        self.connected = False
        self.authorized = False

        self._series = series
        self._trades = trades
        self._state = state
        self._connector: Connector = connector or websockets.connect
        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._connect_lock = asyncio.Lock()
        self._req_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._app_id: str | None = None
        self._token: str | None = None

        self._desired_ticks: dict[str, None] = {}
        self._desired_candles: dict[tuple[str, int], int] = {}
        self._tick_subs: dict[str, str] = {}
        self._candle_subs: dict[tuple[str, int], str] = {}
        self._contract_subs: dict[int, str | None] = {}

        self._handlers: dict[str, Callable[[dict], None]] = {
            "authorize": self._on_authorize,
            "tick": self._on_tick,
            "candles": self._on_candles,
            "ohlc": self._on_ohlc,
            "proposal_open_contract": self._on_open_contract,
        }

    @property
    def status(self) -> str:
        return self._state.status

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def endpoint(self, app_id: str) -> str:
        return f"{self.ws_url}?{urlencode({'app_id': app_id})}"

    def subscriptions(self) -> dict:
        return {
            "ticks": sorted(self._desired_ticks),
            "candles": [
                {"symbol": symbol, "granularity": granularity, "count": count}
                for (symbol, granularity), count in self._desired_candles.items()
            ],
            "live_tick_ids": dict(self._tick_subs),
            "live_candle_ids": {f"{s}:{g}": sub_id for (s, g), sub_id in self._candle_subs.items()},
            "contracts": sorted(self._contract_subs),
        }

    async def connect(self, app_id: str) -> None:
        if not app_id or not str(app_id).strip():
            raise ConfigurationError("Deriv app id is required")

        async with self._connect_lock:
            if self.connected and self._ws is not None:
                return

            self._app_id = str(app_id).strip()
            self._state.set_status("connecting")
            url = self.endpoint(self._app_id)
            logger.info("[Deriv WS] Connecting: %s", url)
            try:
                ws = await self._connector(url, ping_interval=self.ping_interval_seconds)
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
                self._state.set_status("error")
                raise ConnectionError(f"Deriv connect failed: {exc}") from exc

            self._ws = ws
            self.connected = True
            self._state.set_status("connected")
            self._state.add_event("info", "deriv_connected", {"app_id": self._app_id})
            logger.info("[Deriv WS] Connected")
            self._reader_task = asyncio.create_task(self._read_loop(ws))

        await self._restore_session()

    async def close(self) -> None:
        self._app_id = None
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        ws = self._ws
        if ws is None:
            return

        reader = self._reader_task
        self._reader_task = None
        self._on_closed(ws)
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        await ws.close()

    async def send(self, payload: dict) -> dict:
        ws = self._ws
        if ws is None or not self.connected:
            raise ConnectionError("WebSocket not open")

        req_id = next(self._req_ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        try:
            await ws.send(json.dumps({**payload, "req_id": req_id}))
        except (OSError, websockets.WebSocketException) as exc:
            self._pending.pop(req_id, None)
            raise ConnectionError(f"Deriv send failed: {exc}") from exc

        try:
            return await future
        finally:
            self._pending.pop(req_id, None)

    async def authorize(self, token: str) -> dict:
        if not token:
            raise ConfigurationError("Deriv API token is required")
        self._token = token
        response = await self.send({"authorize": token})
        return response.get("authorize") or {}

    async def subscribe_ticks(self, symbol: str) -> None:
        if symbol in self._desired_ticks:
            return
        self._desired_ticks[symbol] = None
        if not self.connected:
            logger.info("[Deriv WS] Tick subscription for %s deferred until connected", symbol)
            return
        await self._arm_ticks(symbol)

    async def unsubscribe_ticks(self, symbol: str) -> None:
        self._desired_ticks.pop(symbol, None)
        sub_id = self._tick_subs.pop(symbol, None)
        if sub_id is None:
            return
        if self.connected:
            await self._forget(sub_id)
        logger.info("[Deriv WS] Unsubscribed ticks %s", symbol)

    async def subscribe_candles(self, symbol: str, granularity: int, count: int = 500) -> None:
        key = (symbol, int(granularity))
        if key in self._desired_candles:
            return
        self._desired_candles[key] = count
        if not self.connected:
            logger.info("[Deriv WS] Candle subscription for %s/%ss deferred until connected", symbol, granularity)
            return
        await self._arm_candles(key, count)

    async def unsubscribe_candles(self, symbol: str, granularity: int) -> None:
        key = (symbol, int(granularity))
        self._desired_candles.pop(key, None)
        sub_id = self._candle_subs.pop(key, None)
        if sub_id is None:
            return
        if self.connected:
            await self._forget(sub_id)
        logger.info("[Deriv WS] Unsubscribed candles %s/%ss", symbol, granularity)

    async def subscribe_many(
        self,
        symbols: list[str] | tuple[str, ...],
        *,
        granularity: int | None = None,
        count: int = 500,
    ) -> list[str]:
        failed: list[str] = []
        for symbol in symbols:
            try:
                await self.subscribe_ticks(symbol)
                if granularity is not None:
                    await self.subscribe_candles(symbol, granularity, count)
            except (DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Failed to subscribe %s: %s", symbol, exc)
                failed.append(symbol)
        return failed

    async def unsubscribe_all(self) -> None:
        for symbol in list(dict.fromkeys([*self._desired_ticks, *self._tick_subs])):
            try:
                await self.unsubscribe_ticks(symbol)
            except (DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Unsubscribe error for %s: %s", symbol, exc)
        for symbol, granularity in list(dict.fromkeys([*self._desired_candles, *self._candle_subs])):
            try:
                await self.unsubscribe_candles(symbol, granularity)
            except (DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Unsubscribe error for %s/%ss: %s", symbol, granularity, exc)

    async def buy(self, symbol: str, stake: float, direction: str = LONG) -> int:
        contract_type = CONTRACT_TYPES.get(direction.upper())
        if contract_type is None:
            raise ValueError(f"unsupported direction: {direction}")

        try:
            proposal = await self._propose(symbol, stake, contract_type)
            bought = await self._buy_proposal(proposal)
        except (DerivAPIError, ConnectionError) as exc:
            message = exc.message if isinstance(exc, DerivAPIError) else str(exc)
            logger.warning("[Deriv WS] Buy %s %s failed: %s", contract_type, symbol, message)
            self._state.set_last_error(message or "Buy failed")
            raise

        contract_id = int(bought["contract_id"])
        last_tick = self._series.get_last_tick(symbol)
        entry = last_tick.quote if last_tick is not None else (_as_float(proposal.get("spot")) or 0.0)
        trade = OpenTrade(
            contract_id=contract_id,
            symbol=symbol,
            entry=entry,
            stake=float(stake),
            start_time=time.time(),
            contract_type=contract_type,
        )
        self._trades.add_open_trade(trade)
        self._state.add_event("info", "trade_opened", trade.to_dict())
        logger.info("[Deriv WS] Bought contract %s %s %s stake=%s", contract_id, contract_type, symbol, stake)

        await self._watch_contract(contract_id)
        return contract_id

    def handle_message(self, message: dict) -> None:
        req_id = message.get("req_id")
        error = message.get("error")
        if isinstance(req_id, int):
            future = self._pending.pop(req_id, None)
            if future is not None and not future.done():
                if error:
                    future.set_exception(DerivAPIError.from_payload(error))
                else:
                    future.set_result(message)

        msg_type = message.get("msg_type")
        if error or msg_type == "error":
            api_error = DerivAPIError.from_payload(error)
            logger.warning("[Deriv WS] Deriv error: %s details=%s", api_error, api_error.details)
            self._state.set_last_error(api_error.message)
            return

        handler = self._handlers.get(str(msg_type))
        if handler is not None:
            handler(message)

    async def _propose(self, symbol: str, stake: float, contract_type: str) -> dict:
        response = await self.send(
            {
                "proposal": 1,
                "amount": stake,
                "basis": "stake",
                "contract_type": contract_type,
                "currency": self.currency,
                "duration": self.contract_duration,
                "duration_unit": self.contract_duration_unit,
                "symbol": symbol,
            }
        )
        proposal = response.get("proposal")
        if not isinstance(proposal, dict) or not proposal.get("id"):
            raise DerivAPIError("InvalidProposal", "proposal response is missing an id")
        return proposal

    async def _buy_proposal(self, proposal: dict) -> dict:
        response = await self.send({"buy": proposal["id"], "price": proposal.get("ask_price")})
        bought = response.get("buy")
        if not isinstance(bought, dict) or not bought.get("contract_id"):
            raise DerivAPIError("InvalidBuy", "buy response is missing a contract_id")
        return bought

    async def _watch_contract(self, contract_id: int) -> None:
        if contract_id in self._contract_subs:
            return
        self._contract_subs[contract_id] = None
        try:
            await self.send({"proposal_open_contract": 1, "contract_id": contract_id, "subscribe": 1})
        except (DerivAPIError, ConnectionError) as exc:
            self._contract_subs.pop(contract_id, None)
            logger.warning("[Deriv WS] Contract %s updates unavailable: %s", contract_id, exc)

    async def _arm_ticks(self, symbol: str) -> None:
        try:
            response = await self.send({"ticks": symbol, "subscribe": 1})
        except DerivAPIError:
            self._desired_ticks.pop(symbol, None)
            raise

        sub_id = _subscription_id(response, "tick")
        if symbol not in self._desired_ticks:
            if sub_id:
                await self._forget(sub_id)
            return
        if sub_id:
            self._tick_subs[symbol] = sub_id
        logger.info("[Deriv WS] Subscribed ticks %s", symbol)

    async def _arm_candles(self, key: tuple[str, int], count: int) -> None:
        symbol, granularity = key
        try:
            response = await self.send(
                {
                    "ticks_history": symbol,
                    "adjust_start_time": 1,
                    "count": count,
                    "end": "latest",
                    "start": 1,
                    "style": "candles",
                    "granularity": granularity,
                    "subscribe": 1,
                }
            )
        except DerivAPIError:
            self._desired_candles.pop(key, None)
            raise

        sub_id = _subscription_id(response, "ohlc")
        if key not in self._desired_candles:
            if sub_id:
                await self._forget(sub_id)
            return
        if sub_id:
            self._candle_subs[key] = sub_id
        logger.info("[Deriv WS] Subscribed candles %s/%ss", symbol, granularity)

    async def _forget(self, sub_id: str) -> None:
        try:
            await self.send({"forget": sub_id})
        except (DerivAPIError, ConnectionError) as exc:
            logger.warning("[Deriv WS] Forget %s failed: %s", sub_id, exc)

    async def _restore_session(self) -> None:
        if self._token and not self.authorized:
            try:
                await self.authorize(self._token)
            except (DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Authorize on reconnect failed: %s", exc)

        for symbol in list(self._desired_ticks):
            if symbol in self._tick_subs:
                continue
            try:
                await self._arm_ticks(symbol)
            except (DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Resubscribe ticks %s failed: %s", symbol, exc)

        for key, count in list(self._desired_candles.items()):
            if key in self._candle_subs:
                continue
            try:
                await self._arm_candles(key, count)
            except (DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Resubscribe candles %s/%ss failed: %s", key[0], key[1], exc)

        for trade in self._trades.open_trades():
            await self._watch_contract(trade.contract_id)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_raw(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("[Deriv WS] Error: %s", exc)
            if self._ws is ws:
                self._state.set_status("error")
        self._on_closed(ws)

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("[Deriv WS] Parse error: %s", exc)
            return
        if not isinstance(message, dict):
            return

        try:
            self.handle_message(message)
        except Exception:  # noqa: BLE001
            logger.exception("[Deriv WS] Failed to handle %s message", message.get("msg_type"))

    def _on_closed(self, ws: Any) -> None:
        if self._ws is not ws:
            return

        self._ws = None
        self.connected = False
        self.authorized = False
        self._tick_subs.clear()
        self._candle_subs.clear()
        self._contract_subs.clear()

        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(ConnectionError("Socket closed"))

        self._state.set_status("disconnected")
        self._state.add_event("warning", "deriv_disconnected", {"rejected_requests": len(pending)})
        logger.info("[Deriv WS] Closed; rejected %s pending request(s)", len(pending))

        if self._app_id:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while self._app_id and not self.connected:
            await asyncio.sleep(self.reconnect_delay_seconds)
            app_id = self._app_id
            if not app_id or self.connected:
                return
            try:
                await self.connect(app_id)
            except ConnectionError as exc:
                logger.warning(
                    "[Deriv WS] Reconnect failed: %s; retrying in %ss",
                    exc,
                    self.reconnect_delay_seconds,
                )

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_authorize(self, message: dict) -> None:
        body = message.get("authorize") or {}
        self.authorized = True
        self._state.set_status("authorized")
        self._state.set_account(
            login_id=body.get("loginid"),
            balance=_as_float(body.get("balance")),
            currency=body.get("currency"),
        )
        logger.info("[Deriv WS] Authorized as %s", body.get("loginid"))

    def _on_tick(self, message: dict) -> None:
        tick = message.get("tick")
        if not isinstance(tick, dict):
            return
        symbol = tick.get("symbol")
        quote = _as_float(tick.get("quote"))
        epoch = tick.get("epoch")
        if not symbol or quote is None or not isinstance(epoch, int):
            return
        self._series.record_tick(str(symbol), quote, epoch)

    def _on_candles(self, message: dict) -> None:
        echo = message.get("echo_req") or {}
        symbol = echo.get("ticks_history")
        granularity = echo.get("granularity")
        rows = message.get("candles")
        if not symbol or not granularity or not isinstance(rows, list):
            return
        candles = [c for c in (parse_candle(row) for row in rows if isinstance(row, dict)) if c is not None]
        self._series.set_candles(str(symbol), int(granularity), candles)

    def _on_ohlc(self, message: dict) -> None:
        body = message.get("ohlc")
        if not isinstance(body, dict):
            return
        symbol = body.get("symbol")
        granularity = body.get("granularity")
        candle = parse_candle(body)
        if not symbol or not granularity or candle is None:
            return
        self._series.upsert_candle(str(symbol), int(granularity), candle)

    def _on_open_contract(self, message: dict) -> None:
        contract = message.get("proposal_open_contract")
        if not isinstance(contract, dict) or not contract.get("contract_id"):
            return

        contract_id = int(contract["contract_id"])
        is_sold = bool(contract.get("is_sold"))
        current_spot = _as_float(contract.get("current_spot"))
        pnl = _as_float(contract.get("profit")) or 0.0
        sub_id = _subscription_id(message)

        if not is_sold:
            if sub_id and contract_id in self._contract_subs:
                self._contract_subs[contract_id] = sub_id
            self._trades.update_open_contract(contract_id, current_spot=current_spot, pnl=pnl, status="open")
            return

        exit_spot = _as_float(contract.get("exit_tick"))
        if exit_spot is None:
            exit_spot = current_spot if current_spot is not None else 0.0
        log = self._trades.close_contract_to_log(
            contract_id,
            Settlement(
                exit=exit_spot,
                end_time=time.time(),
                pnl=pnl,
                result="win" if pnl >= 0 else "loss",
            ),
        )
        if log is not None:
            self._state.add_event("info", "trade_closed", log.to_dict())
            logger.info("[Deriv WS] Contract %s settled %s pnl=%s", contract_id, log.result, log.pnl)

        stream_id = self._contract_subs.pop(contract_id, None) or sub_id
        if stream_id and self.connected:
            self._spawn(self._forget(stream_id))
