from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .bot_config import BotConfig, BotConfigStore
from .config import Config
from .deriv import ConfigurationError, Connector, DerivAPIError, DerivClient
from .engine import SignalEngine
from .executor import TradeExecutor
from .models import LONG
from .series import SeriesStore
from .simulator import SimulatedFeed
from .state import AgentState
from .strategies import EMACrossoverStrategy, TickConfluenceStrategy
from .trades import TradeStore

logger = logging.getLogger(__name__)


class BotController:
    """Collaborator-facing commands over the stores, client and engine."""

    def __init__(
        self,
        *,
        config: Config,
        series: SeriesStore,
        trades: TradeStore,
        state: AgentState,
        bot_config: BotConfigStore,
        client: DerivClient,
        engine: SignalEngine,
        executor: TradeExecutor,
        feed: SimulatedFeed | None = None,
    ) -> None:
        self.config = config
        self.series = series
        self.trades = trades
        self.state = state
        self.bot_config = bot_config
        self.client = client
        self.engine = engine
        self.executor = executor
        self.feed = feed
        self._background: set[asyncio.Task] = set()
        self._unsubscribe_task: asyncio.Task | None = None

    @property
    def live_feed(self) -> bool:
        return self.feed is None

    def _candle_granularity(self) -> int | None:
        if self.engine.strategy.timeframe_source == "candles":
            return self.bot_config.get().granularity
        return None

    async def ensure_connected(self) -> None:
        config = self.bot_config.get()
        if not config.app_id:
            raise ConfigurationError("DERIV_APP_ID is required to connect")
        await self.client.connect(config.app_id)
        if config.api_token and not self.client.authorized:
            await self.client.authorize(config.api_token)

    async def subscribe_symbols(self, symbols: Iterable[str] | None = None) -> list[str]:
        selected = list(symbols) if symbols is not None else list(self.bot_config.get().assets)
        if not self.live_feed:
            return []
        await self.ensure_connected()
        return await self.client.subscribe_many(
            selected,
            granularity=self._candle_granularity(),
            count=self.config.candle_history_count,
        )

    async def unsubscribe_all(self) -> None:
        await self.client.unsubscribe_all()

    async def start(self) -> list[str]:
        if not self.bot_config.get().assets:
            raise ValueError("select at least one asset before starting the engine")
        pending, self._unsubscribe_task = self._unsubscribe_task, None
        if pending is not None and not pending.done():
            await pending
        failed = await self.subscribe_symbols()
        self.engine.start()
        return failed

    def stop(self) -> None:
        self.engine.stop()
        if self.live_feed:
            self._unsubscribe_task = self._spawn(self._unsubscribe_quietly())

    async def add_assets(self, symbols: Iterable[str]) -> BotConfig:
        before = set(self.bot_config.get().assets)
        updated = self.bot_config.add_assets(symbols)
        added = [symbol for symbol in updated.assets if symbol not in before]
        if added and self.engine.status == "running":
            await self.subscribe_symbols(added)
        return updated

    async def set_config(self, **changes: object) -> BotConfig:
        """Apply a config patch and move live streams to the new assets and timeframe."""
        before = self.bot_config.get()
        old_granularity = self._candle_granularity()
        updated = self.bot_config.set(**changes)
        if not self.live_feed or self.engine.status != "running":
            return updated

        for symbol in before.assets:
            if symbol not in updated.assets:
                await self._release(symbol)
        new_granularity = self._candle_granularity()
        if old_granularity is not None and old_granularity != new_granularity:
            for symbol in before.assets:
                await self.client.unsubscribe_candles(symbol, old_granularity)
            await self.subscribe_symbols()
        else:
            added = [symbol for symbol in updated.assets if symbol not in before.assets]
            if added:
                await self.subscribe_symbols(added)
        return updated

    async def remove_asset(self, symbol: str) -> BotConfig:
        updated = self.bot_config.remove_asset(symbol)
        await self._release(symbol)
        return updated

    async def _release(self, symbol: str) -> None:
        await self.client.unsubscribe_ticks(symbol)
        for entry in self.client.subscriptions()["candles"]:
            if entry["symbol"] == symbol:
                await self.client.unsubscribe_candles(symbol, entry["granularity"])

    async def buy(self, symbol: str, stake: float | None = None, direction: str = LONG) -> int:
        await self.ensure_connected()
        if not self.client.authorized:
            raise ConfigurationError("DERIV_API_TOKEN is required to trade")
        amount = stake if stake is not None else self.bot_config.get().trade_stake
        return await self.client.buy(symbol, amount, direction)

    def market(self, symbol: str) -> dict:
        last = self.series.get_last_tick(symbol)
        return {
            "symbol": symbol,
            "last_tick": last.to_dict() if last is not None else None,
            "tick_count": len(self.series.get_tick_series(symbol)),
            "closes": self.series.get_closes(symbol)[-50:],
        }

    def snapshot(self) -> dict:
        body = self.state.snapshot()
        body.update(
            {
                "engine_status": self.engine.status,
                "strategy": self.engine.strategy.name,
                "feed": "live" if self.live_feed else "demo",
                "dry_run": self.executor.dry_run,
                "auto_trade_enabled": self.executor.auto_trade_enabled(),
                "authorized": self.client.authorized,
                "subscriptions": self.client.subscriptions(),
                "bot_config": self.bot_config.get().to_dict(),
                "open_trades": len(self.trades.open_trades()),
                "signal_count": len(self.engine.signals()),
                "total_pnl": self.trades.total_pnl(),
                "win_rate": self.trades.win_rate(),
                "best_pairs": self.trades.best_pairs(),
            }
        )
        return body

    async def run(self) -> None:
        """Bring up the configured feed, then idle until cancelled."""
        if self.feed is not None:
            self.feed.prefill()
            self._spawn(self.feed.run())
        elif self.bot_config.get().app_id:
            try:
                await self.subscribe_symbols()
            except (ConfigurationError, DerivAPIError, ConnectionError) as exc:
                logger.warning("[Deriv WS] Initial connect failed: %s", exc)
                self.state.set_last_error(str(exc))
        else:
            logger.info("No DERIV_APP_ID configured; waiting for PATCH /config")

        try:
            await asyncio.Event().wait()
        finally:
            self.engine.stop()
            await self.client.close()

    async def _unsubscribe_quietly(self) -> None:
        try:
            await self.client.unsubscribe_all()
        except Exception as exc:  # noqa: BLE001
            logger.warning("[Deriv WS] Unsubscribe after stop failed: %s", exc)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


def build_controller(config: Config, *, connector: Connector | None = None) -> BotController:
    series = SeriesStore(tick_cap=config.tick_history_cap, candle_cap=config.candle_history_cap)
    trades = TradeStore(log_cap=config.trade_log_cap)
    state = AgentState()
    bot_config = BotConfigStore(config.bot)
    client = DerivClient(
        series,
        trades,
        state,
        ws_url=config.deriv_ws_url,
        reconnect_delay_seconds=config.reconnect_delay_seconds,
        ping_interval_seconds=config.ws_ping_interval_seconds,
        contract_duration=config.contract_duration,
        contract_duration_unit=config.contract_duration_unit,
        currency=config.currency,
        connector=connector,
    )
    executor = TradeExecutor(
        client,
        bot_config,
        state,
        dry_run=config.dry_run,
        min_stake=config.min_stake,
        max_stake=config.max_stake,
        sizing_scale=config.position_size_scale,
    )
    strategy = TickConfluenceStrategy() if config.signal_mode == "ticks" else EMACrossoverStrategy()
    engine = SignalEngine(
        series,
        bot_config,
        strategy,
        executor=executor,
        state=state,
        interval_seconds=config.engine_interval_seconds,
        max_signals=config.max_signals,
    )

    feed = None
    if config.demo_feed_enabled or (config.bot.api_provider == "paper" and not config.deriv_app_id):
        feed = SimulatedFeed(series, bot_config)

    return BotController(
        config=config,
        series=series,
        trades=trades,
        state=state,
        bot_config=bot_config,
        client=client,
        engine=engine,
        executor=executor,
        feed=feed,
    )
