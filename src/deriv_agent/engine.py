from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Deque, Protocol, Sequence

from .bot_config import BotConfigStore
from .candles import parse_window_seconds
from .models import Signal
from .observable import Observable
from .series import SeriesStore
from .state import AgentState
from .strategies import MarketWindow, Strategy, StrategyDecision

logger = logging.getLogger(__name__)

TICKS_TIMEFRAME = "ticks"


class SignalSink(Protocol):
    def auto_trade_enabled(self) -> bool: ...

    async def execute(self, signal: Signal) -> None: ...


class SignalEngine(Observable):
    def __init__(
        self,
        series: SeriesStore,
        bot_config: BotConfigStore,
        strategy: Strategy,
        *,
        executor: SignalSink | None = None,
        state: AgentState | None = None,
        interval_seconds: float = 1.0,
        max_signals: int = 80,
        timeframes: Sequence[str] | None = None,
    ) -> None:
        super().__init__()
        self.interval_seconds = interval_seconds
        self._series = series
        self._bot_config = bot_config
        self._strategy = strategy
        self._executor = executor
        self._state = state
        self._timeframes = tuple(timeframes) if timeframes else None
        self._signals: Deque[Signal] = deque(maxlen=max_signals)
        self._last_side: dict[tuple[str, str], str] = {}
        self._task: asyncio.Task | None = None
        self._trade_tasks: set[asyncio.Task] = set()
        self._evaluating = False

    @property
    def status(self) -> str:
        if self._task is not None and not self._task.done():
            return "running"
        return "stopped"

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    def signals(self) -> list[Signal]:
        return list(self._signals)

    def last_side(self, symbol: str, timeframe: str) -> str | None:
        return self._last_side.get((symbol, timeframe))

    def start(self) -> None:
        if not self._bot_config.get().assets:
            raise ValueError("select at least one asset before starting the engine")
        if self.status == "running":
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "[Engine] Started strategy=%s interval=%ss assets=%s",
            self._strategy.name,
            self.interval_seconds,
            list(self._bot_config.get().assets),
        )
        if self._state is not None:
            self._state.add_event("info", "engine_started", {"strategy": self._strategy.name})
        self._emit()

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        self._last_side.clear()
        logger.info("[Engine] Stopped")
        if self._state is not None:
            self._state.add_event("info", "engine_stopped", {})
        self._emit()

    def evaluate_once(self) -> list[Signal]:
        if self._evaluating:
            return []
        self._evaluating = True
        try:
            batch = self._evaluate_pairs()
        finally:
            self._evaluating = False

        if not batch:
            return []

        for signal in reversed(batch):
            self._signals.appendleft(signal)
        for signal in batch:
            logger.info(
                "[Engine] %s %s %s entry=%s confidence=%s",
                signal.type,
                signal.symbol,
                signal.timeframe,
                signal.entry,
                signal.confidence,
            )
            if self._state is not None:
                self._state.add_event("info", "signal", signal.to_dict())
        self._emit()
        self._dispatch(batch)
        return batch

    async def _run(self) -> None:
        while True:
            try:
                self.evaluate_once()
            except Exception as exc:  # noqa: BLE001
                logger.warning("[Engine] Evaluation cycle failed: %s", exc)
            await asyncio.sleep(self.interval_seconds)

    def _pairs(self) -> list[tuple[str, str]]:
        config = self._bot_config.get()
        if self._strategy.timeframe_source == TICKS_TIMEFRAME:
            return [(symbol, TICKS_TIMEFRAME) for symbol in config.assets]
        timeframes = self._timeframes or (config.timeframe,)
        return [(symbol, timeframe) for symbol in config.assets for timeframe in timeframes]

    def _window(self, symbol: str, timeframe: str) -> MarketWindow:
        if timeframe == TICKS_TIMEFRAME:
            return MarketWindow.from_ticks(self._series.get_tick_series(symbol))
        return MarketWindow.from_candles(self._series.get_candles(symbol, parse_window_seconds(timeframe)))

    def _evaluate_pairs(self) -> list[Signal]:
        threshold = self._bot_config.get().confluence_threshold
        batch: list[Signal] = []
        for symbol, timeframe in self._pairs():
            window = self._window(symbol, timeframe)
            if len(window) < self._strategy.min_bars:
                continue

            decision = self._strategy.evaluate(window, threshold)
            if decision is None:
                continue
            if self._last_side.get((symbol, timeframe)) == decision.action:
                continue

            self._last_side[(symbol, timeframe)] = decision.action
            batch.append(self._to_signal(symbol, timeframe, decision))
        return batch

    def _to_signal(self, symbol: str, timeframe: str, decision: StrategyDecision) -> Signal:
        indicators = decision.indicators
        return Signal(
            timestamp=time.time(),
            symbol=symbol,
            timeframe=timeframe,
            entry=decision.entry,
            type=decision.action,
            strategy=self._strategy.name,
            confidence=decision.confidence,
            rsi=indicators.get("rsi"),
            macd=indicators.get("macd"),
            macd_signal=indicators.get("macd_signal"),
            atr=indicators.get("atr"),
            stop_loss=decision.stop_loss,
            take_profit=decision.take_profit,
            trend_strength=indicators.get("trend_strength"),
            bollinger_position=indicators.get("bollinger_position"),
            reason=decision.reason,
        )

    def _dispatch(self, batch: list[Signal]) -> None:
        if self._executor is None or not self._executor.auto_trade_enabled():
            return
        for signal in batch:
            task = asyncio.create_task(self._execute(signal))
            self._trade_tasks.add(task)
            task.add_done_callback(self._trade_tasks.discard)

    async def _execute(self, signal: Signal) -> None:
        executor = self._executor
        if executor is None:
            return
        try:
            await executor.execute(signal)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[Engine] Auto-trade failed for %s %s: %s", signal.type, signal.symbol, exc)
            if self._state is not None:
                self._state.set_last_error(f"auto-trade {signal.symbol}: {exc}")
