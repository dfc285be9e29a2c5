from __future__ import annotations

from collections import deque
from typing import Deque, Iterable

from .models import Candle, Tick
from .observable import Observable


class SeriesStore(Observable):
    """Bounded tick windows per symbol and candle windows per (symbol, granularity)."""

    def __init__(self, tick_cap: int = 1000, candle_cap: int = 1000) -> None:
        super().__init__()
        if tick_cap <= 0 or candle_cap <= 0:
            raise ValueError("series caps must be > 0")
        self.tick_cap = tick_cap
        self.candle_cap = candle_cap
        self._ticks: dict[str, Deque[Tick]] = {}
        self._last_tick: dict[str, Tick] = {}
        self._candles: dict[tuple[str, int], Deque[Candle]] = {}

    def record_tick(self, symbol: str, price: float, epoch: int) -> Tick:
        tick = Tick(quote=float(price), epoch=int(epoch))
        window = self._ticks.get(symbol)
        if window is None:
            window = deque(maxlen=self.tick_cap)
            self._ticks[symbol] = window
        window.append(tick)
        self._last_tick[symbol] = tick
        self._emit()
        return tick

    def set_candles(self, symbol: str, granularity: int, candles: Iterable[Candle]) -> None:
        self._candles[(symbol, int(granularity))] = deque(candles, maxlen=self.candle_cap)
        self._emit()

    def upsert_candle(self, symbol: str, granularity: int, candle: Candle) -> None:
        key = (symbol, int(granularity))
        window = self._candles.get(key)
        if window is None:
            window = deque(maxlen=self.candle_cap)
            self._candles[key] = window

        if window and window[-1].epoch == candle.epoch:
            window[-1] = candle
        else:
            window.append(candle)
        self._emit()

    def get_last_tick(self, symbol: str) -> Tick | None:
        return self._last_tick.get(symbol)

    def get_tick_series(self, symbol: str) -> list[Tick]:
        return list(self._ticks.get(symbol, ()))

    def get_closes(self, symbol: str) -> list[float]:
        return [tick.quote for tick in self._ticks.get(symbol, ())]

    def get_candles(self, symbol: str, granularity: int) -> list[Candle]:
        return list(self._candles.get((symbol, int(granularity)), ()))

    def symbols(self) -> list[str]:
        seen = dict.fromkeys(self._ticks)
        seen.update(dict.fromkeys(symbol for symbol, _ in self._candles))
        return list(seen)

    def clear(self) -> None:
        self._ticks.clear()
        self._last_tick.clear()
        self._candles.clear()
        self._emit()
