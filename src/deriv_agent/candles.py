from __future__ import annotations

from dataclasses import dataclass

from .models import Candle


def parse_window_seconds(window: str) -> int:
    value = window.strip().lower()
    if not value:
        raise ValueError("window must not be empty")

    unit = value[-1]
    number = int(value[:-1])
    if number <= 0:
        raise ValueError("window must be > 0")

    factors = {
        "s": 1,
        "m": 60,
        "h": 3600,
        "d": 86400,
    }
    if unit not in factors:
        raise ValueError(f"unsupported window unit: {unit}")
    return number * factors[unit]


def parse_candle(raw: dict) -> Candle | None:
    """Build a candle from a ``candles`` history row or an ``ohlc`` update.

    Streaming ``ohlc`` updates carry the period start in ``open_time`` and the
    update time in ``epoch``; history rows only carry ``epoch``.
    """
    epoch = raw.get("open_time", raw.get("epoch"))
    try:
        return Candle(
            epoch=int(epoch),
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


@dataclass
class CandleBuilder:
    granularity: int

    def __post_init__(self) -> None:
        self._current: Candle | None = None

    @property
    def current(self) -> Candle | None:
        return self._current

    def add_tick(self, price: float, epoch: int) -> Candle | None:
        """Fold a tick into the open period; return the candle it closed, if any."""
        bucket_start = int(epoch // self.granularity) * self.granularity

        if self._current is None:
            self._current = Candle(epoch=bucket_start, open=price, high=price, low=price, close=price)
            return None

        if bucket_start == self._current.epoch:
            self._current = Candle(
                epoch=self._current.epoch,
                open=self._current.open,
                high=max(self._current.high, price),
                low=min(self._current.low, price),
                close=price,
            )
            return None

        if bucket_start < self._current.epoch:
            return None

        closed = self._current
        self._current = Candle(epoch=bucket_start, open=price, high=price, low=price, close=price)
        return closed
