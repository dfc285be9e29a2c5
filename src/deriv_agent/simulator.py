from __future__ import annotations

import asyncio
import logging
import random
import time

from .bot_config import BotConfigStore
from .candles import CandleBuilder
from .series import SeriesStore

logger = logging.getLogger(__name__)

DEFAULT_START_PRICE = 100.0


class SimulatedFeed:
    """Random-walk ticks for the selected assets, aggregated into candles.

    Stands in for the live feed when no Deriv app id is configured, so the
    engine and the HTTP surface can be exercised offline.
    """

    def __init__(
        self,
        series: SeriesStore,
        bot_config: BotConfigStore,
        granularity: int | None = None,
        interval_seconds: float = 1.0,
        seed: int | None = None,
        volatility: float = 0.0008,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.volatility = volatility
        self._series = series
        self._bot_config = bot_config
        self._granularity = granularity
        self._rng = random.Random(seed)
        self._prices: dict[str, float] = {}
        self._builders: dict[tuple[str, int], CandleBuilder] = {}

    @property
    def granularity(self) -> int:
        return self._granularity or self._bot_config.get().granularity

    def _next_price(self, symbol: str) -> float:
        price = self._prices.get(symbol, DEFAULT_START_PRICE)
        price = max(0.01, price * (1.0 + self._rng.gauss(0.0, self.volatility)))
        self._prices[symbol] = round(price, 5)
        return self._prices[symbol]

    def step(self, epoch: int | None = None) -> None:
        epoch = int(epoch if epoch is not None else time.time())
        granularity = self.granularity
        for symbol in self._bot_config.get().assets:
            price = self._next_price(symbol)
            self._series.record_tick(symbol, price, epoch)

            builder = self._builders.get((symbol, granularity))
            if builder is None:
                builder = CandleBuilder(granularity)
                self._builders[(symbol, granularity)] = builder
            builder.add_tick(price, epoch)
            if builder.current is not None:
                self._series.upsert_candle(symbol, granularity, builder.current)

    def prefill(self, bars: int = 120, ticks_per_bar: int = 4, now: int | None = None) -> None:
        """Backfill `bars` closed periods ending at `now` so indicators have history."""
        now = int(now if now is not None else time.time())
        granularity = self.granularity
        start = (now // granularity - bars) * granularity
        spacing = max(1, granularity // ticks_per_bar)
        for epoch in range(start, now, spacing):
            self.step(epoch)

    async def run(self) -> None:
        logger.info("[Demo] Simulated feed started interval=%ss", self.interval_seconds)
        while True:
            try:
                self.step()
            except Exception as exc:  # noqa: BLE001
                logger.warning("[Demo] Simulated tick failed: %s", exc)
            await asyncio.sleep(self.interval_seconds)
