from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from ..models import LONG, Candle, Tick


@dataclass(frozen=True)
class MarketWindow:
    closes: Sequence[float]
    highs: Sequence[float]
    lows: Sequence[float]

    @classmethod
    def from_candles(cls, candles: Sequence[Candle]) -> "MarketWindow":
        return cls(
            closes=[c.close for c in candles],
            highs=[c.high for c in candles],
            lows=[c.low for c in candles],
        )

    @classmethod
    def from_ticks(cls, ticks: Sequence[Tick]) -> "MarketWindow":
        quotes = [t.quote for t in ticks]
        return cls(closes=quotes, highs=quotes, lows=quotes)

    def __len__(self) -> int:
        return len(self.closes)


@dataclass(frozen=True)
class StrategyDecision:
    action: str
    confidence: float
    reason: str
    entry: float
    stop_loss: float | None = None
    take_profit: float | None = None
    indicators: dict = field(default_factory=dict)


class Strategy(ABC):
    name: str
    timeframe_source: str
    min_bars: int

    @abstractmethod
    def evaluate(self, window: MarketWindow, threshold: float) -> StrategyDecision | None:
        raise NotImplementedError


def protective_levels(
    action: str,
    entry: float,
    *,
    atr_value: float | None,
    swing_level: float | None,
    atr_multiplier: float,
    reward_risk: float,
) -> tuple[float | None, float | None]:
    """Stop-loss at the wider of the ATR and swing distances, target at reward_risk x that."""
    atr_distance = atr_value * atr_multiplier if atr_value else 0.0
    swing_distance = 0.0
    if swing_level is not None:
        swing_distance = entry - swing_level if action == LONG else swing_level - entry

    distance = max(atr_distance, swing_distance)
    if distance <= 0:
        return None, None

    if action == LONG:
        return entry - distance, entry + reward_risk * distance
    return entry + distance, entry - reward_risk * distance
