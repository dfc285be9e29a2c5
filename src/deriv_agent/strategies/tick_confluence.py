from __future__ import annotations

from dataclasses import dataclass

from ..indicators import atr, rsi, sma
from ..models import LONG, SHORT
from .base import MarketWindow, Strategy, StrategyDecision, protective_levels


@dataclass(frozen=True)
class TickConfluenceConfig:
    fast_period: int = 10
    slow_period: int = 30
    rsi_period: int = 14
    rsi_oversold: float = 35.0
    rsi_overbought: float = 65.0
    mean_reversion_pct: float = 0.005
    min_bars: int = 30
    atr_multiplier: float = 1.5
    reward_risk: float = 2.0


class TickConfluenceStrategy(Strategy):
    """Momentum, scalp and mean-reversion checks over the raw tick series.

    Confluence is the share of passing checks, in [0, 1]; the decision
    reports it on the same 0-100 scale as the candle strategy.
    """

    name = "tick_confluence"
    timeframe_source = "ticks"

    def __init__(self, config: TickConfluenceConfig | None = None) -> None:
        self._config = config or TickConfluenceConfig()
        self.min_bars = max(self._config.min_bars, self._config.slow_period)

    def evaluate(self, window: MarketWindow, threshold: float) -> StrategyDecision | None:
        cfg = self._config
        closes = list(window.closes)
        if len(closes) < self.min_bars:
            return None

        price = closes[-1]
        fast = sma(closes, cfg.fast_period)
        slow = sma(closes, cfg.slow_period)
        if fast is None or slow is None:
            return None
        rsi_value = rsi(closes, cfg.rsi_period)
        momentum_rsi = rsi_value if rsi_value is not None else 50.0

        long_checks = (
            fast > slow,
            momentum_rsi < cfg.rsi_oversold,
            price < slow * (1.0 - cfg.mean_reversion_pct),
        )
        short_checks = (
            fast < slow,
            momentum_rsi > cfg.rsi_overbought,
            price > slow * (1.0 + cfg.mean_reversion_pct),
        )
        long_confluence = sum(long_checks) / len(long_checks)
        short_confluence = sum(short_checks) / len(short_checks)

        if long_confluence >= threshold and long_confluence > short_confluence:
            action, confluence = LONG, long_confluence
        elif short_confluence >= threshold and short_confluence > long_confluence:
            action, confluence = SHORT, short_confluence
        else:
            return None

        atr_value = atr(window.highs, window.lows, closes)
        stop_loss, take_profit = protective_levels(
            action,
            price,
            atr_value=atr_value,
            swing_level=None,
            atr_multiplier=cfg.atr_multiplier,
            reward_risk=cfg.reward_risk,
        )
        return StrategyDecision(
            action=action,
            confidence=round(confluence * 100.0, 2),
            reason="tick_confluence",
            entry=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            indicators={"rsi": rsi_value, "atr": atr_value},
        )
