from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..indicators import (
    MACDResult,
    atr,
    bollinger,
    bollinger_position,
    clamp,
    ema_series,
    macd,
    rsi,
    swing_high,
    swing_low,
    trend_strength,
)
from ..models import LONG, SHORT
from .base import MarketWindow, Strategy, StrategyDecision, protective_levels


@dataclass(frozen=True)
class CrossoverConfig:
    fast_period: int = 9
    slow_period: int = 21
    min_bars: int = 60
    weight_trend: float = 40.0
    weight_momentum: float = 30.0
    weight_setup: float = 30.0
    trend_full_scale: float = 60.0
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    bollinger_oversold: float = 0.2
    bollinger_overbought: float = 0.8
    target_atr_pct: float = 0.001
    atr_multiplier: float = 1.5
    swing_lookback: int = 10
    reward_risk: float = 2.0


def detect_crossover(closes: Sequence[float], fast_period: int, slow_period: int) -> str | None:
    if len(closes) < 2:
        return None
    fast = ema_series(closes, fast_period)
    slow = ema_series(closes, slow_period)

    prev_fast, prev_slow = fast[-2], slow[-2]
    cur_fast, cur_slow = fast[-1], slow[-1]
    if prev_fast is None or prev_slow is None or cur_fast is None or cur_slow is None:
        return None

    if prev_fast <= prev_slow and cur_fast > cur_slow:
        return "up"
    if prev_fast >= prev_slow and cur_fast < cur_slow:
        return "down"
    return None


class EMACrossoverStrategy(Strategy):
    name = "ema_crossover"
    timeframe_source = "candles"

    def __init__(self, config: CrossoverConfig | None = None) -> None:
        self._config = config or CrossoverConfig()
        self.min_bars = self._config.min_bars

    def evaluate(self, window: MarketWindow, threshold: float) -> StrategyDecision | None:
        closes = list(window.closes)
        if len(closes) < self.min_bars:
            return None

        cross = detect_crossover(closes, self._config.fast_period, self._config.slow_period)
        if cross is None:
            return None

        macd_result = macd(closes)
        if macd_result is None:
            return None

        action = LONG if cross == "up" else SHORT
        price = closes[-1]
        rsi_value = rsi(closes)
        atr_value = atr(window.highs, window.lows, closes)
        position = bollinger_position(price, bollinger(closes))
        trend = trend_strength(closes)

        if action == LONG:
            macd_aligned = macd_result.macd > macd_result.signal
            stretched = position is not None and position <= self._config.bollinger_oversold
            trend_aligned = trend > 0
        else:
            macd_aligned = macd_result.macd < macd_result.signal
            stretched = position is not None and position >= self._config.bollinger_overbought
            trend_aligned = trend < 0

        if not macd_aligned or not (trend_aligned or stretched):
            return None

        confidence = self.confidence(
            action,
            trend=trend,
            macd_result=macd_result,
            rsi_value=rsi_value,
            bollinger_pos=position,
            atr_pct=(atr_value / price) if atr_value is not None and price else None,
        )
        if confidence < threshold * 100.0:
            return None

        if action == LONG:
            swing_level = swing_low(window.lows, self._config.swing_lookback)
        else:
            swing_level = swing_high(window.highs, self._config.swing_lookback)
        stop_loss, take_profit = protective_levels(
            action,
            price,
            atr_value=atr_value,
            swing_level=swing_level,
            atr_multiplier=self._config.atr_multiplier,
            reward_risk=self._config.reward_risk,
        )

        return StrategyDecision(
            action=action,
            confidence=round(confidence, 2),
            reason=f"ema_cross_{cross}",
            entry=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            indicators={
                "rsi": rsi_value,
                "macd": macd_result.macd,
                "macd_signal": macd_result.signal,
                "atr": atr_value,
                "trend_strength": trend,
                "bollinger_position": position,
            },
        )

    def confidence(
        self,
        action: str,
        *,
        trend: float,
        macd_result: MACDResult | None,
        rsi_value: float | None,
        bollinger_pos: float | None,
        atr_pct: float | None,
    ) -> float:
        """Weighted confluence of trend, momentum and setup quality, in [0, 100]."""
        cfg = self._config
        direction = 1.0 if action == LONG else -1.0

        trend_part = clamp(direction * trend / cfg.trend_full_scale, 0.0, 1.0)

        macd_ok = False
        if macd_result is not None:
            macd_ok = direction * (macd_result.macd - macd_result.signal) > 0
        rsi_ok = False
        if rsi_value is not None:
            rsi_ok = rsi_value < cfg.rsi_overbought if action == LONG else rsi_value > cfg.rsi_oversold
        momentum_part = 0.5 * macd_ok + 0.5 * rsi_ok

        reversion = 0.0
        if bollinger_pos is not None:
            reversion = 1.0 - bollinger_pos if action == LONG else bollinger_pos
        volatility = 0.0
        if atr_pct is not None and cfg.target_atr_pct > 0:
            volatility = clamp(atr_pct / cfg.target_atr_pct, 0.0, 1.0)
        setup_part = 0.5 * clamp(reversion, 0.0, 1.0) + 0.5 * volatility

        score = (
            cfg.weight_trend * trend_part
            + cfg.weight_momentum * momentum_part
            + cfg.weight_setup * setup_part
        )
        return clamp(score, 0.0, 100.0)
