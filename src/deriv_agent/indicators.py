"""Technical indicators over ordered price sequences (oldest first).

Every function is pure. When the input is shorter than the required lookback
the function returns ``None`` instead of extrapolating.
"""

from __future__ import annotations

from dataclasses import dataclass
from statistics import fmean, pstdev
from typing import Sequence

_LOSS_FLOOR = 1e-9


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: float

    @property
    def histogram(self) -> float:
        return self.macd - self.signal


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


def sma(series: Sequence[float], length: int) -> float | None:
    if length <= 0 or len(series) < length:
        return None
    return fmean(series[-length:])


def ema_series(series: Sequence[float], period: int) -> list[float | None]:
    """One EMA value per input index; ``None`` before the seed index."""
    values: list[float | None] = [None] * len(series)
    if period <= 0 or len(series) < period:
        return values

    k = 2.0 / (period + 1)
    current = fmean(series[:period])
    values[period - 1] = current
    for index in range(period, len(series)):
        current = series[index] * k + current * (1.0 - k)
        values[index] = current
    return values


def ema(series: Sequence[float], period: int) -> float | None:
    if period <= 0 or len(series) < period:
        return None
    return ema_series(series, period)[-1]


def rsi(series: Sequence[float], period: int = 14) -> float | None:
    if period <= 0 or len(series) < period + 1:
        return None

    gains = 0.0
    losses = 0.0
    for index in range(len(series) - period, len(series)):
        diff = series[index] - series[index - 1]
        if diff >= 0:
            gains += diff
        else:
            losses -= diff

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss < _LOSS_FLOOR:
        return 100.0 if avg_gain > 0 else 50.0

    rs = avg_gain / avg_loss
    return clamp(100.0 - 100.0 / (1.0 + rs), 0.0, 100.0)


def macd(
    series: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> MACDResult | None:
    if len(series) < slow + signal_period:
        return None

    fast_values = ema_series(series, fast)
    slow_values = ema_series(series, slow)
    line = [
        f - s
        for f, s in zip(fast_values, slow_values)
        if f is not None and s is not None
    ]
    signal = ema(line, signal_period)
    if signal is None:
        return None
    return MACDResult(macd=line[-1], signal=signal)


def true_ranges(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
) -> list[float]:
    n = min(len(highs), len(lows), len(closes))
    highs, lows, closes = highs[len(highs) - n:], lows[len(lows) - n:], closes[len(closes) - n:]

    ranges: list[float] = []
    for index in range(n):
        high_low = highs[index] - lows[index]
        if index == 0:
            ranges.append(high_low)
            continue
        prev_close = closes[index - 1]
        ranges.append(max(high_low, abs(highs[index] - prev_close), abs(lows[index] - prev_close)))
    return ranges


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> float | None:
    ranges = true_ranges(highs, lows, closes)
    # The first bar has no previous close, so it never counts toward the window.
    if period <= 0 or len(ranges) < period + 1:
        return None
    return fmean(ranges[-period:])


def bollinger(
    series: Sequence[float],
    period: int = 20,
    std_dev_multiplier: float = 2.0,
) -> BollingerBands | None:
    if period <= 0 or len(series) < period:
        return None
    window = series[-period:]
    middle = fmean(window)
    half_width = std_dev_multiplier * pstdev(window)
    return BollingerBands(upper=middle + half_width, middle=middle, lower=middle - half_width)


def bollinger_position(price: float, bands: BollingerBands | None) -> float | None:
    """0.0 at the lower band, 1.0 at the upper band."""
    if bands is None or bands.width <= 0:
        return None
    return clamp((price - bands.lower) / bands.width, 0.0, 1.0)


def trend_strength(closes: Sequence[float]) -> float:
    if len(closes) < 50:
        return 0.0

    ema9 = ema(closes, 9)
    ema21 = ema(closes, 21)
    ema50 = ema(closes, 50)
    if ema9 is None or ema21 is None or ema50 is None:
        return 0.0

    score = 0.0
    if ema9 > ema21 > ema50:
        score += 60.0
    elif ema9 < ema21 < ema50:
        score -= 60.0
    elif ema9 > ema21:
        score += 30.0
    elif ema9 < ema21:
        score -= 30.0

    if ema9 != 0:
        deviation_pct = (closes[-1] - ema9) / ema9 * 100.0
        score += clamp(deviation_pct * 10.0, -40.0, 40.0)

    return clamp(score, -100.0, 100.0)


def swing_low(series: Sequence[float], lookback: int = 10) -> float | None:
    if lookback <= 0 or len(series) < lookback:
        return None
    return min(series[-lookback:])


def swing_high(series: Sequence[float], lookback: int = 10) -> float | None:
    if lookback <= 0 or len(series) < lookback:
        return None
    return max(series[-lookback:])


def position_size(
    balance: float,
    atr_value: float | None,
    risk_fraction: float,
    *,
    min_stake: float = 0.35,
    max_stake: float = 100.0,
    scale: float = 1.0,
) -> float:
    if atr_value is None or atr_value <= 0 or balance <= 0 or scale <= 0:
        return min_stake
    raw = balance * risk_fraction / (atr_value * scale)
    return round(max(min_stake, min(max_stake, raw)), 2)
