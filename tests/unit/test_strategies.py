import pytest

from src.deriv_agent.indicators import MACDResult
from src.deriv_agent.models import LONG, SHORT, Candle
from src.deriv_agent.strategies import (
    EMACrossoverStrategy,
    MarketWindow,
    TickConfluenceStrategy,
)
from src.deriv_agent.strategies.base import protective_levels
from src.deriv_agent.strategies.crossover import detect_crossover


def _candles(closes: list[float]) -> list[Candle]:
    return [
        Candle(epoch=i * 60, open=c, high=c + 0.5, low=c - 0.5, close=c)
        for i, c in enumerate(closes)
    ]


def _breakout(last: float) -> MarketWindow:
    return MarketWindow.from_candles(_candles([100.0] * 60 + [last]))


def test_detect_crossover_direction() -> None:
    assert detect_crossover([100.0] * 30 + [101.0], 9, 21) == "up"
    assert detect_crossover([100.0] * 30 + [99.0], 9, 21) == "down"
    assert detect_crossover([100.0] * 31, 9, 21) is None
    assert detect_crossover([100.0], 9, 21) is None


def test_crossover_emits_long_on_upside_break() -> None:
    decision = EMACrossoverStrategy().evaluate(_breakout(101.0), threshold=0.6)

    assert decision is not None
    assert decision.action == LONG
    assert decision.entry == 101.0
    assert 60.0 <= decision.confidence <= 100.0
    assert decision.stop_loss < decision.entry < decision.take_profit
    assert decision.indicators["macd"] > decision.indicators["macd_signal"]
    assert decision.indicators["trend_strength"] > 0


def test_crossover_emits_short_on_downside_break() -> None:
    decision = EMACrossoverStrategy().evaluate(_breakout(99.0), threshold=0.6)

    assert decision is not None
    assert decision.action == SHORT
    assert decision.take_profit < decision.entry < decision.stop_loss


def test_crossover_respects_threshold() -> None:
    assert EMACrossoverStrategy().evaluate(_breakout(101.0), threshold=0.95) is None


def test_crossover_needs_min_bars_and_a_cross() -> None:
    strategy = EMACrossoverStrategy()

    assert strategy.evaluate(MarketWindow.from_candles(_candles([100.0] * 30 + [101.0])), 0.6) is None
    assert strategy.evaluate(MarketWindow.from_candles(_candles([100.0] * 70)), 0.6) is None


@pytest.mark.parametrize("action", [LONG, SHORT])
@pytest.mark.parametrize("trend", [-500.0, 0.0, 500.0])
@pytest.mark.parametrize("rsi_value", [None, 0.0, 100.0])
def test_confidence_is_bounded(action: str, trend: float, rsi_value: float | None) -> None:
    strategy = EMACrossoverStrategy()

    score = strategy.confidence(
        action,
        trend=trend,
        macd_result=MACDResult(macd=5.0, signal=-5.0),
        rsi_value=rsi_value,
        bollinger_pos=0.0,
        atr_pct=50.0,
    )

    assert 0.0 <= score <= 100.0


def test_confidence_is_full_when_every_check_agrees() -> None:
    score = EMACrossoverStrategy().confidence(
        LONG,
        trend=80.0,
        macd_result=MACDResult(macd=1.0, signal=0.5),
        rsi_value=50.0,
        bollinger_pos=0.0,
        atr_pct=0.01,
    )

    assert score == pytest.approx(100.0)


def test_tick_confluence_long_on_oversold_dip() -> None:
    ticks = [100.0] * 30 + [100.0 - 0.2 * i for i in range(1, 11)]
    window = MarketWindow(closes=ticks, highs=ticks, lows=ticks)

    decision = TickConfluenceStrategy().evaluate(window, threshold=0.6)

    assert decision is not None
    assert decision.action == LONG
    assert decision.confidence == pytest.approx(66.67)
    assert decision.stop_loss < decision.entry < decision.take_profit


def test_tick_confluence_short_on_overbought_spike() -> None:
    ticks = [100.0] * 30 + [100.0 + 0.2 * i for i in range(1, 11)]
    window = MarketWindow(closes=ticks, highs=ticks, lows=ticks)

    decision = TickConfluenceStrategy().evaluate(window, threshold=0.6)

    assert decision is not None
    assert decision.action == SHORT


def test_tick_confluence_holds_below_threshold_or_history() -> None:
    flat = [100.0] * 40
    strategy = TickConfluenceStrategy()

    assert strategy.evaluate(MarketWindow(closes=flat, highs=flat, lows=flat), 0.6) is None
    assert strategy.evaluate(MarketWindow(closes=flat[:10], highs=flat[:10], lows=flat[:10]), 0.0) is None


def test_protective_levels_use_wider_distance() -> None:
    assert protective_levels(LONG, 100.0, atr_value=1.0, swing_level=97.0, atr_multiplier=1.5, reward_risk=2.0) == (
        97.0,
        106.0,
    )
    assert protective_levels(SHORT, 100.0, atr_value=1.0, swing_level=100.5, atr_multiplier=1.5, reward_risk=2.0) == (
        101.5,
        97.0,
    )
    assert protective_levels(LONG, 100.0, atr_value=None, swing_level=None, atr_multiplier=1.5, reward_risk=2.0) == (
        None,
        None,
    )
