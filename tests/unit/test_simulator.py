from src.deriv_agent.bot_config import BotConfig, BotConfigStore
from src.deriv_agent.series import SeriesStore
from src.deriv_agent.simulator import SimulatedFeed


def _feed(seed: int = 3) -> tuple[SimulatedFeed, SeriesStore]:
    series = SeriesStore()
    bot_config = BotConfigStore(BotConfig(assets=("R_100", "R_50"), timeframe="1m"))
    return SimulatedFeed(series, bot_config, seed=seed), series


def test_step_records_a_tick_per_selected_asset() -> None:
    feed, series = _feed()

    feed.step(epoch=120)
    feed.step(epoch=130)

    assert len(series.get_tick_series("R_100")) == 2
    assert len(series.get_tick_series("R_50")) == 2
    candles = series.get_candles("R_100", 60)
    assert len(candles) == 1
    assert candles[0].epoch == 120
    assert candles[0].close == series.get_last_tick("R_100").quote


def test_prefill_builds_enough_candles_for_the_engine() -> None:
    feed, series = _feed()

    feed.prefill(bars=70, ticks_per_bar=4, now=100_000)

    candles = series.get_candles("R_100", 60)
    assert len(candles) >= 70
    assert [c.epoch for c in candles] == sorted(c.epoch for c in candles)
    assert all(c.low <= c.close <= c.high for c in candles)


def test_same_seed_gives_same_walk() -> None:
    first, first_series = _feed(seed=11)
    second, second_series = _feed(seed=11)

    for epoch in range(10):
        first.step(epoch)
        second.step(epoch)

    assert first_series.get_closes("R_100") == second_series.get_closes("R_100")
