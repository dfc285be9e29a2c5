import pytest

from src.deriv_agent.config import load_config


def _clear_deriv_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DERIV_APP_ID", "DERIV_API_TOKEN", "BOT_API_PROVIDER", "BOT_ASSETS", "SIGNAL_MODE"):
        monkeypatch.delenv(name, raising=False)


def test_load_config_requires_app_id_when_trading_live(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_deriv_env(monkeypatch)
    monkeypatch.setenv("DRY_RUN", "false")

    with pytest.raises(ValueError, match="DERIV_APP_ID is required"):
        load_config()


def test_load_config_allows_paper_provider_without_app_id(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_deriv_env(monkeypatch)
    monkeypatch.setenv("DRY_RUN", "false")
    monkeypatch.setenv("BOT_API_PROVIDER", "paper")

    cfg = load_config()

    assert cfg.deriv_app_id is None
    assert cfg.bot.api_provider == "paper"


def test_load_config_parses_expected_values(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_deriv_env(monkeypatch)
    monkeypatch.setenv("DERIV_APP_ID", "1089")
    monkeypatch.setenv("DERIV_API_TOKEN", "a1-secret")
    monkeypatch.setenv("RECONNECT_DELAY_SECONDS", "2.5")
    monkeypatch.setenv("WS_PING_INTERVAL_SECONDS", "10")
    monkeypatch.setenv("ENGINE_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("SIGNAL_MODE", "ticks")
    monkeypatch.setenv("DRY_RUN", "false")
    monkeypatch.setenv("AGENT_API_PORT", "9090")
    monkeypatch.setenv("CONTRACT_DURATION", "5")
    monkeypatch.setenv("CONTRACT_DURATION_UNIT", "t")
    monkeypatch.setenv("CURRENCY", "eur")
    monkeypatch.setenv("BOT_ASSETS", "R_100, R_50,R_100,")
    monkeypatch.setenv("BOT_TIMEFRAME", "15m")
    monkeypatch.setenv("BOT_CONFLUENCE_THRESHOLD", "0.8")
    monkeypatch.setenv("BOT_TRADE_STAKE", "2.5")

    cfg = load_config()

    assert cfg.deriv_app_id == "1089"
    assert cfg.reconnect_delay_seconds == 2.5
    assert cfg.ws_ping_interval_seconds == 10
    assert cfg.engine_interval_seconds == 0.5
    assert cfg.signal_mode == "ticks"
    assert cfg.dry_run is False
    assert cfg.agent_api_port == 9090
    assert cfg.contract_duration == 5
    assert cfg.contract_duration_unit == "t"
    assert cfg.currency == "EUR"
    assert cfg.bot.assets == ("R_100", "R_50")
    assert cfg.bot.timeframe == "15m"
    assert cfg.bot.granularity == 900
    assert cfg.bot.confluence_threshold == 0.8
    assert cfg.bot.trade_stake == 2.5
    assert cfg.bot.app_id == "1089"
    assert cfg.bot.has_credentials is True


def test_load_config_rejects_unknown_signal_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_deriv_env(monkeypatch)
    monkeypatch.setenv("SIGNAL_MODE", "vibes")

    with pytest.raises(ValueError, match="unsupported SIGNAL_MODE"):
        load_config()


def test_load_config_rejects_inverted_stake_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_deriv_env(monkeypatch)
    monkeypatch.setenv("MIN_STAKE", "10")
    monkeypatch.setenv("MAX_STAKE", "5")

    with pytest.raises(ValueError, match="MIN_STAKE"):
        load_config()


def test_load_config_rejects_invalid_timeframe(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_deriv_env(monkeypatch)
    monkeypatch.setenv("BOT_TIMEFRAME", "2m")

    with pytest.raises(ValueError, match="unsupported timeframe"):
        load_config()
