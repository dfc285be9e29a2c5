from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .bot_config import BotConfig, validate_bot_config

DEFAULT_DERIV_WS_URL = "wss://ws.derivws.com/websockets/v3"


@dataclass(frozen=True)
class Config:
    deriv_app_id: str | None
    deriv_api_token: str | None
    deriv_ws_url: str
    reconnect_delay_seconds: float
    ws_ping_interval_seconds: int
    engine_interval_seconds: float
    signal_mode: str
    candle_history_count: int
    tick_history_cap: int
    candle_history_cap: int
    max_signals: int
    trade_log_cap: int
    dry_run: bool
    agent_api_port: int
    contract_duration: int
    contract_duration_unit: str
    currency: str
    min_stake: float
    max_stake: float
    position_size_scale: float
    demo_feed_enabled: bool
    bot: BotConfig



def _bool_from_env(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}



def _symbols_from_env(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(dict.fromkeys(part.strip() for part in value.split(",") if part.strip()))



def load_config() -> Config:
    load_dotenv()

    deriv_app_id = os.getenv("DERIV_APP_ID", "").strip() or None
    deriv_api_token = os.getenv("DERIV_API_TOKEN", "").strip() or None

    signal_mode = os.getenv("SIGNAL_MODE", "candles").strip().lower()
    if signal_mode not in {"candles", "ticks"}:
        raise ValueError(f"unsupported SIGNAL_MODE: {signal_mode}")

    contract_duration_unit = os.getenv("CONTRACT_DURATION_UNIT", "m").strip().lower()
    if contract_duration_unit not in {"t", "s", "m", "h", "d"}:
        raise ValueError(f"unsupported CONTRACT_DURATION_UNIT: {contract_duration_unit}")

    api_provider = os.getenv("BOT_API_PROVIDER", "deriv").strip().lower()
    dry_run = _bool_from_env(os.getenv("DRY_RUN"), True)
    if api_provider == "deriv" and not dry_run and not deriv_app_id:
        raise ValueError("DERIV_APP_ID is required when DRY_RUN is false")

    min_stake = float(os.getenv("MIN_STAKE", "0.35"))
    max_stake = float(os.getenv("MAX_STAKE", "100"))
    if min_stake <= 0 or max_stake < min_stake:
        raise ValueError("MIN_STAKE must be > 0 and <= MAX_STAKE")

    bot = validate_bot_config(
        BotConfig(
            asset_class=os.getenv("BOT_ASSET_CLASS", "forex").strip().lower(),
            risk_tolerance=os.getenv("BOT_RISK_TOLERANCE", "moderate").strip().lower(),
            timeframe=os.getenv("BOT_TIMEFRAME", "5m").strip().lower(),
            assets=_symbols_from_env(os.getenv("BOT_ASSETS")),
            risk_per_trade=float(os.getenv("BOT_RISK_PER_TRADE", "0.01")),
            confluence_threshold=float(os.getenv("BOT_CONFLUENCE_THRESHOLD", "0.6")),
            api_provider=api_provider,
            api_token=deriv_api_token or "",
            app_id=deriv_app_id or "",
            trade_stake=float(os.getenv("BOT_TRADE_STAKE", "1")),
        )
    )

    return Config(
        deriv_app_id=deriv_app_id,
        deriv_api_token=deriv_api_token,
        deriv_ws_url=os.getenv("DERIV_WS_URL", DEFAULT_DERIV_WS_URL).strip(),
        reconnect_delay_seconds=float(os.getenv("RECONNECT_DELAY_SECONDS", "1.5")),
        ws_ping_interval_seconds=int(os.getenv("WS_PING_INTERVAL_SECONDS", "15")),
        engine_interval_seconds=float(os.getenv("ENGINE_INTERVAL_SECONDS", "1.0")),
        signal_mode=signal_mode,
        candle_history_count=int(os.getenv("CANDLE_HISTORY_COUNT", "500")),
        tick_history_cap=int(os.getenv("TICK_HISTORY_CAP", "1000")),
        candle_history_cap=int(os.getenv("CANDLE_HISTORY_CAP", "1000")),
        max_signals=int(os.getenv("MAX_SIGNALS", "80")),
        trade_log_cap=int(os.getenv("TRADE_LOG_CAP", "200")),
        dry_run=dry_run,
        agent_api_port=int(os.getenv("AGENT_API_PORT", "8080")),
        contract_duration=int(os.getenv("CONTRACT_DURATION", "1")),
        contract_duration_unit=contract_duration_unit,
        currency=os.getenv("CURRENCY", "USD").strip().upper(),
        min_stake=min_stake,
        max_stake=max_stake,
        position_size_scale=float(os.getenv("POSITION_SIZE_SCALE", "1.0")),
        demo_feed_enabled=_bool_from_env(os.getenv("DEMO_FEED_ENABLED"), False),
        bot=bot,
    )
