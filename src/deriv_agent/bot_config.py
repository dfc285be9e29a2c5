from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from typing import Iterable

from .candles import parse_window_seconds
from .observable import Observable

ASSET_CLASSES = ("crypto", "stocks", "forex")
RISK_TOLERANCES = ("conservative", "moderate", "aggressive")
TIMEFRAMES = ("1m", "5m", "15m", "1h", "4h", "1d")
API_PROVIDERS = ("deriv", "binance", "paper")


def _unique(symbols: Iterable[str]) -> tuple[str, ...]:
    cleaned = (symbol.strip() for symbol in symbols)
    return tuple(dict.fromkeys(symbol for symbol in cleaned if symbol))


@dataclass(frozen=True)
class BotConfig:
    asset_class: str = "forex"
    risk_tolerance: str = "moderate"
    timeframe: str = "5m"
    assets: tuple[str, ...] = ()
    risk_per_trade: float = 0.01
    confluence_threshold: float = 0.6
    api_provider: str = "deriv"
    api_token: str = ""
    app_id: str = ""
    trade_stake: float = 1.0

    @property
    def granularity(self) -> int:
        return parse_window_seconds(self.timeframe)

    @property
    def has_credentials(self) -> bool:
        return bool(self.app_id) and bool(self.api_token)

    def to_dict(self, *, redact: bool = True) -> dict:
        data = asdict(self)
        data["assets"] = list(self.assets)
        if redact and self.api_token:
            data["api_token"] = "***"
        return data


def validate_bot_config(config: BotConfig) -> BotConfig:
    if config.asset_class not in ASSET_CLASSES:
        raise ValueError(f"unsupported asset_class: {config.asset_class}")
    if config.risk_tolerance not in RISK_TOLERANCES:
        raise ValueError(f"unsupported risk_tolerance: {config.risk_tolerance}")
    if config.timeframe not in TIMEFRAMES:
        raise ValueError(f"unsupported timeframe: {config.timeframe}")
    if config.api_provider not in API_PROVIDERS:
        raise ValueError(f"unsupported api_provider: {config.api_provider}")
    if not 0 < config.risk_per_trade <= 1:
        raise ValueError("risk_per_trade must be in (0, 1]")
    if not 0 <= config.confluence_threshold <= 1:
        raise ValueError("confluence_threshold must be in [0, 1]")
    if config.trade_stake <= 0:
        raise ValueError("trade_stake must be > 0")
    return config


class BotConfigStore(Observable):
    """Process-wide bot settings, replaced wholesale on every change."""

    _FIELDS = frozenset(f.name for f in fields(BotConfig))

    def __init__(self, initial: BotConfig | None = None) -> None:
        super().__init__()
        self._config = validate_bot_config(initial or BotConfig())

    def get(self) -> BotConfig:
        return self._config

    def set(self, **changes: object) -> BotConfig:
        unknown = set(changes) - self._FIELDS
        if unknown:
            raise ValueError(f"unknown config field(s): {', '.join(sorted(unknown))}")
        assets = changes.get("assets")
        if assets is not None:
            changes["assets"] = _unique(assets)
        self._config = validate_bot_config(replace(self._config, **changes))
        self._emit()
        return self._config

    def set_assets(self, symbols: Iterable[str]) -> BotConfig:
        return self.set(assets=list(symbols))

    def add_assets(self, symbols: Iterable[str]) -> BotConfig:
        return self.set(assets=[*self._config.assets, *symbols])

    def remove_asset(self, symbol: str) -> BotConfig:
        return self.set(assets=[a for a in self._config.assets if a != symbol])
