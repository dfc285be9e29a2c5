from __future__ import annotations

from dataclasses import asdict, dataclass

LONG = "LONG"
SHORT = "SHORT"


@dataclass(frozen=True)
class Tick:
    quote: float
    epoch: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Candle:
    epoch: int
    open: float
    high: float
    low: float
    close: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Signal:
    timestamp: float
    symbol: str
    timeframe: str
    entry: float
    type: str
    strategy: str
    confidence: float
    rsi: float | None = None
    macd: float | None = None
    macd_signal: float | None = None
    atr: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    trend_strength: float | None = None
    bollinger_position: float | None = None
    reason: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OpenTrade:
    contract_id: int
    symbol: str
    entry: float
    stake: float
    start_time: float
    status: str = "open"
    pnl: float = 0.0
    current_spot: float | None = None
    contract_type: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Settlement:
    exit: float
    end_time: float
    pnl: float
    result: str


@dataclass(frozen=True)
class TradeLog:
    contract_id: int
    symbol: str
    entry: float
    exit: float
    stake: float
    start_time: float
    end_time: float
    pnl: float
    result: str

    def to_dict(self) -> dict:
        return asdict(self)
