from __future__ import annotations

from collections import deque
from dataclasses import replace
from typing import Deque

from .models import OpenTrade, Settlement, TradeLog
from .observable import Observable


class TradeStore(Observable):
    """Open contracts and the bounded, newest-first log of settled ones."""

    def __init__(self, log_cap: int = 200) -> None:
        super().__init__()
        self._open: list[OpenTrade] = []
        self._logs: Deque[TradeLog] = deque(maxlen=log_cap)

    def add_open_trade(self, trade: OpenTrade) -> bool:
        if any(existing.contract_id == trade.contract_id for existing in self._open):
            return False
        self._open.insert(0, trade)
        self._emit()
        return True

    def update_open_contract(self, contract_id: int, **patch: object) -> bool:
        for index, trade in enumerate(self._open):
            if trade.contract_id == contract_id:
                self._open[index] = replace(trade, **patch)
                self._emit()
                return True
        return False

    def close_contract_to_log(self, contract_id: int, settlement: Settlement) -> TradeLog | None:
        trade = self.get_open_trade(contract_id)
        if trade is None:
            return None

        self._open = [t for t in self._open if t.contract_id != contract_id]
        entry = TradeLog(
            contract_id=contract_id,
            symbol=trade.symbol,
            entry=trade.entry,
            exit=settlement.exit,
            stake=trade.stake,
            start_time=trade.start_time,
            end_time=settlement.end_time,
            pnl=settlement.pnl,
            result=settlement.result,
        )
        self._logs.appendleft(entry)
        self._emit()
        return entry

    def get_open_trade(self, contract_id: int) -> OpenTrade | None:
        for trade in self._open:
            if trade.contract_id == contract_id:
                return trade
        return None

    def open_trades(self) -> list[OpenTrade]:
        return list(self._open)

    def logs(self) -> list[TradeLog]:
        return list(self._logs)

    def best_pairs(self, limit: int = 5) -> list[dict]:
        pnl_by_symbol: dict[str, float] = {}
        for log in self._logs:
            pnl_by_symbol[log.symbol] = pnl_by_symbol.get(log.symbol, 0.0) + log.pnl
        ranked = sorted(pnl_by_symbol.items(), key=lambda item: item[1], reverse=True)
        return [{"symbol": symbol, "pnl": round(pnl, 4)} for symbol, pnl in ranked[:limit]]

    def total_pnl(self) -> float:
        return sum(log.pnl for log in self._logs)

    def win_rate(self) -> float | None:
        if not self._logs:
            return None
        wins = sum(1 for log in self._logs if log.result == "win")
        return wins / len(self._logs)
