from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque

from .observable import Observable

CONNECTION_STATUSES = ("disconnected", "connecting", "connected", "authorized", "error")


@dataclass
class AgentEvent:
    ts: float
    level: str
    message: str
    data: dict = field(default_factory=dict)


class AgentState(Observable):
    """Connection status, last error and a bounded journal of agent events."""

    def __init__(self, max_events: int = 200) -> None:
        super().__init__()
        self._started_ts = time.time()
        self._status = "disconnected"
        self._last_error: str | None = None
        self._last_error_ts: float | None = None
        self._login_id: str | None = None
        self._balance: float | None = None
        self._currency: str | None = None
        self._events: Deque[AgentEvent] = deque(maxlen=max_events)

    @property
    def status(self) -> str:
        return self._status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def balance(self) -> float | None:
        return self._balance

    def set_status(self, status: str) -> None:
        if status not in CONNECTION_STATUSES:
            raise ValueError(f"unsupported connection status: {status}")
        if status == self._status:
            return
        self._status = status
        self._emit()

    def set_last_error(self, message: str) -> None:
        self._last_error = message
        self._last_error_ts = time.time()
        self.add_event("error", "last_error", {"message": message})

    def set_account(self, *, login_id: str | None, balance: float | None, currency: str | None) -> None:
        self._login_id = login_id
        self._balance = balance
        self._currency = currency
        self._emit()

    def add_event(self, level: str, message: str, data: dict | None = None) -> None:
        self._events.append(
            AgentEvent(
                ts=time.time(),
                level=level,
                message=message,
                data=data or {},
            )
        )
        self._emit()

    def snapshot(self) -> dict:
        return {
            "started_ts": self._started_ts,
            "status": self._status,
            "last_error": self._last_error,
            "last_error_ts": self._last_error_ts,
            "login_id": self._login_id,
            "balance": self._balance,
            "currency": self._currency,
            "events": [
                {
                    "ts": e.ts,
                    "level": e.level,
                    "message": e.message,
                    "data": e.data,
                }
                for e in list(self._events)
            ],
        }
