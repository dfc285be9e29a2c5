from __future__ import annotations

import logging

from .bot_config import BotConfigStore
from .deriv import DerivClient
from .indicators import position_size
from .models import Signal
from .state import AgentState

logger = logging.getLogger(__name__)


class TradeExecutor:
    def __init__(
        self,
        client: DerivClient,
        bot_config: BotConfigStore,
        state: AgentState,
        *,
        dry_run: bool = True,
        min_stake: float = 0.35,
        max_stake: float = 100.0,
        sizing_scale: float = 1.0,
    ) -> None:
        self.dry_run = dry_run
        self.min_stake = min_stake
        self.max_stake = max_stake
        self.sizing_scale = sizing_scale
        self._client = client
        self._bot_config = bot_config
        self._state = state

    def auto_trade_enabled(self) -> bool:
        config = self._bot_config.get()
        if config.api_provider == "paper":
            return True
        return config.api_provider == "deriv" and config.has_credentials

    def stake_for(self, signal: Signal) -> float:
        config = self._bot_config.get()
        balance = self._state.balance
        if balance is None or balance <= 0:
            return config.trade_stake
        return position_size(
            balance,
            signal.atr,
            config.risk_per_trade,
            min_stake=self.min_stake,
            max_stake=self.max_stake,
            scale=self.sizing_scale,
        )

    async def execute(self, signal: Signal) -> int | None:
        stake = self.stake_for(signal)
        context = {
            "symbol": signal.symbol,
            "direction": signal.type,
            "stake": stake,
            "entry": signal.entry,
            "confidence": signal.confidence,
        }
        if self.dry_run or self._bot_config.get().api_provider == "paper":
            logger.info("[DRY_RUN] buy context=%s", context)
            self._state.add_event("info", "paper_trade", context)
            return None

        logger.info("Executing buy context=%s", context)
        return await self._client.buy(signal.symbol, stake, signal.type)
