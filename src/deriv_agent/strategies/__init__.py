from .base import MarketWindow, Strategy, StrategyDecision
from .crossover import CrossoverConfig, EMACrossoverStrategy
from .tick_confluence import TickConfluenceConfig, TickConfluenceStrategy

__all__ = [
    "MarketWindow",
    "Strategy",
    "StrategyDecision",
    "CrossoverConfig",
    "EMACrossoverStrategy",
    "TickConfluenceConfig",
    "TickConfluenceStrategy",
]
