"""
Trading Strategies Module

- BaseStrategy: lifecycle contract every strategy implements
- GridStrategy: token/ETH grid trading on a swap aggregator
"""

from .base_strategy import BaseStrategy
from .implementations.grid import GridConfig, GridStrategy

__all__ = [
    'BaseStrategy',
    'GridStrategy',
    'GridConfig',
]
