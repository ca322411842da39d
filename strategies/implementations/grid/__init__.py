"""
Grid Trading Strategy Implementation

Buys an ERC-20 token with ETH when price enters an empty grid range and sells
a held range at its take-profit or stop-loss, subject to a profitability gate,
a portfolio circuit breaker and optional trailing stops.
"""

from .config import GridConfig
from .grid_engine import GridConfigurationError, GridEngine
from .models import GridBotState, GridPosition, PositionStatus
from .profit_gate import ProfitGateMode
from .strategy import GridStrategy

__all__ = [
    'GridConfig',
    'GridConfigurationError',
    'GridEngine',
    'GridBotState',
    'GridPosition',
    'PositionStatus',
    'ProfitGateMode',
    'GridStrategy',
]
