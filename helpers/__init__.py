"""
Helper modules for the grid bot: logging, alerts and status rendering.
"""

from .unified_logger import get_logger, get_strategy_logger, get_risk_logger, get_client_logger, get_core_logger

__all__ = [
    'get_logger',
    'get_strategy_logger',
    'get_risk_logger',
    'get_client_logger',
    'get_core_logger',
]
