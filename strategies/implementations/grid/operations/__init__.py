"""Buy and sell execution helpers for the grid strategy."""

from .close_position import GridSellOperator
from .open_position import GridBuyOperator

__all__ = [
    "GridBuyOperator",
    "GridSellOperator",
]
