"""
Strategy Implementations

- grid: token/ETH grid trading
"""
