"""
strategy_lab - 参数化策略回测、评分与进化
"""

__version__ = "0.1.0"
