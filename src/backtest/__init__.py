"""Walk-forward backtesting."""

from .walkforward_backtest import (
    BacktestEngine, BacktestConfig, BacktestTrade, BacktestSummary, BacktestResult,
    summarize_trades, compare_algorithms, monthly_performance, rolling_metrics
)

__all__ = [
    'BacktestEngine', 'BacktestConfig', 'BacktestTrade', 'BacktestSummary', 'BacktestResult',
    'summarize_trades', 'compare_algorithms', 'monthly_performance', 'rolling_metrics'
]
