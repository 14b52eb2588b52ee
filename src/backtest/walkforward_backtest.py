"""Walk-forward backtesting of draw predictions."""

import logging
from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

# Robust imports
import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent, validate_history
    from ..models.base_model import BaseModel
    from ..models.registry import ModelSpec, model_factory
    from ..utils.config import CONFIG, ROLLING_WINDOW
    from ..utils.context import EngineContext
    from ..utils.errors import InsufficientDataError
    from ..utils.helpers import max_drawdown, save_artifact
    from ..validation.metrics import trade_profit
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent, validate_history
    from models.base_model import BaseModel
    from models.registry import ModelSpec, model_factory
    from utils.config import CONFIG, ROLLING_WINDOW
    from utils.context import EngineContext
    from utils.errors import InsufficientDataError
    from utils.helpers import max_drawdown, save_artifact
    from validation.metrics import trade_profit

logger = logging.getLogger(__name__)

ModelFactory = Callable[[], BaseModel]


@dataclass
class BacktestConfig:
    min_training_size: int = 50
    rebalance_frequency: int = 10   # steps between retrains
    top_n: int = CONFIG.TOP_N
    test_window: int = 10           # minimum events after the training prefix
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    algorithms: Optional[List[str]] = None  # None = every configured model
    rolling_window: int = ROLLING_WINDOW
    show_progress: bool = False

    def __post_init__(self):
        if self.rebalance_frequency < 1:
            raise ValueError(f"rebalance_frequency must be >= 1, got {self.rebalance_frequency}")
        if self.top_n < 1:
            raise ValueError(f"top_n must be >= 1, got {self.top_n}")
        if self.rolling_window < 1:
            raise ValueError(f"rolling_window must be >= 1, got {self.rolling_window}")


@dataclass
class BacktestTrade:
    """One prediction of one algorithm against the realised draw."""
    step: int
    timestamp: datetime
    algorithm: str
    predictions: List[int]
    actual_outcome: List[int]
    hits: List[int]
    hit_rate: float
    confidence: float
    profit: float
    label: str = ""


@dataclass
class BacktestSummary:
    total_trades: int = 0
    total_hits: int = 0
    average_hit_rate: float = 0.0
    total_profit: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    win_rate: float = 0.0
    best_algorithm: str = ""
    failures: int = 0


@dataclass
class BacktestResult:
    trades: List[BacktestTrade]
    summary: BacktestSummary
    algorithm_comparison: Dict[str, Dict[str, float]]
    monthly_performance: pd.DataFrame
    rolling_metrics: pd.DataFrame
    n_retrains: int = 0
    cancelled: bool = False
    stop_reason: str = ""

    def trades_frame(self) -> pd.DataFrame:
        return trades_to_frame(self.trades)

    def generate_report(self) -> str:
        """Markdown backtest report."""
        s = self.summary
        content = f"""# Backtest Report

**Generated**: {datetime.now(timezone.utc).isoformat()}

## Summary

| Metric | Value |
|--------|-------|
| Total trades | {s.total_trades} |
| Total hits | {s.total_hits} |
| Average hit rate | {s.average_hit_rate:.1%} |
| Total profit | {s.total_profit:.2f} |
| Max drawdown | {s.max_drawdown:.2f} |
| Sharpe ratio | {s.sharpe_ratio:.3f} |
| Win rate | {s.win_rate:.1%} |
| Best algorithm | {s.best_algorithm or "-"} |
| Prediction failures | {s.failures} |
| Retrains | {self.n_retrains} |
"""
        if self.cancelled:
            content += f"\n**Stopped early**: {self.stop_reason}\n"

        content += "\n## Algorithm Comparison\n\n"
        content += "| Algorithm | Trades | Hits | Hit rate | Profit | Sharpe |\n"
        content += "|-----------|--------|------|----------|--------|--------|\n"
        for name, stats in self.algorithm_comparison.items():
            content += (f"| {name} | {stats['trades']} | {stats['hits']} | {stats['hit_rate']:.1%} "
                        f"| {stats['profit']:.2f} | {stats['sharpe_ratio']:.3f} |\n")

        if not self.monthly_performance.empty:
            content += "\n## Monthly Performance\n\n"
            content += "| Month | Trades | Hit rate | Profit |\n|-------|--------|----------|--------|\n"
            for month, row in self.monthly_performance.iterrows():
                content += f"| {month} | {int(row['trades'])} | {row['hit_rate']:.1%} | {row['profit']:.2f} |\n"
        return content

    def save_results(self, filepath: str):
        """Save backtest results."""
        save_artifact({
            'summary': asdict(self.summary),
            'trades': [asdict(t) for t in self.trades],
            'algorithm_comparison': self.algorithm_comparison,
            'monthly_performance': self.monthly_performance,
            'rolling_metrics': self.rolling_metrics,
            'n_retrains': self.n_retrains,
            'cancelled': self.cancelled,
            'stop_reason': self.stop_reason,
        }, filepath, format='joblib')


def trades_to_frame(trades: Sequence[BacktestTrade]) -> pd.DataFrame:
    columns = [f.name for f in fields(BacktestTrade)]
    return pd.DataFrame([asdict(t) for t in trades], columns=columns)


def _sharpe(profits: np.ndarray) -> float:
    std = profits.std() if profits.size else 0.0
    return float(profits.mean() / std) if std > 0 else 0.0


def summarize_trades(trades: Sequence[BacktestTrade], failures: int = 0) -> BacktestSummary:
    """Aggregate statistics over trades in execution order."""
    if not trades:
        return BacktestSummary(failures=failures)

    profits = np.array([t.profit for t in trades], dtype=float)
    by_algorithm: Dict[str, float] = {}
    for trade in trades:
        by_algorithm[trade.algorithm] = by_algorithm.get(trade.algorithm, 0.0) + trade.profit

    return BacktestSummary(
        total_trades=len(trades),
        total_hits=sum(len(t.hits) for t in trades),
        average_hit_rate=float(np.mean([t.hit_rate for t in trades])),
        total_profit=float(profits.sum()),
        max_drawdown=max_drawdown(profits),
        sharpe_ratio=_sharpe(profits),
        win_rate=float((profits > 0).mean()),
        best_algorithm=max(by_algorithm.items(), key=lambda item: item[1])[0],
        failures=failures,
    )


def compare_algorithms(trades: Sequence[BacktestTrade]) -> Dict[str, Dict[str, float]]:
    comparison = {}
    frame = trades_to_frame(trades)
    if frame.empty:
        return comparison
    for algorithm, group in frame.groupby('algorithm', sort=False):
        profits = group['profit'].to_numpy(dtype=float)
        comparison[algorithm] = {
            'trades': int(len(group)),
            'hits': int(group['hits'].map(len).sum()),
            'hit_rate': float(group['hit_rate'].mean()),
            'profit': float(profits.sum()),
            'sharpe_ratio': _sharpe(profits),
        }
    return comparison


def monthly_performance(trades: Sequence[BacktestTrade]) -> pd.DataFrame:
    """Hit rate (mean), profit (sum) and trade count per calendar month."""
    frame = trades_to_frame(trades)
    if frame.empty:
        return pd.DataFrame(columns=['hit_rate', 'profit', 'trades'])
    frame['month'] = pd.to_datetime(frame['timestamp']).dt.strftime('%Y-%m')
    monthly = frame.groupby('month').agg(
        hit_rate=('hit_rate', 'mean'),
        profit=('profit', 'sum'),
        trades=('profit', 'size'),
    )
    return monthly.sort_index()


def rolling_metrics(trades: Sequence[BacktestTrade], window: int = ROLLING_WINDOW) -> pd.DataFrame:
    """
    Statistics of every run of `window` consecutive trades, stamped with the
    last trade of the run: mean hit rate, summed profit and the drawdown
    inside the window. Trades from several algorithms are counted as they
    interleave, so a window spans window / n_algorithms steps.
    """
    rows = []
    for end in range(window, len(trades) + 1):
        chunk = trades[end - window:end]
        profits = np.array([t.profit for t in chunk], dtype=float)
        cumulative = np.cumsum(profits)
        drawdown = float((np.maximum.accumulate(cumulative) - cumulative).max())
        rows.append({
            'timestamp': chunk[-1].timestamp,
            'rolling_hit_rate': float(np.mean([t.hit_rate for t in chunk])),
            'rolling_profit': float(profits.sum()),
            'drawdown': drawdown,
        })
    return pd.DataFrame(rows, columns=['timestamp', 'rolling_hit_rate', 'rolling_profit', 'drawdown'])


class BacktestEngine:
    """
    Walk-forward simulation: starting at min_training_size, every step
    predicts the next draw from everything before it, and every
    rebalance_frequency steps each algorithm is retrained on all data seen so far.

    Usage:
        engine = BacktestEngine({'boosted': lambda: BoostedTreeEnsemble(context=ctx)})
        result = engine.run(events)
        print(result.generate_report())
    """

    def __init__(self, models: Union[Mapping[str, ModelFactory], Sequence[ModelSpec]],
                 config: Optional[BacktestConfig] = None,
                 context: Optional[EngineContext] = None):
        self.config = config or BacktestConfig()
        self.context = context if context is not None else EngineContext.create()
        if isinstance(models, Mapping):
            self.factories: Dict[str, ModelFactory] = dict(models)
        else:
            self.factories = {spec.name: model_factory(spec, self.context) for spec in models}
        if not self.factories:
            raise ValueError("BacktestEngine needs at least one model")

        self.results: Optional[BacktestResult] = None

    def _filter_period(self, events: List[OutcomeEvent]) -> List[OutcomeEvent]:
        start, end = self.config.start_date, self.config.end_date
        if start is None and end is None:
            return events
        start = pd.Timestamp(start).to_pydatetime() if start is not None else None
        end = pd.Timestamp(end).to_pydatetime() if end is not None else None
        return [e for e in events
                if (start is None or e.timestamp >= start) and (end is None or e.timestamp <= end)]

    def _algorithms(self) -> List[str]:
        if self.config.algorithms is None:
            return list(self.factories)
        unknown = [name for name in self.config.algorithms if name not in self.factories]
        if unknown:
            raise ValueError(f"Unknown algorithms: {unknown}")
        return list(self.config.algorithms)

    def run(self, events: Sequence[OutcomeEvent]) -> BacktestResult:
        """
        Run the walk-forward backtest.

        Args:
            events: Canonical-order history (oldest first)

        Returns:
            BacktestResult with trades, summary, comparisons and time-series views

        Raises:
            InsufficientDataError: fewer events than min_training_size + test_window
        """
        cfg = self.config
        events = self._filter_period(validate_history(events, self.context.domain_size))
        required = cfg.min_training_size + cfg.test_window
        if len(events) < required:
            logger.error(f"Backtest needs {required} events, got {len(events)}")
            raise InsufficientDataError("run_backtest", required, len(events))

        algorithms = self._algorithms()
        models: Dict[str, Optional[BaseModel]] = {name: None for name in algorithms}
        trades: List[BacktestTrade] = []
        failures, n_retrains = 0, 0
        cancelled, stop_reason = False, ""

        logger.info(f"Backtest over {len(events) - cfg.min_training_size} steps, algorithms={algorithms}")
        steps = tqdm(range(cfg.min_training_size, len(events)), desc="backtest",
                     disable=not cfg.show_progress)
        for i in steps:
            if self.context.should_stop():
                cancelled, stop_reason = True, self.context.stop_reason()
                logger.warning(f"Backtest stopped at step {i}: {stop_reason}")
                break

            history = events[:i]
            if (i - cfg.min_training_size) % cfg.rebalance_frequency == 0:
                n_retrains += 1
                logger.info(f"Retraining models at index {i}")
                for name in algorithms:
                    models[name] = self._retrain(name, models[name], history)

            actual = events[i]
            for name in algorithms:
                model = models[name]
                if model is None:
                    failures += 1
                    continue
                try:
                    candidates = model.predict(history, cfg.top_n)
                except Exception as e:
                    logger.warning(f"Prediction error for {name} at step {i}: {type(e).__name__}: {e}")
                    failures += 1
                    continue
                trades.append(self._evaluate_trade(i, name, candidates, actual))

        for model in models.values():
            if model is not None and model.is_trained:
                model.dispose()

        summary = summarize_trades(trades, failures)
        self.results = BacktestResult(
            trades=trades,
            summary=summary,
            algorithm_comparison=compare_algorithms(trades),
            monthly_performance=monthly_performance(trades),
            rolling_metrics=rolling_metrics(trades, cfg.rolling_window),
            n_retrains=n_retrains,
            cancelled=cancelled,
            stop_reason=stop_reason,
        )
        logger.info(f"Backtest done: {summary.total_trades} trades, "
                    f"hit rate {summary.average_hit_rate:.1%}, profit {summary.total_profit:.2f}")
        return self.results

    def _retrain(self, name: str, previous: Optional[BaseModel],
                 history: List[OutcomeEvent]) -> Optional[BaseModel]:
        if previous is not None and previous.is_trained:
            previous.dispose()
        try:
            model = self.factories[name]()
            model.train(history)
            return model
        except Exception as e:
            logger.warning(f"Training error for {name} on {len(history)} events: {type(e).__name__}: {e}")
            return None

    def _evaluate_trade(self, step: int, algorithm: str, candidates, actual: OutcomeEvent) -> BacktestTrade:
        predictions = [c.entity_id for c in candidates]
        hits = [entity for entity in predictions if entity in actual.outcome_set]
        return BacktestTrade(
            step=step,
            timestamp=actual.timestamp,
            algorithm=algorithm,
            predictions=predictions,
            actual_outcome=sorted(actual.outcome_set),
            hits=hits,
            hit_rate=len(hits) / len(predictions) if predictions else 0.0,
            confidence=float(np.mean([c.confidence for c in candidates])) if candidates else 0.0,
            profit=trade_profit(len(hits), len(predictions)),
            label=actual.label,
        )

    def save_results(self, filepath: str):
        """Save backtest results."""
        if not self.results:
            raise ValueError("No results to save")
        self.results.save_results(filepath)
