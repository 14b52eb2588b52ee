#!/usr/bin/env python3
"""
Local Pipeline Runner - Run the draw ensemble engine locally.

Loads a draw history (CSV or synthetic), then runs one of:
  predict   - train the weighted ensemble and print the top-N entities
  cv        - purged walk-forward cross-validation for one model kind
  search    - hyperparameter search for one model kind
  backtest  - walk-forward backtest over the configured models

Settings can be overridden in keys.env (DRAW_ENGINE_* variables).
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
project_root = Path(__file__).parent
env_file = project_root / 'keys.env'
if not env_file.exists():
    env_file = project_root.parent / 'keys.env'
if env_file.exists():
    load_dotenv(env_file)
    print(f"✓ Loaded settings from {env_file}")

# Add src to path
sys.path.insert(0, str(project_root / 'src'))

from data import CsvHistory, SyntheticHistoryGenerator
from engine import PredictionEngine
from backtest import BacktestConfig
from models import ModelKind, ModelSpec
from validation import CVConfig
from utils.config import CONFIG, RESULTS_DIR
from utils.context import EngineContext
from utils.errors import EngineError

logger = logging.getLogger("run_pipeline_local")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Draw ensemble engine pipeline")
    parser.add_argument('command', choices=['predict', 'cv', 'search', 'backtest'])
    parser.add_argument('--history', type=Path, help="CSV draw history (default: synthetic)")
    parser.add_argument('--numbers-col', default=None, help="Column holding delimited entity ids")
    parser.add_argument('--synthetic-events', type=int, default=200)
    parser.add_argument('--kind', choices=[k.value for k in ModelKind], default=ModelKind.BOOSTED_TREE.value)
    parser.add_argument('--top-n', type=int, default=CONFIG.TOP_N)
    parser.add_argument('--iterations', type=int, default=10)
    parser.add_argument('--seed', type=int, default=CONFIG.SEED)
    parser.add_argument('--deadline', type=float, default=None, help="Wall-clock budget in seconds")
    parser.add_argument('--n-jobs', type=int, default=CONFIG.N_JOBS)
    parser.add_argument('--output-dir', type=Path, default=RESULTS_DIR)
    parser.add_argument('--progress', action='store_true')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser.parse_args(argv)


def load_events(args):
    if args.history:
        history = CsvHistory(args.history, numbers_col=args.numbers_col)
        events = history.ordered_events()
        print(f"✓ Loaded {len(events)} draws from {args.history}")
    else:
        events = SyntheticHistoryGenerator(seed=args.seed).generate(args.synthetic_events)
        print(f"✓ Generated {len(events)} synthetic draws")
    return events


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("=" * 70)
    print(f"DRAW ENSEMBLE ENGINE - {args.command.upper()}")
    print("=" * 70)

    context = EngineContext.create(seed=args.seed, deadline_seconds=args.deadline, n_jobs=args.n_jobs)
    engine = PredictionEngine(context)
    try:
        events = load_events(args)
        args.output_dir.mkdir(parents=True, exist_ok=True)
        run_command(engine, events, args)
    except EngineError as e:
        logger.error(f"{args.command} failed: {type(e).__name__}: {e}")
        return 1
    finally:
        engine.dispose()

    print("\n" + "=" * 70)
    print("✓ PIPELINE COMPLETE")
    print("=" * 70)
    return 0


def run_command(engine, events, args):
    if args.command == 'predict':
        result = engine.train_ensemble(events)
        print(f"\nWeights: {result['weights']}")
        print(f"\nTop {args.top_n} entities for the next draw:")
        for rank, candidate in enumerate(engine.predict(events, args.top_n), start=1):
            print(f"  {rank}. entity {candidate.entity_id:>3}  p={candidate.probability:.3f}  "
                  f"confidence={candidate.confidence:.3f}  uncertainty={candidate.uncertainty:.3f}")

    elif args.command == 'cv':
        result = engine.cross_validate(events, CVConfig(top_n=args.top_n), kind=args.kind)
        report_path = args.output_dir / f"cv_{args.kind}.md"
        with open(report_path, 'w') as f:
            f.write(result.generate_report())
        print(f"\n✓ {result.n_successful} folds validated, stability={result.stability_score:.3f}")
        print(f"✓ Report saved to {report_path}")

    elif args.command == 'search':
        result = engine.optimize_hyperparameters(args.kind, events, max_iterations=args.iterations,
                                                 show_progress=args.progress)
        result_path = args.output_dir / f"search_{args.kind}.json"
        result.save(result_path)
        print(f"\n✓ Best score {result.best_score:.4f} with {result.best_config}")
        if result.cancelled:
            print(f"⚠ Search stopped early: {result.stop_reason}")
        print(f"✓ Trials saved to {result_path}")

    elif args.command == 'backtest':
        config = BacktestConfig(top_n=args.top_n, show_progress=args.progress)
        specs = [ModelSpec(ModelKind.BOOSTED_TREE), ModelSpec(ModelKind.BAGGED_TREE)]
        result = engine.run_backtest(events, config, specs)
        report_path = args.output_dir / "backtest_report.md"
        with open(report_path, 'w') as f:
            f.write(result.generate_report())
        result.save_results(args.output_dir / "backtest_results.pkl")
        s = result.summary
        print(f"\n✓ {s.total_trades} trades, hit rate {s.average_hit_rate:.1%}, "
              f"profit {s.total_profit:.2f}, max drawdown {s.max_drawdown:.2f}")
        print(f"✓ Report saved to {report_path}")


if __name__ == "__main__":
    os.chdir(project_root)
    sys.exit(main())
