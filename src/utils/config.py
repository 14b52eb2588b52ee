"""Configuration management for the draw ensemble engine."""

import os
from pathlib import Path
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables
PROJECT_ROOT = Path(__file__).parent.parent.parent
ENV_FILE = PROJECT_ROOT / "keys.env"

if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
else:
    # Try loading from current directory or parent
    load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


# Paths
DATA_DIR = Path(os.getenv("DRAW_ENGINE_DATA_DIR", PROJECT_ROOT / "data"))
HISTORY_DIR = DATA_DIR / "history"
ARTIFACTS_DIR = Path(os.getenv("DRAW_ENGINE_ARTIFACTS_DIR", PROJECT_ROOT / "artifacts"))
MODELS_DIR = ARTIFACTS_DIR / "models"
RESULTS_DIR = ARTIFACTS_DIR / "results"

# Entity domain
DOMAIN_SIZE = _env_int("DRAW_ENGINE_DOMAIN_SIZE", 90)
DRAW_SIZE = _env_int("DRAW_ENGINE_DRAW_SIZE", 5)

# Feature engineering
DEFAULT_FEATURE_WINDOW = _env_int("DRAW_ENGINE_FEATURE_WINDOW", 10)
PREDICTION_LOOKBACK = 50   # Events fed to feature extraction at predict time
MOMENTUM_WINDOW = 10
VOLATILITY_WINDOW = 30
TREND_WINDOW = 20
MOMENTUM_DECAY = 0.1
INTERACTION_DECAY = 0.02

# Backtesting
HIT_REWARD = 1.0
MISS_COST = 0.2
ROLLING_WINDOW = 30

# Reproducibility
DEFAULT_SEED = _env_int("DRAW_ENGINE_SEED", 42)


@dataclass
class EngineDefaults:
    # Reproducibility
    SEED: int = DEFAULT_SEED
    N_JOBS: int = _env_int("DRAW_ENGINE_N_JOBS", 1)
    DEADLINE_SECONDS: float = _env_float("DRAW_ENGINE_DEADLINE_SECONDS", 0.0)  # 0 = no deadline

    # Domain
    DOMAIN_SIZE: int = DOMAIN_SIZE
    DRAW_SIZE: int = DRAW_SIZE

    # Prediction
    TOP_N: int = 5
    FEATURE_WINDOW: int = DEFAULT_FEATURE_WINDOW

    # Cross-validation
    CV_FOLDS: int = 5
    CV_TEST_FRACTION: float = 0.15
    CV_MIN_TRAIN_SIZE: int = 50
    CV_STEP_SIZE: int = 10
    CV_PURGE_GAP: int = 5

    # Hyperparameter search
    SEARCH_CV_FOLDS: int = 3
    SEARCH_CV_TEST_FRACTION: float = 0.2
    SEARCH_RANDOM_ITERATIONS: int = 5

    # Paths
    ARTIFACTS_DIR: Path = ARTIFACTS_DIR


CONFIG = EngineDefaults()
