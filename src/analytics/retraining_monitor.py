"""
Retraining Monitor

Decides when models should be retrained:
- Performance degradation: latest hit rate falls more than the threshold
  below the trailing mean
- New data: enough events arrived since the last training session
- Manual: caller request

Observes and recommends; training itself stays with the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

import sys
from pathlib import Path
try:
    from ..utils.helpers import safe_divide
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from utils.helpers import safe_divide

logger = logging.getLogger(__name__)


class RetrainingTrigger(str, Enum):
    PERFORMANCE_DEGRADATION = "performance_degradation"
    NEW_DATA = "new_data"
    MANUAL = "manual"


@dataclass
class RetrainingConfig:
    retraining_threshold: float = 0.05  # relative hit-rate drop
    min_new_data_points: int = 20
    performance_window: int = 50
    min_history: int = 10


@dataclass
class TrainingSession:
    timestamp: datetime
    trigger: RetrainingTrigger
    n_events: int
    models_retrained: List[str]


@dataclass
class RetrainingStatus:
    triggers: List[RetrainingTrigger]
    degradation: Dict[str, float] = field(default_factory=dict)
    new_data_points: int = 0

    @property
    def should_retrain(self) -> bool:
        return bool(self.triggers)


class RetrainingMonitor:
    """
    Tracks per-model hit rates and training sessions.

    Usage:
        monitor = RetrainingMonitor()
        monitor.record_performance('boosted', 0.12)
        status = monitor.evaluate_triggers(n_events=len(events))
        if status.should_retrain:
            names = monitor.select_models_for_retraining(status.triggers[0])
    """

    def __init__(self, config: Optional[RetrainingConfig] = None):
        self.config = config or RetrainingConfig()
        self.performance: Dict[str, List[float]] = {}
        self.sessions: List[TrainingSession] = []

    def record_performance(self, model_name: str, hit_rate: float):
        history = self.performance.setdefault(model_name, [])
        history.append(float(hit_rate))
        del history[:-self.config.performance_window]

    def record_training(self, model_names: Sequence[str], n_events: int,
                        trigger: RetrainingTrigger = RetrainingTrigger.MANUAL) -> TrainingSession:
        session = TrainingSession(
            timestamp=datetime.now(timezone.utc),
            trigger=RetrainingTrigger(trigger),
            n_events=n_events,
            models_retrained=list(model_names),
        )
        self.sessions.append(session)
        logger.info(f"Training session ({session.trigger.value}): {session.models_retrained} on {n_events} events")
        return session

    def new_data_count(self, n_events: int) -> int:
        """Events added since the last training session (all of them if never trained)."""
        if not self.sessions:
            return n_events
        return max(0, n_events - self.sessions[-1].n_events)

    def detect_degradation(self) -> Dict[str, float]:
        """
        Relative drop of each model's latest hit rate against the mean of its
        earlier records; only models past the threshold are returned.
        """
        degraded = {}
        for name, history in self.performance.items():
            if len(history) < self.config.min_history:
                continue
            baseline = float(np.mean(history[:-1]))
            degradation = safe_divide(baseline - history[-1], baseline)
            if degradation > self.config.retraining_threshold:
                logger.warning(f"Performance degradation for {name}: {degradation:.1%}")
                degraded[name] = degradation
        return degraded

    def evaluate_triggers(self, n_events: int) -> RetrainingStatus:
        triggers = []
        degradation = self.detect_degradation()
        if degradation:
            triggers.append(RetrainingTrigger.PERFORMANCE_DEGRADATION)
        new_points = self.new_data_count(n_events)
        if new_points >= self.config.min_new_data_points:
            triggers.append(RetrainingTrigger.NEW_DATA)
        return RetrainingStatus(triggers=triggers, degradation=degradation, new_data_points=new_points)

    def select_models_for_retraining(self, trigger: RetrainingTrigger,
                                     candidates: Optional[Sequence[str]] = None) -> List[str]:
        """
        Degradation retrains the degraded models, new data retrains the
        weakest model, manual retrains everything.
        """
        trigger = RetrainingTrigger(trigger)
        names = list(candidates) if candidates is not None else list(self.performance)
        if trigger is RetrainingTrigger.PERFORMANCE_DEGRADATION:
            degraded = [name for name in self.detect_degradation() if name in names]
            return degraded or names
        if trigger is RetrainingTrigger.NEW_DATA:
            scored = [(np.mean(self.performance[n]), n) for n in names if self.performance.get(n)]
            if not scored:
                return names
            return [min(scored)[1]]
        return names

    def performance_frame(self) -> pd.DataFrame:
        """Hit-rate history, one column per model (shorter histories padded with NaN)."""
        return pd.DataFrame({name: pd.Series(values) for name, values in self.performance.items()})
