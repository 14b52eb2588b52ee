"""
Engine context

Explicit state passed into every component instead of module-level caches:
- Seedable PRNG used by every stochastic step
- Cooperative cancellation token
- Optional wall-clock deadline
- Parallelism and domain settings
"""

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

from .config import CONFIG
from .errors import OperationCancelled


class CancellationToken:
    """Thread-safe flag checked once per outer iteration of long loops."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled by caller"):
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class EngineContext:
    """
    Shared, explicitly-owned engine state.

    Usage:
        ctx = EngineContext.create(seed=7, deadline_seconds=60)
        model = BoostedTreeEnsemble(context=ctx)
    """
    rng: np.random.Generator
    token: CancellationToken = field(default_factory=CancellationToken)
    deadline: Optional[float] = None  # time.monotonic() value
    n_jobs: int = 1
    domain_size: int = CONFIG.DOMAIN_SIZE
    artifacts_dir: Path = CONFIG.ARTIFACTS_DIR

    @classmethod
    def create(cls, seed: Optional[int] = None, deadline_seconds: Optional[float] = None,
               n_jobs: Optional[int] = None, domain_size: Optional[int] = None) -> "EngineContext":
        seed = CONFIG.SEED if seed is None else seed
        if deadline_seconds is None and CONFIG.DEADLINE_SECONDS > 0:
            deadline_seconds = CONFIG.DEADLINE_SECONDS
        deadline = time.monotonic() + deadline_seconds if deadline_seconds else None
        return cls(
            rng=np.random.default_rng(seed),
            deadline=deadline,
            n_jobs=CONFIG.N_JOBS if n_jobs is None else n_jobs,
            domain_size=CONFIG.DOMAIN_SIZE if domain_size is None else domain_size,
        )

    def spawn_seed(self) -> int:
        """Draw a child seed so sub-tasks stay reproducible regardless of scheduling."""
        return int(self.rng.integers(0, 2**31 - 1))

    def spawn_rng(self) -> np.random.Generator:
        return np.random.default_rng(self.spawn_seed())

    def deadline_exceeded(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def should_stop(self) -> bool:
        return self.token.is_cancelled or self.deadline_exceeded()

    def stop_reason(self) -> str:
        if self.token.is_cancelled:
            return self.token.reason or "cancelled"
        if self.deadline_exceeded():
            return "deadline exceeded"
        return ""

    def check_cancelled(self):
        if self.should_stop():
            raise OperationCancelled(self.stop_reason())
