"""
Synthetic Draw Histories

Generates canonical-order event histories for tests, demos and stress runs:
- Uniform random draws
- Planted periodic entities (an entity forced into every k-th draw)
- Constant entities (present in every draw)
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .events import OutcomeEvent

import sys
from pathlib import Path
try:
    from ..utils.config import DOMAIN_SIZE, DRAW_SIZE
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from utils.config import DOMAIN_SIZE, DRAW_SIZE

logger = logging.getLogger(__name__)


class SyntheticHistoryGenerator:
    """
    Builds synthetic draw histories.

    Usage:
        gen = SyntheticHistoryGenerator(seed=1)
        events = gen.generate(60, periodic={7: 3})
    """

    def __init__(self, domain_size: int = DOMAIN_SIZE, draw_size: int = DRAW_SIZE,
                 seed: int = 42, start: str = "2023-01-02", freq: str = "D"):
        if draw_size > domain_size:
            raise ValueError(f"draw_size {draw_size} exceeds domain_size {domain_size}")
        self.domain_size = domain_size
        self.draw_size = draw_size
        self.start = start
        self.freq = freq
        self.rng = np.random.default_rng(seed)

    def generate(self, n_events: int, periodic: Optional[Dict[int, int]] = None,
                 constant: Sequence[int] = (), label: str = "synthetic") -> List[OutcomeEvent]:
        """
        Generate `n_events` draws in ascending time order.

        Args:
            n_events: Number of draws
            periodic: entity -> period; the entity appears in draws where index % period == 0
                      and never otherwise
            constant: entities present in every draw
            label: draw name stored on each event
        """
        periodic = periodic or {}
        reserved = set(periodic) | set(constant)
        free_pool = np.array([e for e in range(1, self.domain_size + 1) if e not in reserved])
        dates = pd.date_range(self.start, periods=n_events, freq=self.freq)

        events = []
        for i, date in enumerate(dates):
            chosen = set(constant)
            for entity, period in periodic.items():
                if i % period == 0:
                    chosen.add(entity)
            n_free = max(0, self.draw_size - len(chosen))
            if n_free:
                chosen.update(int(e) for e in self.rng.choice(free_pool, size=n_free, replace=False))
            events.append(OutcomeEvent(timestamp=date.to_pydatetime(),
                                       outcome_set=frozenset(chosen), label=label))

        logger.debug(f"Generated {n_events} synthetic events (periodic={periodic}, constant={list(constant)})")
        return events
