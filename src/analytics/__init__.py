"""
Analytics package for model health monitoring.

Modules:
- retraining_monitor: Degradation and new-data triggers for retraining
"""

from .retraining_monitor import (
    RetrainingMonitor, RetrainingConfig, RetrainingStatus,
    RetrainingTrigger, TrainingSession
)

__all__ = [
    'RetrainingMonitor',
    'RetrainingConfig',
    'RetrainingStatus',
    'RetrainingTrigger',
    'TrainingSession'
]
