"""
Core module - Request governing and batch orchestration.

This package contains the pacing/quota governor, the credential rotator and
the batch orchestrator that composes them.
"""

from .errors import (
    ConfigError,
    OrchestratorError,
    QueryError,
    QuotaExceededError,
    QuotaScope,
    ScanCancelledError,
    ThresholdExceededError,
    TyvtError,
)
from .governor import DAILY_LIMIT, MONTHLY_LIMIT, Governor, GovernorConfig, QuotaState
from .rotator import CredentialRotator
from .orchestrator import (
    BatchOrchestrator,
    BatchOutcome,
    BatchState,
    BatchVerdict,
    ItemResult,
)
from .signals import install_signal_handlers


__all__ = [
    # Governing
    "Governor",
    "GovernorConfig",
    "QuotaState",
    "DAILY_LIMIT",
    "MONTHLY_LIMIT",
    # Rotation
    "CredentialRotator",
    # Orchestration
    "BatchOrchestrator",
    "BatchOutcome",
    "BatchState",
    "BatchVerdict",
    "ItemResult",
    "install_signal_handlers",
    # Errors
    "TyvtError",
    "ConfigError",
    "OrchestratorError",
    "QueryError",
    "QuotaExceededError",
    "QuotaScope",
    "ScanCancelledError",
    "ThresholdExceededError",
]
