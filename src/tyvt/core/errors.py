"""
Exception hierarchy for the request-governing core.

Per-item errors (quota rejections, query failures) are recovered by the
orchestrator; cancellation and threshold failures end the batch.
"""

from enum import Enum
from typing import Any, Optional


class QuotaScope(Enum):
    """Which consumption ceiling rejected a request"""
    DAILY = "daily"
    MONTHLY = "monthly"


class TyvtError(Exception):
    """Base exception for all tyvt errors"""
    pass


class ConfigError(TyvtError):
    """Raised when configuration loading or validation fails"""
    pass


class QuotaExceededError(TyvtError):
    """Raised when a credential has used up its daily or monthly quota"""

    def __init__(self, scope: QuotaScope, credential_hint: str = "", limit: int = 0):
        self.scope = scope
        self.credential_hint = credential_hint
        self.limit = limit
        super().__init__(
            f"{scope.value} quota exceeded for key ***{credential_hint} ({limit}/{scope.value})"
        )


class ScanCancelledError(TyvtError):
    """Raised when the cancellation signal interrupts a wait or a batch"""
    pass


class QueryError(TyvtError):
    """Wraps a failure reported by the query collaborator for a single item"""

    def __init__(self, item: str, cause: BaseException):
        self.item = item
        self.cause = cause
        super().__init__(f"item {item}: {cause}")


class OrchestratorError(TyvtError):
    """Raised on orchestrator misuse or fatal configuration"""
    pass


class ThresholdExceededError(TyvtError):
    """Raised when more than half of the items in a batch failed"""

    def __init__(self, failure_count: int, total: int, outcome: Optional[Any] = None):
        self.failure_count = failure_count
        self.total = total
        self.outcome = outcome
        super().__init__(
            f"scan failed with {failure_count}/{total} errors (>50% failure rate)"
        )
