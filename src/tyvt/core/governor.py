"""
Request Governor - Global pacing and per-credential quota accounting.

Every outbound request passes through a single Governor instance, which:
1. Enforces a minimum interval between any two requests, whatever credential
   issues them (rotating keys never bypasses pacing)
2. Counts usage per credential in a daily and a monthly window
3. Rejects a credential once either ceiling is reached

Admission is serialized: check, pacing sleep and commit happen under one
asyncio lock, so concurrent callers cannot overshoot a ceiling or shorten
the pacing gap.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import structlog

from .errors import QuotaExceededError, QuotaScope, ScanCancelledError
from ..validation import mask_credential


DAILY_LIMIT = 500
MONTHLY_LIMIT = 15_500

DAY = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(moment: datetime) -> datetime:
    """UTC midnight of the day containing `moment`"""
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    """First instant of the month containing `moment`"""
    return start_of_day(moment).replace(day=1)


@dataclass
class GovernorConfig:
    """Configuration for the request governor"""
    min_interval: float = 15.0       # Seconds between any two requests
    daily_limit: int = DAILY_LIMIT   # Requests per credential per day
    monthly_limit: int = MONTHLY_LIMIT  # Requests per credential per month


@dataclass
class QuotaState:
    """Usage counters for one credential"""
    daily_window_start: datetime
    monthly_window_start: datetime
    daily_count: int = 0
    monthly_count: int = 0

    def roll_windows(self, now: datetime) -> bool:
        """
        Reset counters whose window has ended.

        Returns:
            True if any window was reset
        """
        rolled = False

        if now - self.daily_window_start >= DAY:
            self.daily_count = 0
            self.daily_window_start = start_of_day(now)
            rolled = True

        if (now.year, now.month) != (self.monthly_window_start.year, self.monthly_window_start.month):
            self.monthly_count = 0
            self.monthly_window_start = start_of_month(now)
            rolled = True

        return rolled


class Governor:
    """
    Shared pacing and quota tracker.

    One Governor must be shared by every caller issuing requests (including
    all workers of a pool); independent copies would each keep their own
    pacing marker and counters.

    Example:
        >>> governor = Governor(GovernorConfig(min_interval=15.0))
        >>> await governor.wait(api_key, cancel_event)  # paced and counted
        >>> governor.get_quota_status(api_key)
        (1, 1)
    """

    def __init__(
        self,
        config: Optional[GovernorConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the governor.

        Args:
            config: Governor configuration (uses defaults if None)
            clock: Wall-clock source (timezone-aware UTC) for quota windows
            monotonic: Monotonic clock in seconds for pacing
        """
        self.config = config or GovernorConfig()
        self.clock = clock
        self.monotonic = monotonic

        self.quotas: Dict[str, QuotaState] = {}
        self.last_request_at: Optional[float] = None
        self.request_count = 0

        # Guards the fields above; never held across an await
        self._state_lock = threading.Lock()
        # Serializes admissions from check through commit
        self._admission_lock = asyncio.Lock()

        self.logger = structlog.get_logger(__name__)

        self.logger.info(
            "governor_initialized",
            min_interval=self.config.min_interval,
            daily_limit=self.config.daily_limit,
            monthly_limit=self.config.monthly_limit,
        )

    def _quota_for(self, credential: str) -> QuotaState:
        quota = self.quotas.get(credential)
        if quota is None:
            now = self.clock()
            quota = QuotaState(
                daily_window_start=start_of_day(now),
                monthly_window_start=start_of_month(now),
            )
            self.quotas[credential] = quota
        return quota

    def _check_unlocked(self, credential: str) -> QuotaState:
        quota = self._quota_for(credential)

        if quota.roll_windows(self.clock()):
            self.logger.debug(
                "quota_window_rolled",
                key=mask_credential(credential),
                daily=quota.daily_count,
                monthly=quota.monthly_count,
            )

        if quota.daily_count >= self.config.daily_limit:
            raise QuotaExceededError(
                QuotaScope.DAILY, mask_credential(credential), self.config.daily_limit
            )

        if quota.monthly_count >= self.config.monthly_limit:
            raise QuotaExceededError(
                QuotaScope.MONTHLY, mask_credential(credential), self.config.monthly_limit
            )

        return quota

    def _remaining_delay_unlocked(self) -> float:
        if self.last_request_at is None:
            return 0.0
        elapsed = self.monotonic() - self.last_request_at
        return max(0.0, self.config.min_interval - elapsed)

    def check(self, credential: str):
        """
        Check whether `credential` may issue a request right now.

        Rolls expired windows but never increments a counter.

        Raises:
            QuotaExceededError: If the daily or monthly ceiling is reached
        """
        with self._state_lock:
            self._check_unlocked(credential)

    async def wait(self, credential: str, cancel_event: Optional[asyncio.Event] = None):
        """
        Admit one request for `credential`, sleeping out the pacing interval.

        Args:
            credential: API key that will issue the request
            cancel_event: Interrupts the pacing sleep when set

        Raises:
            QuotaExceededError: Ceiling reached; counters are left untouched
            ScanCancelledError: Cancelled while waiting; counters untouched
        """
        async with self._admission_lock:
            with self._state_lock:
                self._check_unlocked(credential)
                delay = self._remaining_delay_unlocked()

            # A timer can fire marginally early, so re-measure until the
            # full interval has elapsed
            while delay > 0:
                self.logger.debug(
                    "pacing_wait",
                    delay=f"{delay:.3f}s",
                    key=mask_credential(credential),
                )
                await self._sleep(delay, cancel_event)
                with self._state_lock:
                    delay = self._remaining_delay_unlocked()

            with self._state_lock:
                self.last_request_at = self.monotonic()
                self.request_count += 1
                quota = self._quota_for(credential)
                quota.daily_count += 1
                quota.monthly_count += 1
                daily, monthly = quota.daily_count, quota.monthly_count

        self.logger.debug(
            "request_admitted",
            key=mask_credential(credential),
            daily=daily,
            monthly=monthly,
        )

    async def _sleep(self, delay: float, cancel_event: Optional[asyncio.Event]):
        if cancel_event is None:
            await asyncio.sleep(delay)
            return

        if cancel_event.is_set():
            raise ScanCancelledError("cancelled before pacing wait")

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

        self.logger.info("pacing_wait_cancelled")
        raise ScanCancelledError("cancelled during pacing wait")

    def get_quota_status(self, credential: str) -> Tuple[int, int]:
        """
        Get usage for a credential.

        Returns:
            (daily_used, monthly_used); (0, 0) for an unknown credential
        """
        with self._state_lock:
            quota = self.quotas.get(credential)
            if quota is None:
                return 0, 0
            return quota.daily_count, quota.monthly_count

    def get_request_count(self) -> int:
        with self._state_lock:
            return self.request_count

    def reset(self):
        """Clear all quota state and the pacing marker (tests/administration only)"""
        with self._state_lock:
            self.quotas.clear()
            self.last_request_at = None
            self.request_count = 0

        self.logger.info("governor_reset")

    def get_stats(self) -> dict:
        """
        Get governor statistics.

        Returns:
            Dictionary with current statistics
        """
        with self._state_lock:
            return {
                "request_count": self.request_count,
                "tracked_credentials": len(self.quotas),
                "config": {
                    "min_interval": self.config.min_interval,
                    "daily_limit": self.config.daily_limit,
                    "monthly_limit": self.config.monthly_limit,
                },
            }
