"""
Credential Rotator - Time-based API key rotation.

Keeps an ordered list of credentials and a current selection. The selection
moves forward either on demand (rotate_credential) or on a fixed wall-clock
cadence driven by a background asyncio task, regardless of request volume.
"""

import asyncio
import threading
import time
from typing import Optional, Sequence

import structlog

from ..validation import mask_credential


class CredentialRotator:
    """
    Round-robin credential selector with optional automatic rotation.

    Example:
        >>> rotator = CredentialRotator(["key-a", "key-b"], rotation_interval=15.0)
        >>> async with rotator:
        ...     key = rotator.current_credential()
    """

    def __init__(self, credentials: Sequence[str], rotation_interval: float = 15.0):
        """
        Initialize the rotator.

        Args:
            credentials: Ordered credentials; identity is the exact string
            rotation_interval: Seconds between automatic rotations
        """
        if rotation_interval <= 0:
            raise ValueError("rotation_interval must be positive")

        self.credentials: tuple = tuple(credentials)
        self.rotation_interval = rotation_interval
        self.current_index = 0
        self.last_rotation_at = time.monotonic()

        self._lock = threading.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

        self.logger = structlog.get_logger(__name__)

    def current_credential(self) -> Optional[str]:
        """Active credential, or None when no credentials were supplied"""
        with self._lock:
            if not self.credentials:
                return None
            return self.credentials[self.current_index]

    def rotate_credential(self) -> Optional[str]:
        """
        Advance to the next credential.

        A rotator holding zero or one credential never moves.

        Returns:
            The new current credential
        """
        with self._lock:
            if not self.credentials:
                return None
            if len(self.credentials) == 1:
                return self.credentials[0]

            self.current_index = (self.current_index + 1) % len(self.credentials)
            self.last_rotation_at = time.monotonic()
            credential = self.credentials[self.current_index]
            index = self.current_index

        self.logger.debug("credential_rotated", index=index, key=mask_credential(credential))
        return credential

    def get_key_count(self) -> int:
        return len(self.credentials)

    def get_current_index(self) -> int:
        with self._lock:
            return self.current_index

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """
        Start automatic rotation on the running event loop.

        No-op with fewer than two credentials, when already running, or
        after stop().
        """
        if len(self.credentials) <= 1 or self.is_running or self._stopped:
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._auto_rotate())

        self.logger.info(
            "auto_rotation_started",
            keys=len(self.credentials),
            interval=self.rotation_interval,
        )

    async def _auto_rotate(self):
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.rotation_interval)
            except asyncio.TimeoutError:
                self.rotate_credential()

        self.logger.info("auto_rotation_stopped")

    def stop(self):
        """Signal the rotation task to finish. Safe to call any number of times."""
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def close(self):
        """Stop rotation and wait for the background task to exit"""
        self.stop()
        if self._task is not None:
            await self._task

    async def __aenter__(self) -> "CredentialRotator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def get_stats(self) -> dict:
        """
        Get rotator statistics.

        Returns:
            Dictionary with key count, current index and the masked active key
        """
        current = self.current_credential()
        return {
            "key_count": len(self.credentials),
            "current_index": self.get_current_index(),
            "current_key": mask_credential(current) if current else None,
            "rotation_interval": self.rotation_interval,
            "auto_rotating": self.is_running,
        }

