"""
Unit tests for the signal listener.

Run with: pytest tests/unit/test_signals.py -v
"""

import asyncio
import os
import signal

import pytest

from tyvt.core.signals import install_signal_handlers


class TestSignalHandlers:
    """Test suite for install_signal_handlers"""

    @pytest.mark.asyncio
    async def test_sigint_sets_cancel_event(self):
        """Test SIGINT raises the cancellation signal"""
        cancel_event = asyncio.Event()
        remove = install_signal_handlers(cancel_event)

        try:
            os.kill(os.getpid(), signal.SIGINT)
            await asyncio.wait_for(cancel_event.wait(), timeout=1.0)
        finally:
            remove()

        assert cancel_event.is_set()

    @pytest.mark.asyncio
    async def test_remove_restores_handlers(self):
        """Test removal unregisters the handlers from the loop"""
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        remove = install_signal_handlers(cancel_event, loop)

        remove()

        assert loop.remove_signal_handler(signal.SIGTERM) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
