"""
OS signal listener that raises the batch cancellation signal.
"""

import asyncio
import signal
from typing import Callable, Optional

import structlog


SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(
    cancel_event: asyncio.Event,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Callable[[], None]:
    """
    Set `cancel_event` when SIGINT or SIGTERM arrives.

    Args:
        cancel_event: Event consumed by the orchestrator and the governor
        loop: Event loop to register on (defaults to the running loop)

    Returns:
        Callable removing the handlers again
    """
    loop = loop or asyncio.get_running_loop()
    logger = structlog.get_logger(__name__)

    def on_signal(signum: int):
        if cancel_event.is_set():
            return
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        cancel_event.set()

    installed = []
    for signum in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(signum, on_signal, signum)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            logger.warning("signal_handler_unavailable", signal=signum.name)
            continue
        installed.append(signum)

    def remove():
        for signum in installed:
            loop.remove_signal_handler(signum)

    return remove
