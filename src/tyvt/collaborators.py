"""
Query collaborators.

The remote call itself lives outside the core: any coroutine function
`(cancel_event, credential, item) -> payload` that raises on failure can be
plugged in. The CLI resolves it from a "package.module:function" path.
"""

import asyncio
import importlib
import inspect
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .core.errors import ConfigError
from .core.orchestrator import QueryFunc
from .validation import mask_credential


async def echo_query(
    cancel_event: Optional[asyncio.Event],
    credential: str,
    item: str,
) -> Dict[str, Any]:
    """Offline collaborator: reports which key would have queried which item"""
    return {
        "item": item,
        "key": f"***{mask_credential(credential)}",
        "queried_at": datetime.now(timezone.utc).isoformat(),
    }


def load_query(path: str) -> QueryFunc:
    """
    Import a query collaborator from "package.module:function".

    Raises:
        ConfigError: If the path is malformed, unimportable, or not a coroutine function
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"query must look like 'package.module:function', got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"cannot import query module {module_name!r}: {e}") from e

    try:
        func = getattr(module, attr)
    except AttributeError as e:
        raise ConfigError(f"module {module_name!r} has no attribute {attr!r}") from e

    if not inspect.iscoroutinefunction(func):
        raise ConfigError(f"query {path!r} must be an async function")

    return func
