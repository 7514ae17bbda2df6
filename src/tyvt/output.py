"""
Result persistence - Writes a batch outcome as a JSON report.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

import structlog

from . import __version__
from .core.orchestrator import BatchOutcome


logger = structlog.get_logger(__name__)


def _jsonable(value: Any) -> Any:
    """Best-effort conversion of collaborator payloads to JSON types"""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "to_dict"):
        return _jsonable(value.to_dict())
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def outcome_to_dict(outcome: BatchOutcome) -> Dict[str, Any]:
    """
    Convert a batch outcome to a JSON-serializable dictionary.

    Successes and failures are listed separately, both in input order.
    """
    return {
        "metadata": {
            "batch_id": outcome.batch_id,
            "scan_time": (outcome.finished_at or datetime.now(timezone.utc)).isoformat(),
            "total_items": outcome.total,
            "success_count": outcome.total - outcome.failure_count,
            "error_count": outcome.failure_count,
            "verdict": outcome.verdict.value,
            "version": __version__,
        },
        "results": [
            {
                "item": result.item,
                "payload": _jsonable(result.payload),
                "completed_at": result.completed_at.isoformat(),
            }
            for result in outcome.successes
        ],
        "errors": [
            {"item": result.item, "error": str(result.error)}
            for result in outcome.failures
        ],
    }


def write_outcome(outcome: BatchOutcome, path: Union[str, Path]) -> Path:
    """
    Write the outcome to `path` as indented JSON, creating parent directories.

    Returns:
        The path written
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(outcome_to_dict(outcome), f, indent=2)

    logger.info(
        "results_written",
        path=str(output_path),
        successful=outcome.total - outcome.failure_count,
        errors=outcome.failure_count,
    )
    return output_path
