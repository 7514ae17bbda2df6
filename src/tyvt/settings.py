"""Scan settings with Pydantic v2 validation, loadable from YAML."""

from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, PositiveInt, ValidationError, field_validator

from .core.errors import ConfigError
from .core.governor import DAILY_LIMIT, MONTHLY_LIMIT, GovernorConfig


DEFAULT_INTERVAL_S = 15.0


class ScanSettings(BaseModel, extra="forbid"):
    """
    Knobs for one scan run.

    Pacing interval and rotation interval are independent; both default to
    15 seconds.
    """

    pacing_interval: float = Field(DEFAULT_INTERVAL_S, ge=0)
    rotation_interval: float = Field(DEFAULT_INTERVAL_S, gt=0)
    daily_limit: PositiveInt = DAILY_LIMIT
    monthly_limit: PositiveInt = MONTHLY_LIMIT
    max_workers: PositiveInt = 1
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    credentials: List[str] = []
    items: List[str] = []
    validate_items: bool = True
    credential_pattern: Optional[str] = None

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        """Accept lower-case level names from YAML and the command line."""
        return v.upper() if isinstance(v, str) else v

    def governor_config(self) -> GovernorConfig:
        return GovernorConfig(
            min_interval=self.pacing_interval,
            daily_limit=self.daily_limit,
            monthly_limit=self.monthly_limit,
        )


def load_settings(path: Optional[Path] = None, **overrides) -> ScanSettings:
    """Load settings from a YAML file and apply overrides.

    Args:
        path: YAML file; None means defaults only.
        **overrides: Values replacing the file's (None values are ignored).

    Returns:
        Validated ScanSettings instance.

    Raises:
        ConfigError: If the file is missing, unreadable, or contains invalid data.
    """
    raw_data = {}

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                raw_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file: {e}") from e

        # Handle empty YAML files
        if raw_data is None:
            raw_data = {}

        if not isinstance(raw_data, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(raw_data).__name__}")

    raw_data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ScanSettings.model_validate(raw_data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e
