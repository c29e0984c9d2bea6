"""
Configuration management for phaseflow.

ExecutionConfig is an immutable struct built once per Session and passed by
reference to every component that needs it. It can be constructed directly,
from a dict, or loaded from a YAML file.

YAML layout (keys may also sit at the top level):

    execution:
      parallelism: 4
      fail_fast: true
      target_timeout_s: 600
      continue_on_verify_failure: false
    logging:
      level: INFO
      format: pretty
      file: logs/phaseflow.log
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml


CONFIG_ENV_VAR = "PHASEFLOW_CONFIG"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("pretty", "structured")


class ConfigError(Exception):
    """Configuration validation error."""
    pass


@dataclass(frozen=True)
class ExecutionConfig:
    """
    Execution settings for one Session.

    Attributes:
        parallelism: Maximum number of targets executing concurrently within a phase
        fail_fast: Abort remaining targets and phases after the first failure
        target_timeout_s: Per-target timeout in seconds (None disables it)
        continue_on_verify_failure: Let later phases run after a failed
            VALIDATE or VERIFY phase
        log_level: Logging level name
        log_format: "pretty" (rich console) or "structured" (JSON)
        log_file: Optional log file path
    """
    parallelism: int = 1
    fail_fast: bool = True
    target_timeout_s: Optional[float] = None
    continue_on_verify_failure: bool = False
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.parallelism, bool) or not isinstance(self.parallelism, int):
            raise ConfigError(f"parallelism must be an integer, got {self.parallelism!r}")
        if self.parallelism < 1:
            raise ConfigError(f"parallelism must be >= 1, got {self.parallelism}")
        if self.target_timeout_s is not None:
            if isinstance(self.target_timeout_s, bool) or not isinstance(self.target_timeout_s, (int, float)):
                raise ConfigError(f"target_timeout_s must be a number, got {self.target_timeout_s!r}")
            if self.target_timeout_s <= 0:
                raise ConfigError(f"target_timeout_s must be > 0, got {self.target_timeout_s}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level: {self.log_level}")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(
                f"Unknown log format: {self.log_format}. Expected one of {list(LOG_FORMATS)}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionConfig":
        """
        Build a config from a plain dict.

        Accepts either flat keys or the nested "execution"/"logging" sections
        used in YAML files.

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(data).__name__}")

        flat: dict[str, Any] = {}
        for key, value in data.items():
            if key == "execution":
                if not isinstance(value, dict):
                    raise ConfigError("'execution' section must be a mapping")
                flat.update(value)
            elif key == "logging":
                if not isinstance(value, dict):
                    raise ConfigError("'logging' section must be a mapping")
                for log_key, log_value in value.items():
                    flat[f"log_{log_key}"] = log_value
            else:
                flat[key] = value

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(flat) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {unknown}")

        return cls(**flat)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def should_fail_fast(self, override: Optional[bool] = None) -> bool:
        """Check if a run should stop on first error, honoring a per-job override."""
        if override is not None:
            return override
        return self.fail_fast


def load_config(config_path: Optional[Path] = None) -> ExecutionConfig:
    """
    Load execution configuration from a YAML file.

    Args:
        config_path: Path to config file. Defaults to $PHASEFLOW_CONFIG.

    Returns:
        ExecutionConfig instance. Defaults are used if no path was given
        and $PHASEFLOW_CONFIG is unset.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return ExecutionConfig()
        config_path = Path(env_path)

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if not data:
        return ExecutionConfig()

    return ExecutionConfig.from_dict(data)
