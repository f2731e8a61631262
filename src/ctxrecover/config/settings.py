"""Configuration management for ctxrecover."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ctxrecover.recovery.deduplication import DeduplicationConfig
from ctxrecover.recovery.orchestrator import RecoveryConfig
from ctxrecover.recovery.truncation import TruncationConfig
from ctxrecover.utils.retry import RetryConfig

# Use standard logging for settings module to avoid circular imports
logger = logging.getLogger(__name__)

SENSITIVE_ENV_VAR_NAMES: frozenset = frozenset({"HOST_PASSWORD"})

_SENSITIVE_FIELD_NAMES: frozenset = frozenset(
    {name.lower() for name in SENSITIVE_ENV_VAR_NAMES}
)


class RecoverySettings(BaseSettings):
    """Settings for context-window limit recovery.

    Every field maps to an environment variable through ``validation_alias``.
    Values missing from the environment may also come from a YAML file, see
    :func:`load_settings`.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    _SENSITIVE_FIELDS: frozenset = _SENSITIVE_FIELD_NAMES

    def __repr__(self) -> str:
        """Return a representation with sensitive fields masked."""
        field_strs = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name, None)
            if field_name in self._SENSITIVE_FIELDS:
                masked = f"<{len(str(value))} chars>" if value else "None"
                field_strs.append(f"{field_name}={masked!r}")
            else:
                field_strs.append(f"{field_name}={value!r}")
        return f"{self.__class__.__name__}({', '.join(field_strs)})"

    def __str__(self) -> str:
        """Return a string representation with sensitive fields masked."""
        return self.__repr__()

    # Persisted conversation store
    storage_dir: Optional[str] = Field(
        None,
        validation_alias="OPENCODE_STORAGE_DIR",
        description="Storage root override. Defaults to $XDG_DATA_HOME/opencode/storage.",
    )

    # Logging configuration
    log_level: str = Field(
        "INFO",
        validation_alias="LOG_LEVEL",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    json_logs: bool = Field(False, validation_alias="JSON_LOGS")

    # Aggressive truncation
    truncate_target_ratio: float = Field(
        0.5,
        validation_alias="TRUNCATE_TARGET_RATIO",
        gt=0.0,
        le=1.0,
        description="Fraction of the context window to shrink to (0-1].",
    )
    chars_per_token: int = Field(4, validation_alias="CHARS_PER_TOKEN", ge=1)
    max_truncate_attempts: int = Field(
        20, validation_alias="MAX_TRUNCATE_ATTEMPTS", ge=1
    )

    # Summarize retry
    summarize_max_attempts: int = Field(
        2, validation_alias="SUMMARIZE_MAX_ATTEMPTS", ge=1, le=10
    )
    summarize_initial_delay: float = Field(
        2.0, validation_alias="SUMMARIZE_INITIAL_DELAY", ge=0.0
    )
    summarize_backoff_factor: float = Field(
        2.0, validation_alias="SUMMARIZE_BACKOFF_FACTOR", ge=1.0
    )
    summarize_max_delay: float = Field(
        30.0, validation_alias="SUMMARIZE_MAX_DELAY", ge=0.0
    )
    retry_reset_window: float = Field(
        300.0,
        validation_alias="RETRY_RESET_WINDOW",
        ge=0.0,
        description="Seconds after which the summarize attempt counter resets.",
    )

    # Empty-content repair
    empty_content_max_attempts: int = Field(
        3, validation_alias="EMPTY_CONTENT_MAX_ATTEMPTS", ge=1
    )

    # Scheduling delays (seconds)
    error_recovery_delay: float = Field(
        0.3, validation_alias="ERROR_RECOVERY_DELAY", ge=0.0
    )
    continuation_delay: float = Field(
        0.5, validation_alias="CONTINUATION_DELAY", ge=0.0
    )
    empty_content_retry_delay: float = Field(
        0.5, validation_alias="EMPTY_CONTENT_RETRY_DELAY", ge=0.0
    )

    # Duplicate tool-call pruning
    dedup_enabled: bool = Field(False, validation_alias="DEDUP_ENABLED")
    dedup_protected_tools: str = Field(
        "[]",
        validation_alias="DEDUP_PROTECTED_TOOLS",
        description="YAML/JSON list or comma-separated tool names never pruned.",
    )

    # Host HTTP API
    host_base_url: str = Field(
        "http://127.0.0.1:4096", validation_alias="HOST_BASE_URL"
    )
    host_directory: Optional[str] = Field(None, validation_alias="HOST_DIRECTORY")
    host_username: str = Field("opencode", validation_alias="HOST_USERNAME")
    host_password: Optional[str] = Field(None, validation_alias="HOST_PASSWORD")

    @field_validator("json_logs", "dedup_enabled", mode="before")
    @classmethod
    def parse_bool_from_env(cls, v: Any) -> bool:
        """Handle empty strings and various boolean representations from env vars."""
        if v is None or v == "":
            return False
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower().strip() in ("true", "1", "yes")
        return bool(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> str:
        """Accept log levels in any case."""
        if value is None:
            return "INFO"
        return str(value).strip().upper()

    @field_validator("dedup_protected_tools", mode="before")
    @classmethod
    def coerce_protected_tools(cls, value: Any) -> str:
        """Allow lists from YAML config files as well as env strings."""
        if value is None:
            return "[]"
        if isinstance(value, (list, tuple, set)):
            return yaml.safe_dump(sorted(str(v) for v in value), default_flow_style=True)
        return str(value)

    def get_protected_tools(self) -> List[str]:
        """Parse DEDUP_PROTECTED_TOOLS into a list of tool names."""
        raw = (self.dedup_protected_tools or "").strip()
        if not raw:
            return []
        try:
            parsed = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            logger.warning(f"Invalid DEDUP_PROTECTED_TOOLS YAML, using comma split: {e}")
            parsed = None

        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in raw.split(",") if item.strip()]

    def get_storage_root(self) -> Path:
        """Resolve the persisted store root directory."""
        if self.storage_dir:
            return Path(self.storage_dir).expanduser()
        data_home = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
        return Path(data_home) / "opencode" / "storage"

    def get_summarize_retry_config(self) -> RetryConfig:
        """Build the backoff configuration for the summarize strategy."""
        return RetryConfig(
            max_retries=self.summarize_max_attempts,
            initial_delay=self.summarize_initial_delay,
            max_delay=self.summarize_max_delay,
            backoff_factor=self.summarize_backoff_factor,
            jitter=False,
            reset_window=self.retry_reset_window,
        )

    def get_truncation_config(self) -> TruncationConfig:
        """Build the aggressive truncation configuration."""
        return TruncationConfig(
            target_token_ratio=self.truncate_target_ratio,
            chars_per_token=self.chars_per_token,
            max_truncate_attempts=self.max_truncate_attempts,
        )

    def get_deduplication_config(self) -> DeduplicationConfig:
        """Build the duplicate-pruning configuration."""
        return DeduplicationConfig(
            enabled=self.dedup_enabled,
            protected_tools=self.get_protected_tools(),
        )

    def get_recovery_config(self) -> RecoveryConfig:
        """Build the orchestrator configuration."""
        return RecoveryConfig(
            truncation=self.get_truncation_config(),
            retry=self.get_summarize_retry_config(),
            empty_content_max_attempts=self.empty_content_max_attempts,
            empty_content_retry_delay=self.empty_content_retry_delay,
            continuation_delay=self.continuation_delay,
        )


# Alias for callers that import Settings
Settings = RecoverySettings


def _load_config_file(config_file: str) -> Dict[str, Any]:
    """Read a YAML settings file keyed by field name or env var name."""
    path = Path(config_file).expanduser()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read settings file {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Settings file {path} must contain a mapping, ignoring")
        return {}
    return data


def load_settings(config_file: Optional[str] = None) -> RecoverySettings:
    """Load settings from environment variables and an optional YAML file.

    Environment variables win; the file only fills fields the environment
    leaves unset.
    """
    if not config_file:
        return RecoverySettings()

    file_values = _load_config_file(config_file)
    overrides: Dict[str, Any] = {}
    for field_name, field in RecoverySettings.model_fields.items():
        env_name = field.validation_alias
        if isinstance(env_name, str) and env_name in os.environ:
            continue
        if field_name in file_values:
            overrides[field_name] = file_values[field_name]
        elif isinstance(env_name, str) and env_name in file_values:
            overrides[field_name] = file_values[env_name]

    return RecoverySettings(**overrides)
