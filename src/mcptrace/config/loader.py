"""Configuration file loader.

Handles discovery, parsing, and merging of YAML configuration files with
environment overrides.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from mcptrace.exceptions import ConfigurationError
from mcptrace.models.config import PatternConfig, TelemetryConfig

# Pattern matches ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:-]+)(?::-([^}]*))?\}")

# Default config file names in priority order
CONFIG_FILE_NAMES = ["mcptrace.yaml", ".mcptrace.yaml", "mcptrace.yml", ".mcptrace.yml"]

# Session id overrides in priority order
SESSION_ID_ENV_VARS = ["EVOLUTION_SESSION_ID", "TELEMETRY_SESSION_ID"]

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ResultsConfig(BaseModel):
    """Configuration for run record storage."""

    save: bool = True
    dir: str = "test-results"


class CLIOverrides(BaseModel):
    """CLI argument overrides for telemetry configuration.

    All fields are optional - only set values will override config file and
    environment settings.
    """

    enabled: bool | None = None
    telemetry_dir: str | None = None
    session_id: str | None = None
    agent_id: str | None = None
    generation: int | None = None
    wait_timeout_seconds: float | None = None


class FileConfig(BaseModel):
    """Schema for mcptrace.yaml configuration file."""

    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    patterns: PatternConfig = Field(default_factory=PatternConfig)
    results: ResultsConfig = Field(default_factory=ResultsConfig)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    msg = f"Environment variable {name} must be a boolean, got {raw!r}"
    raise ConfigurationError(msg)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as e:
        msg = f"Environment variable {name} must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from e


def _parse_ms(name: str, raw: str) -> float:
    """Parse a millisecond value into seconds."""
    millis = _parse_int(name, raw)
    if millis <= 0:
        msg = f"Environment variable {name} must be positive, got {raw!r}"
        raise ConfigurationError(msg)
    return millis / 1000


class ConfigLoader:
    """Load and merge configuration from files, environment and CLI arguments."""

    @staticmethod
    def discover_config_file(explicit_path: Path | None = None) -> Path | None:
        """Find configuration file in priority order.

        Args:
            explicit_path: Explicitly provided config file path.

        Returns:
            Path to config file, or None if not found.

        Raises:
            ConfigurationError: If explicit path doesn't exist.
        """
        # 1. Use explicit path if provided
        if explicit_path is not None:
            if not explicit_path.exists():
                msg = f"Configuration file not found: {explicit_path}"
                raise ConfigurationError(msg)
            return explicit_path

        # 2. Search in current directory
        cwd = Path.cwd()
        for filename in CONFIG_FILE_NAMES:
            config_path = cwd / filename
            if config_path.exists():
                return config_path

        # 3. No config file found (silent, no warning)
        return None

    @staticmethod
    def load_yaml(path: Path) -> dict[str, Any]:
        """Load and parse YAML configuration file.

        Args:
            path: Path to YAML file.

        Returns:
            Parsed configuration dictionary.

        Raises:
            ConfigurationError: If file cannot be read or parsed.
        """
        try:
            with path.open() as f:
                content = yaml.safe_load(f)
                return content if content is not None else {}
        except yaml.YAMLError as e:
            msg = f"Failed to parse configuration file {path}: {e}"
            raise ConfigurationError(msg) from e
        except OSError as e:
            msg = f"Failed to read configuration file {path}: {e}"
            raise ConfigurationError(msg) from e

    @staticmethod
    def interpolate_env_vars(value: Any) -> Any:
        """Recursively interpolate environment variables in configuration.

        Supports two syntaxes:
        - ${VAR} - Required variable, raises error if not set
        - ${VAR:-default} - Optional variable with default value

        Args:
            value: Configuration value (string, dict, list, or other).

        Returns:
            Value with environment variables interpolated.

        Raises:
            ConfigurationError: If required environment variable is not set.
        """
        if isinstance(value, str):

            def replace(match: re.Match[str]) -> str:
                var_name = match.group(1)
                default_value = match.group(2)  # None if no default specified
                env_value = os.environ.get(var_name)
                if env_value is not None:
                    return env_value
                if default_value is not None:
                    return default_value
                msg = f"Environment variable {var_name} is not set"
                raise ConfigurationError(msg)

            return ENV_VAR_PATTERN.sub(replace, value)
        elif isinstance(value, dict):
            return {k: ConfigLoader.interpolate_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [ConfigLoader.interpolate_env_vars(item) for item in value]
        return value

    @staticmethod
    def load_config(explicit_path: Path | None = None) -> FileConfig | None:
        """Discover, load, and parse configuration file.

        Args:
            explicit_path: Explicitly provided config file path.

        Returns:
            Parsed FileConfig, or None if no config file found.

        Raises:
            ConfigurationError: If config file exists but is invalid.
        """
        config_path = ConfigLoader.discover_config_file(explicit_path)
        if config_path is None:
            return None

        raw_config = ConfigLoader.load_yaml(config_path)
        interpolated = ConfigLoader.interpolate_env_vars(raw_config)

        try:
            return FileConfig.model_validate(interpolated)
        except ValidationError as e:
            msg = f"Invalid configuration in {config_path}: {e}"
            raise ConfigurationError(msg) from e

    @staticmethod
    def env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
        """Collect telemetry settings from environment variables.

        A session id override implies telemetry is enabled unless
        TELEMETRY_ENABLED says otherwise.

        Args:
            env: Environment mapping, usually ``os.environ``.

        Returns:
            TelemetryConfig field values set by the environment.

        Raises:
            ConfigurationError: If a variable has an invalid value.
        """
        values: dict[str, Any] = {}

        for name in SESSION_ID_ENV_VARS:
            if env.get(name):
                values["session_id"] = env[name]
                values["enabled"] = True
                break

        if "TELEMETRY_ENABLED" in env:
            values["enabled"] = _parse_bool("TELEMETRY_ENABLED", env["TELEMETRY_ENABLED"])
        if env.get("TELEMETRY_DIR"):
            values["telemetry_dir"] = env["TELEMETRY_DIR"]
        if env.get("TELEMETRY_AGENT_ID"):
            values["agent_id"] = env["TELEMETRY_AGENT_ID"]
        if env.get("TELEMETRY_GENERATION"):
            values["generation"] = _parse_int("TELEMETRY_GENERATION", env["TELEMETRY_GENERATION"])

        ms_settings = {
            "TELEMETRY_POLL_INTERVAL_MS": "poll_interval_seconds",
            "TELEMETRY_PROGRESS_INTERVAL_MS": "progress_interval_seconds",
            "TELEMETRY_WAIT_TIMEOUT_MS": "wait_timeout_seconds",
        }
        for name, field in ms_settings.items():
            if env.get(name):
                values[field] = _parse_ms(name, env[name])

        return values

    @staticmethod
    def resolve_telemetry_config(
        file_config: FileConfig | None,
        env: Mapping[str, str] | None = None,
        cli_overrides: CLIOverrides | None = None,
    ) -> TelemetryConfig:
        """Resolve telemetry configuration.

        Priority order (highest to lowest):
        1. CLI arguments (via cli_overrides)
        2. Environment variables
        3. Config file (telemetry:)
        4. Defaults

        Args:
            file_config: Parsed configuration file, or None.
            env: Environment mapping; defaults to ``os.environ``.
            cli_overrides: CLI argument overrides, or None.

        Returns:
            Resolved TelemetryConfig.

        Raises:
            ConfigurationError: If the merged values are invalid.
        """
        # Start with defaults or file config
        base = file_config.telemetry if file_config else TelemetryConfig()
        values = base.model_dump()

        # Apply environment
        values.update(ConfigLoader.env_overrides(os.environ if env is None else env))

        # Apply CLI overrides (highest priority)
        if cli_overrides:
            values.update(cli_overrides.model_dump(exclude_none=True))

        try:
            return TelemetryConfig.model_validate(values)
        except ValidationError as e:
            msg = f"Invalid telemetry configuration: {e}"
            raise ConfigurationError(msg) from e

    @staticmethod
    def resolve_pattern_config(
        file_config: FileConfig | None,
        *,
        cli_min_frequency: int | None = None,
        cli_confidence_threshold: float | None = None,
    ) -> PatternConfig:
        """Resolve pattern detection configuration.

        Args:
            file_config: Parsed configuration file, or None.
            cli_min_frequency: CLI minimum frequency override.
            cli_confidence_threshold: CLI confidence threshold override.

        Returns:
            Resolved PatternConfig.

        Raises:
            ConfigurationError: If an override is out of range.
        """
        # Start with defaults or file config
        values = (file_config.patterns if file_config else PatternConfig()).model_dump()

        # Apply CLI overrides
        if cli_min_frequency is not None:
            values["min_frequency"] = cli_min_frequency
        if cli_confidence_threshold is not None:
            values["confidence_threshold"] = cli_confidence_threshold

        try:
            return PatternConfig.model_validate(values)
        except ValidationError as e:
            msg = f"Invalid pattern configuration: {e}"
            raise ConfigurationError(msg) from e

    @staticmethod
    def resolve_results_config(
        file_config: FileConfig | None,
        *,
        cli_save: bool | None = None,
        cli_dir: str | None = None,
    ) -> ResultsConfig:
        """Resolve run record storage configuration.

        Args:
            file_config: Parsed configuration file, or None.
            cli_save: CLI save results override.
            cli_dir: CLI results directory override.

        Returns:
            Resolved ResultsConfig.
        """
        # Start with defaults
        save = True
        results_dir = "test-results"

        # Apply file config
        if file_config:
            save = file_config.results.save
            results_dir = file_config.results.dir

        # Apply CLI overrides
        if cli_save is not None:
            save = cli_save
        if cli_dir is not None:
            results_dir = cli_dir

        return ResultsConfig(save=save, dir=results_dir)


def load_config(explicit_path: Path | None = None) -> FileConfig | None:
    """Convenience function to load configuration.

    Args:
        explicit_path: Explicitly provided config file path.

    Returns:
        Parsed FileConfig, or None if no config file found.
    """
    return ConfigLoader.load_config(explicit_path)
