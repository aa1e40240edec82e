"""Tests for configuration file loader."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mcptrace.config import CLIOverrides, ConfigLoader, FileConfig, ResultsConfig, load_config
from mcptrace.exceptions import ConfigurationError
from mcptrace.models.config import PatternConfig, TelemetryConfig


class TestConfigFileDiscovery:
    """Tests for config file discovery."""

    def test_discover_explicit_path(self, tmp_path: Path) -> None:
        """Uses provided explicit path."""
        config_file = tmp_path / "custom-config.yaml"
        config_file.write_text("telemetry:\n  enabled: true\n")

        result = ConfigLoader.discover_config_file(config_file)
        assert result == config_file

    def test_discover_explicit_path_not_found_raises(self, tmp_path: Path) -> None:
        """Raises ConfigurationError for missing explicit path."""
        missing_file = tmp_path / "missing.yaml"

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader.discover_config_file(missing_file)
        assert "not found" in str(exc_info.value)

    def test_discover_mcptrace_yaml(self, tmp_path: Path) -> None:
        """Finds mcptrace.yaml in current directory."""
        config_file = tmp_path / "mcptrace.yaml"
        config_file.write_text("telemetry:\n  enabled: true\n")

        with patch.object(Path, "cwd", return_value=tmp_path):
            result = ConfigLoader.discover_config_file()
        assert result == config_file

    def test_discover_priority_plain_over_dot(self, tmp_path: Path) -> None:
        """mcptrace.yaml takes priority over .mcptrace.yaml."""
        (tmp_path / "mcptrace.yaml").write_text("telemetry: {}\n")
        (tmp_path / ".mcptrace.yaml").write_text("telemetry: {}\n")

        with patch.object(Path, "cwd", return_value=tmp_path):
            result = ConfigLoader.discover_config_file()
        assert result == tmp_path / "mcptrace.yaml"

    def test_discover_none_when_no_file(self, tmp_path: Path) -> None:
        """Returns None when no config file found (silent)."""
        with patch.object(Path, "cwd", return_value=tmp_path):
            result = ConfigLoader.discover_config_file()
        assert result is None


class TestYamlLoading:
    """Tests for YAML file loading."""

    def test_load_empty_yaml_returns_empty_dict(self, tmp_path: Path) -> None:
        """Empty YAML file returns empty dict."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert ConfigLoader.load_yaml(config_file) == {}

    def test_load_invalid_yaml_raises(self, tmp_path: Path) -> None:
        """Invalid YAML raises ConfigurationError."""
        config_file = tmp_path / "invalid.yaml"
        config_file.write_text("invalid: yaml: content:")

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader.load_yaml(config_file)
        assert "Failed to parse" in str(exc_info.value)

    def test_load_missing_file_raises(self, tmp_path: Path) -> None:
        """Missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader.load_yaml(tmp_path / "missing.yaml")
        assert "Failed to read" in str(exc_info.value)


class TestEnvironmentInterpolation:
    """Tests for environment variable interpolation."""

    def test_interpolate_simple_var(self) -> None:
        """${VAR} is replaced with environment value."""
        with patch.dict(os.environ, {"TRACE_DIR": "/var/trace"}):
            result = ConfigLoader.interpolate_env_vars("${TRACE_DIR}")
        assert result == "/var/trace"

    def test_interpolate_with_default_uses_default(self) -> None:
        """${VAR:-default} uses default when var is not set."""
        with patch.dict(os.environ, {}, clear=True):
            result = ConfigLoader.interpolate_env_vars("${MISSING_VAR:-fallback}")
        assert result == "fallback"

    def test_interpolate_nested(self) -> None:
        """Interpolates variables in nested dicts and lists."""
        with patch.dict(os.environ, {"A": "one", "B": "two"}):
            result = ConfigLoader.interpolate_env_vars({"x": {"y": "${A}"}, "z": ["${B}", 3]})
        assert result == {"x": {"y": "one"}, "z": ["two", 3]}

    def test_interpolate_missing_var_raises(self) -> None:
        """Raises ConfigurationError for undefined variable without default."""
        with patch.dict(os.environ, {}, clear=True), pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader.interpolate_env_vars("${UNDEFINED_VAR}")
        assert "UNDEFINED_VAR" in str(exc_info.value)
        assert "not set" in str(exc_info.value)

    def test_interpolate_non_string_types_unchanged(self) -> None:
        """Non-string types pass through unchanged."""
        assert ConfigLoader.interpolate_env_vars(42) == 42
        assert ConfigLoader.interpolate_env_vars(True) is True
        assert ConfigLoader.interpolate_env_vars(None) is None


class TestLoadConfig:
    """Tests for full config loading."""

    def test_load_full_config(self, tmp_path: Path) -> None:
        """Parses every section of the config file."""
        config_file = tmp_path / "mcptrace.yaml"
        config_file.write_text(
            "telemetry:\n"
            "  telemetry_dir: /data/telemetry\n"
            "  poll_interval_seconds: 0.25\n"
            "  max_attempts: 3\n"
            "patterns:\n"
            "  min_frequency: 3\n"
            "  expected_tools:\n"
            "    export: [export_pdf]\n"
            "results:\n"
            "  dir: my-results\n"
        )

        config = load_config(config_file)

        assert config is not None
        assert config.telemetry.telemetry_dir == "/data/telemetry"
        assert config.telemetry.poll_interval_seconds == 0.25
        assert config.telemetry.max_attempts == 3
        assert config.patterns.min_frequency == 3
        assert config.patterns.expected_tools == {"export": ["export_pdf"]}
        assert config.results.dir == "my-results"

    def test_load_interpolates_env(self, tmp_path: Path) -> None:
        """Environment variables are substituted before validation."""
        config_file = tmp_path / "mcptrace.yaml"
        config_file.write_text("telemetry:\n  telemetry_dir: ${TRACE_ROOT:-/tmp/t}/logs\n")

        with patch.dict(os.environ, {"TRACE_ROOT": "/srv"}):
            config = ConfigLoader.load_config(config_file)

        assert config is not None
        assert config.telemetry.telemetry_dir == "/srv/logs"

    def test_load_invalid_values_raise(self, tmp_path: Path) -> None:
        """Schema violations surface as ConfigurationError."""
        config_file = tmp_path / "mcptrace.yaml"
        config_file.write_text("telemetry:\n  poll_interval_seconds: -1\n")

        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader.load_config(config_file)
        assert "Invalid configuration" in str(exc_info.value)

    def test_no_config_file(self, tmp_path: Path) -> None:
        with patch.object(Path, "cwd", return_value=tmp_path):
            assert ConfigLoader.load_config() is None


class TestEnvironmentOverrides:
    """Tests for telemetry settings from the environment."""

    def test_session_id_enables_telemetry(self) -> None:
        """A session id from the driver implies telemetry is on."""
        values = ConfigLoader.env_overrides({"TELEMETRY_SESSION_ID": "run-1"})
        assert values == {"session_id": "run-1", "enabled": True}

    def test_evolution_session_id_wins(self) -> None:
        values = ConfigLoader.env_overrides(
            {"EVOLUTION_SESSION_ID": "evo", "TELEMETRY_SESSION_ID": "plain"}
        )
        assert values["session_id"] == "evo"

    def test_explicit_enabled_flag_wins(self) -> None:
        values = ConfigLoader.env_overrides(
            {"TELEMETRY_SESSION_ID": "run-1", "TELEMETRY_ENABLED": "false"}
        )
        assert values["enabled"] is False

    def test_milliseconds_converted(self) -> None:
        values = ConfigLoader.env_overrides(
            {"TELEMETRY_POLL_INTERVAL_MS": "250", "TELEMETRY_WAIT_TIMEOUT_MS": "60000"}
        )
        assert values["poll_interval_seconds"] == 0.25
        assert values["wait_timeout_seconds"] == 60.0

    def test_identity_settings(self) -> None:
        values = ConfigLoader.env_overrides(
            {"TELEMETRY_DIR": "/x", "TELEMETRY_AGENT_ID": "agent-7", "TELEMETRY_GENERATION": "4"}
        )
        assert values == {"telemetry_dir": "/x", "agent_id": "agent-7", "generation": 4}

    @pytest.mark.parametrize(
        "env",
        [
            {"TELEMETRY_ENABLED": "maybe"},
            {"TELEMETRY_GENERATION": "two"},
            {"TELEMETRY_POLL_INTERVAL_MS": "0"},
            {"TELEMETRY_WAIT_TIMEOUT_MS": "-5"},
        ],
    )
    def test_invalid_values_raise(self, env: dict[str, str]) -> None:
        with pytest.raises(ConfigurationError):
            ConfigLoader.env_overrides(env)


class TestResolveTelemetryConfig:
    """Tests for telemetry configuration resolution."""

    def test_defaults(self) -> None:
        config = ConfigLoader.resolve_telemetry_config(None, env={})
        assert config == TelemetryConfig()
        assert config.enabled is True

    def test_file_config_used(self) -> None:
        file_config = FileConfig(telemetry=TelemetryConfig(telemetry_dir="/file"))
        config = ConfigLoader.resolve_telemetry_config(file_config, env={})
        assert config.telemetry_dir == "/file"

    def test_env_overrides_file(self) -> None:
        file_config = FileConfig(telemetry=TelemetryConfig(telemetry_dir="/file"))
        config = ConfigLoader.resolve_telemetry_config(file_config, env={"TELEMETRY_DIR": "/env"})
        assert config.telemetry_dir == "/env"

    def test_cli_overrides_env(self) -> None:
        """CLI arguments have the highest priority."""
        config = ConfigLoader.resolve_telemetry_config(
            None,
            env={"TELEMETRY_DIR": "/env", "TELEMETRY_SESSION_ID": "env-session"},
            cli_overrides=CLIOverrides(telemetry_dir="/cli", wait_timeout_seconds=5.0),
        )
        assert config.telemetry_dir == "/cli"
        assert config.session_id == "env-session"
        assert config.wait_timeout_seconds == 5.0

    def test_invalid_cli_value_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            ConfigLoader.resolve_telemetry_config(
                None, env={}, cli_overrides=CLIOverrides(generation=-1)
            )


class TestResolvePatternConfig:
    """Tests for pattern configuration resolution."""

    def test_defaults(self) -> None:
        assert ConfigLoader.resolve_pattern_config(None) == PatternConfig()

    def test_cli_overrides_file(self) -> None:
        file_config = FileConfig(patterns=PatternConfig(min_frequency=4, confidence_threshold=0.8))
        config = ConfigLoader.resolve_pattern_config(file_config, cli_min_frequency=2)
        assert config.min_frequency == 2
        assert config.confidence_threshold == 0.8

    def test_out_of_range_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            ConfigLoader.resolve_pattern_config(None, cli_confidence_threshold=1.5)


class TestResolveResultsConfig:
    """Tests for results configuration resolution."""

    def test_defaults(self) -> None:
        assert ConfigLoader.resolve_results_config(None) == ResultsConfig()

    def test_cli_overrides_file(self) -> None:
        file_config = FileConfig(results=ResultsConfig(save=False, dir="from-file"))
        config = ConfigLoader.resolve_results_config(file_config, cli_dir="from-cli")
        assert config.save is False
        assert config.dir == "from-cli"
