"""Configuration file support for mcptrace."""

from mcptrace.config.loader import (
    CLIOverrides,
    ConfigLoader,
    FileConfig,
    ResultsConfig,
    load_config,
)

__all__ = [
    "CLIOverrides",
    "ConfigLoader",
    "FileConfig",
    "ResultsConfig",
    "load_config",
]
