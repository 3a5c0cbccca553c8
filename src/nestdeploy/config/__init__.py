"""Configuration management for nestdeploy."""

from .models import (
    DEFAULT_HOT_TYPES,
    DeployConfig,
    DeploymentSettings,
    PollingSettings,
    SplittingSettings,
    StagingSettings,
)
from .parser import Config, load_config
from ..utils.errors import ConfigValidationError

__all__ = [
    "DEFAULT_HOT_TYPES",
    "DeployConfig",
    "DeploymentSettings",
    "PollingSettings",
    "SplittingSettings",
    "StagingSettings",
    "Config",
    "ConfigValidationError",
    "load_config",
]
