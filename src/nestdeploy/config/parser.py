"""YAML configuration loader for nestdeploy."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from nestdeploy.config.models import DeployConfig
from nestdeploy.utils.errors import ConfigValidationError
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "nestdeploy.yaml"


class Config:
    """Configuration manager for nestdeploy."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to the YAML configuration file. When omitted,
                ``nestdeploy.yaml`` in the working directory is used if it
                exists, otherwise defaults apply.
        """
        self.explicit = config_path is not None
        self.config_path = Path(config_path or DEFAULT_CONFIG_FILE)
        self.data: Dict[str, Any] = {}
        self.settings: DeployConfig = DeployConfig()

    def load(self) -> "Config":
        """Load and validate configuration.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If the file is missing (when given
                explicitly), unparseable or invalid
        """
        if not self.config_path.exists():
            if self.explicit:
                raise ConfigValidationError(f"Configuration file not found: {self.config_path}")
            logger.debug("No configuration file found, using defaults")
            return self

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}", cause=e) from e

        if not isinstance(self.data, dict):
            raise ConfigValidationError(
                f"Configuration {self.config_path} must be a mapping at the top level"
            )

        errors = self.validate()
        if errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors,
            )

        logger.info(f"Loaded configuration from {self.config_path}")
        return self

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        try:
            self.settings = DeployConfig(**self.data)
        except ValidationError as e:
            return [{"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()]
        return []


def load_config(config_path: Optional[Union[str, Path]] = None) -> DeployConfig:
    """Load configuration settings, falling back to defaults."""
    return Config(config_path).load().settings
