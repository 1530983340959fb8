"""
Module: icon_pack.config
Purpose: Configuration management for the icon pack client
Dependencies: pyyaml, pathlib
"""

from pathlib import Path
from typing import Dict, Any, Optional
import yaml

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Directory paths
OUTPUTS_DIR = PROJECT_ROOT / "outputs"
CONFIG_DIR = PROJECT_ROOT / "config"


class Config:
    """
    Configuration manager for the icon pack client.

    Holds the backend connection settings, the progress estimator timing,
    generation defaults, output layout and logging setup.

    Attributes:
        api (Dict[str, Any]): Backend URL and HTTP timeouts
        progress (Dict[str, Any]): Progress estimator cadence and durations
        generation (Dict[str, Any]): Defaults for generation requests
        output (Dict[str, Any]): Where icons and archives are written
        logging (Dict[str, Any]): Log level and format for the CLI

    Example:
        >>> config = Config()
        >>> config.api["base_url"]
        'http://localhost:8080'
        >>> config.estimate_duration(icon_count=9, generations_per_service=2)
        70.0
    """

    def __init__(self, config_file: Optional[Path] = None):
        """
        Initialize configuration with default values and optional overrides.

        Args:
            config_file: Optional path to YAML config file for overrides
        """
        self.api: Dict[str, Any] = {
            "base_url": "http://localhost:8080",
            "timeout": 30.0,  # submit, status and form requests
            "export_timeout": 120.0,  # archive creation can be slow
            "more_timeout": 180.0,
            "connect_timeout": 10.0,
        }

        # The estimator is cosmetic only, it never reflects server progress
        self.progress: Dict[str, Any] = {
            "tick_seconds": 0.1,
            "ceiling": 100.0,
            "short_duration": 40.0,
            "long_duration": 70.0,
            "more_duration": 35.0,
            "large_batch_threshold": 9,
        }

        self.generation: Dict[str, Any] = {
            "icon_count": 9,
            "generations_per_service": 1,
            "more_icon_count": 9,
        }

        self.output: Dict[str, Any] = {
            "directory": str(OUTPUTS_DIR),
            "save_icons": True,
            "image_format": "PNG",
        }

        self.logging: Dict[str, Any] = {
            "level": "WARNING",
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        }

        # Load overrides from file if provided
        if config_file and config_file.exists():
            self._load_overrides(config_file)

    def _load_overrides(self, config_file: Path) -> None:
        """
        Load configuration overrides from YAML file.

        Args:
            config_file: Path to YAML configuration file
        """
        with open(config_file, 'r') as f:
            overrides = yaml.safe_load(f)

        if overrides:
            for key, value in overrides.items():
                if hasattr(self, key) and isinstance(getattr(self, key), dict):
                    getattr(self, key).update(value)
                else:
                    setattr(self, key, value)

    def estimate_duration(
        self,
        icon_count: int,
        generations_per_service: int,
        has_reference_image: bool = False,
    ) -> float:
        """
        Pick the progress ramp duration for a request.

        Small batches get the short ramp; batches above the configured
        threshold, or requests styled from a reference image, get the long one.

        Args:
            icon_count: Icons requested per grid
            generations_per_service: Grids requested per provider
            has_reference_image: Whether the request carries a reference image

        Returns:
            Ramp duration in seconds
        """
        batch_size = icon_count * generations_per_service
        if has_reference_image or batch_size > self.progress["large_batch_threshold"]:
            return float(self.progress["long_duration"])
        return float(self.progress["short_duration"])


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Get global configuration instance (singleton pattern).

    Returns:
        Shared Config instance
    """
    global _config_instance
    if _config_instance is None:
        # Check for local config override
        local_config = CONFIG_DIR / "local.yaml"
        _config_instance = Config(local_config if local_config.exists() else None)
    return _config_instance


def load_config(config_file: Path) -> Config:
    """
    Replace the global configuration with one loaded from ``config_file``.

    Args:
        config_file: Path to a YAML override file

    Returns:
        The new shared Config instance
    """
    global _config_instance
    _config_instance = Config(config_file)
    return _config_instance
