"""
Configuration Loader for Syndication Junction.

Loads and validates runtime configuration from YAML files.
"""
import os
import logging
from pathlib import Path
from typing import Dict, Any, List, Tuple
import yaml
from urllib.parse import urlparse

from syndication_junction.models import AggregatorConfig, LogLevel, TransformFailurePolicy

logger = logging.getLogger(__name__)

INT_FIELDS = ("timeout", "max_retries", "max_workers", "media_max_workers", "transform_timeout")


class ConfigError(Exception):
    """Configuration error."""

    pass


class ConfigLoader:
    """
    Loads and validates runtime configuration.

    Supports:
    - Loading from YAML file
    - Environment variable overrides (STATE_FILE, MEDIA_DIR, LOG_LEVEL)
    - Validation of values and source URLs
    """

    def __init__(self, config_path: Path):
        """
        Initialize config loader.

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path)

    def load(self) -> AggregatorConfig:
        """
        Load and validate configuration.

        Returns:
            AggregatorConfig object

        Raises:
            ConfigError: If config is invalid or missing
        """
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML: {e}")

        if not config_data:
            raise ConfigError("Configuration file is empty")

        if not isinstance(config_data, dict):
            raise ConfigError("Configuration must be a mapping")

        try:
            return self.parse(config_data)
        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}")

    def parse(self, data: Dict[str, Any]) -> AggregatorConfig:
        """
        Parse and validate configuration data.

        Also used without a file: parse({}) gives the defaults with
        environment overrides applied.

        Args:
            data: Parsed YAML data

        Returns:
            AggregatorConfig object

        Raises:
            ConfigError: If validation fails
        """
        defaults = AggregatorConfig()

        state_file = os.getenv("STATE_FILE", data.get("state_file", defaults.state_file))
        media_dir = os.getenv("MEDIA_DIR", data.get("media_dir", defaults.media_dir))

        log_level_str = str(os.getenv("LOG_LEVEL", data.get("log_level", "info"))).lower()
        try:
            log_level = LogLevel(log_level_str)
        except ValueError:
            valid_levels = [level.value for level in LogLevel]
            raise ConfigError(f"Invalid log_level '{log_level_str}'. Valid values: {valid_levels}")

        policy_str = str(data.get("transform_failure_policy", defaults.transform_failure_policy.value)).lower()
        try:
            transform_failure_policy = TransformFailurePolicy(policy_str)
        except ValueError:
            valid_policies = [policy.value for policy in TransformFailurePolicy]
            raise ConfigError(
                f"Invalid transform_failure_policy '{policy_str}'. Valid values: {valid_policies}"
            )

        numbers = {}
        for name in INT_FIELDS:
            value = data.get(name, getattr(defaults, name))
            if type(value) is not int or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got: {value}")
            numbers[name] = value

        sources = self._parse_sources(data.get("sources") or [])

        logger.info(
            f"Loaded configuration: state file {state_file}, {len(sources)} default sources"
        )

        return AggregatorConfig(
            state_file=state_file,
            media_dir=media_dir,
            user_agent=data.get("user_agent"),
            log_level=log_level,
            transform_failure_policy=transform_failure_policy,
            sources=sources,
            **numbers,
        )

    def _parse_sources(self, sources: List[Any]) -> Tuple[str, ...]:
        """
        Validate the default source list.

        Raises:
            ConfigError: If it is not a list of http(s) URLs
        """
        if not isinstance(sources, list):
            raise ConfigError("sources must be a list of feed URLs")

        for url in sources:
            if not isinstance(url, str) or not self._is_valid_url(url):
                raise ConfigError(f"Invalid URL in sources: {url}")

        return tuple(sources)

    def _is_valid_url(self, url: str) -> bool:
        """
        Validate URL format.

        Only allows http and https schemes.

        Args:
            url: URL to validate

        Returns:
            True if valid HTTP/HTTPS URL, False otherwise
        """
        try:
            result = urlparse(url)
            if result.scheme not in ("http", "https"):
                logger.warning(f"URL has invalid scheme '{result.scheme}': {url}")
                return False
            return bool(result.netloc)
        except ValueError as e:
            logger.warning(f"Failed to parse URL '{url}': {e}")
            return False
