"""
Configuration service for loading and validating key store settings.
"""
import os
import re
import configparser
from typing import Optional, Dict, Any, List
import logging

from ..models.config import (
    Config, AliasConfig, ConfigValidationError, ConfigValidationResult,
    STATIC_PROVIDER, RELOADABLE_PROVIDER
)
from ..models.errors import ConfigurationError
from .alias_registry import AliasRegistry


ALIAS_SECTION_PREFIX = "alias:"


class ConfigService:
    """Service for loading and validating key store configuration."""

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._config = None
        if config_path:
            self._config = self.load_config(config_path)

    def get_config(self) -> Config:
        """
        Get the loaded configuration.

        Raises:
            ValueError: If no configuration has been loaded
        """
        if self._config is None:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    def load_config(self, config_path: str) -> Config:
        """
        Load configuration from a property file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid or has validation errors
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config_data, alias_sections = self._load_config_file(config_path)
        config = self._create_config_from_data(config_data, alias_sections)

        validation_result = self.validate_config(config)

        if validation_result.has_errors():
            error_summary = validation_result.get_error_summary()
            raise ValueError(f"Configuration validation failed:\n{error_summary}")

        if validation_result.has_warnings():
            warning_summary = validation_result.get_error_summary()
            self.logger.warning(f"Configuration warnings:\n{warning_summary}")

        self._config = config
        return config

    def _load_config_file(self, config_path: str):
        """Load flat settings and per-alias sections from file."""
        config_parser = configparser.ConfigParser(inline_comment_prefixes=(';', '#'))

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        config_data: Dict[str, Any] = {}
        alias_sections: Dict[str, Dict[str, str]] = {}

        for section in config_parser.sections():
            if section.startswith(ALIAS_SECTION_PREFIX):
                alias = section[len(ALIAS_SECTION_PREFIX):].strip()
                alias_sections[alias] = {
                    key: value for key, value in config_parser.items(section)
                    if key not in config_parser.defaults()
                }
                continue
            for key, value in config_parser.items(section):
                config_data[f"{section}.{key}"] = value

        for key, value in config_parser.defaults().items():
            if key not in config_data:
                config_data[key] = value

        return config_data, alias_sections

    def _create_config_from_data(self, config_data: Dict[str, Any],
                                 alias_sections: Dict[str, Dict[str, str]]) -> Config:
        """Create Config object from configuration data."""
        config_mapping = {
            # Key store settings
            "keystore.provider": ("provider", str),
            "provider": ("provider", str),
            "keystore.refresh_interval": ("refresh_interval_seconds", int),
            "refresh_interval": ("refresh_interval_seconds", int),

            # Management API settings
            "api.enabled": ("enable_api", bool),
            "enable_api": ("enable_api", bool),
            "api.host": ("api_host", str),
            "api_host": ("api_host", str),
            "api.port": ("api_port", int),
            "api_port": ("api_port", int),

            # Application settings
            "app.log_level": ("log_level", str),
            "log_level": ("log_level", str),
            "app.log_file_path": ("log_file_path", str),
            "log_file_path": ("log_file_path", str),
            "app.json_logs": ("json_logs", bool),
            "json_logs": ("json_logs", bool),
        }

        config_kwargs = {}

        for config_key, raw_value in config_data.items():
            if config_key in config_mapping:
                field_name, field_type = config_mapping[config_key]
                config_kwargs[field_name] = self._convert(config_key, raw_value, field_type)

        aliases = []
        for alias, settings in alias_sections.items():
            interval = settings.get("refresh_interval")
            aliases.append(AliasConfig(
                alias=alias,
                source_paths=self._parse_paths(settings.get("paths", "")),
                refresh_interval_seconds=(
                    self._convert(f"alias:{alias}.refresh_interval", interval, int)
                    if interval not in (None, "") else None
                )
            ))
        config_kwargs["aliases"] = aliases

        return Config(**config_kwargs)

    def _convert(self, config_key: str, raw_value: Any, field_type: type) -> Any:
        try:
            if field_type == bool:
                return self._parse_bool(raw_value)
            elif field_type == int:
                return int(raw_value)
            return str(raw_value) if raw_value is not None else None
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid value for {config_key}: {raw_value} ({e})")

    def _parse_bool(self, value: Any) -> bool:
        """Parse boolean value from string."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on", "enabled")
        return bool(value)

    @staticmethod
    def _parse_paths(value: str) -> List[str]:
        """Split a comma or newline separated path list, keeping order."""
        return [p.strip() for p in re.split(r'[,\n]', value or "") if p.strip()]

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Args:
            config: Configuration object to validate

        Returns:
            ConfigValidationResult with validation results
        """
        errors = []
        warnings = []

        if not config.aliases:
            errors.append(ConfigValidationError(
                "aliases",
                "At least one [alias:<name>] section is required"
            ))

        for alias_config in config.aliases:
            field_name = f"alias:{alias_config.alias}"
            interval = alias_config.effective_refresh_interval(config.refresh_interval_seconds)

            try:
                AliasRegistry.validate(alias_config.alias, alias_config.source_paths, interval)
            except ConfigurationError as e:
                errors.append(ConfigValidationError(field_name, str(e)))
                continue

            for path in alias_config.source_paths:
                if not os.path.exists(path):
                    warnings.append(ConfigValidationError(
                        field_name,
                        f"Source file does not exist yet: {path}",
                        "warning"
                    ))

            if config.provider == RELOADABLE_PROVIDER and interval == 1:
                warnings.append(ConfigValidationError(
                    field_name,
                    "Refresh interval of 1 second may reload files that are still being written",
                    "warning"
                ))

            if config.provider == STATIC_PROVIDER and interval > 0:
                warnings.append(ConfigValidationError(
                    field_name,
                    f"Refresh interval is ignored by the '{STATIC_PROVIDER}' provider",
                    "warning"
                ))

        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        all_issues = errors + warnings
        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=all_issues,
            warnings=[]
        )

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# PEM Key Store Configuration File

[keystore]
# simplepem parses once, simplepemreload polls for changes
provider = simplepemreload
refresh_interval = 60

[alias:server]
paths = certs/chain.pem, certs/key.pem

[api]
enabled = false
host = 127.0.0.1
port = 8443

[app]
log_level = INFO
log_file_path = logs/simplepem.log
json_logs = true
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
