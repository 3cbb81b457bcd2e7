"""
Configuration data models for the PEM key store.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence


STATIC_PROVIDER = "simplepem"
RELOADABLE_PROVIDER = "simplepemreload"
PROVIDER_NAMES = (STATIC_PROVIDER, RELOADABLE_PROVIDER)


@dataclass
class AliasConfig:
    """Source files for one alias, in concatenation order."""
    alias: str
    source_paths: List[str] = field(default_factory=list)
    refresh_interval_seconds: Optional[int] = None

    def effective_refresh_interval(self, default: int) -> int:
        if self.refresh_interval_seconds is None:
            return default
        return self.refresh_interval_seconds


@dataclass
class Config:
    """Main configuration class containing all key store settings."""

    # Key store settings
    provider: str = RELOADABLE_PROVIDER
    refresh_interval_seconds: int = 0
    aliases: List[AliasConfig] = field(default_factory=list)

    # Management API settings
    enable_api: bool = False
    api_host: str = "127.0.0.1"
    api_port: int = 8443

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = "logs/simplepem.log"
    json_logs: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if self.provider not in PROVIDER_NAMES:
            raise ValueError(f"provider must be one of: {', '.join(PROVIDER_NAMES)}")

        if not isinstance(self.refresh_interval_seconds, int) or self.refresh_interval_seconds < 0:
            raise ValueError("refresh_interval_seconds must be a non-negative integer")

        for alias_config in self.aliases:
            interval = alias_config.refresh_interval_seconds
            if interval is not None and (not isinstance(interval, int) or interval < 0):
                raise ValueError(
                    f"refresh_interval_seconds for alias '{alias_config.alias}' "
                    "must be a non-negative integer"
                )

        if not isinstance(self.api_port, int) or not (1 <= self.api_port <= 65535):
            raise ValueError("api_port must be an integer between 1 and 65535")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")

    def add_certificate(self, alias: str, paths: Sequence[str],
                        refresh_interval: Optional[int] = None) -> 'Config':
        """Add (or replace) an alias backed by ``paths``; returns self for chaining."""
        self.aliases = [a for a in self.aliases if a.alias != alias]
        self.aliases.append(AliasConfig(alias, list(paths), refresh_interval))
        self._validate_types()
        return self

    def with_refresh_interval(self, seconds: int) -> 'Config':
        """Set the default refresh interval; returns self for chaining."""
        self.refresh_interval_seconds = seconds
        self._validate_types()
        return self

    def get_alias(self, alias: str) -> Optional[AliasConfig]:
        for alias_config in self.aliases:
            if alias_config.alias == alias:
                return alias_config
        return None


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: list[ConfigValidationError]
    warnings: list[ConfigValidationError]

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if there are any validation warnings."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append("Configuration Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines) if lines else "Configuration is valid"
