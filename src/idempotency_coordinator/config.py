"""Configuration module for the idempotency coordinator.

This module provides the IdempotencyConfig class which controls which requests
are eligible for idempotency, how long cached outcomes remain replayable, how
often expired records are swept, and which storage backend is used.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.enabled_methods
        ['POST', 'PUT']
        >>> config.ttl_seconds
        86400

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     storage_adapter="sql",
        ...     database_url="postgresql+asyncpg://payments@db/payments",
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_STORAGE_ADAPTER'] = 'sql'
        >>> os.environ['IDEMPOTENCY_CLEANUP_INTERVAL_SECONDS'] = '600'
        >>> config = IdempotencyConfig.from_env()
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# Valid HTTP methods
VALID_HTTP_METHODS = {
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
}

# Widths of the idempotency_key and owner storage columns
MAX_STORED_KEY_LENGTH = 255
MAX_STORED_OWNER_LENGTH = 255

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class IdempotencyConfig(BaseModel):
    """Configuration for the idempotency coordinator.

    Attributes:
        enabled_methods: HTTP methods eligible for idempotency. Requests with
            any other method always execute directly. Default is POST and PUT.
        header_name: Request header carrying the idempotency key. Matched
            case-insensitively. Default is "Idempotency-Key".
        ttl_seconds: How long a cached outcome stays replayable, counted from
            creation. Fixed for the deployment, never chosen per request.
            Must be between 1 and 604800 (7 days). Default is 86400 (24 hours).
        cleanup_interval_seconds: Interval of the background expiry sweep.
            Must be between 1 and 86400. Default is 3600 (1 hour).
        normalize_key_case: Lower-case keys at the HTTP boundary so that
            "ABC" and "abc" address the same slot. Default is True.
        max_key_length: Keys longer than this are ineligible. Must be between
            1 and 255 (the storage column width). Default is 255.
        storage_adapter: Storage backend, "memory" or "sql". Default is "memory".
        database_url: SQLAlchemy async URL used by the "sql" adapter.
        log_level: Minimum level of emitted log events. Default is "INFO".
        log_json: Render log events as JSON lines (console output when
            False). Default is True.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    enabled_methods: list[str] | str = Field(
        default=["POST", "PUT"],
        description="HTTP methods eligible for idempotency",
    )
    header_name: str = Field(
        default="Idempotency-Key",
        description="Request header carrying the idempotency key",
        min_length=1,
    )
    ttl_seconds: int = Field(
        default=86400,
        description="Time-to-live in seconds for cached outcomes (1-604800)",
    )
    cleanup_interval_seconds: int = Field(
        default=3600,
        description="Interval in seconds between expiry sweeps (1-86400)",
    )
    normalize_key_case: bool = Field(
        default=True,
        description="Lower-case idempotency keys before use",
    )
    max_key_length: int = Field(
        default=MAX_STORED_KEY_LENGTH,
        description="Maximum accepted idempotency key length (1-255)",
    )
    storage_adapter: Literal["memory", "sql"] = Field(
        default="memory",
        description="Type of storage backend for idempotency records",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./idempotency.db",
        description="SQLAlchemy async database URL for the sql adapter",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    log_json: bool = Field(
        default=True,
        description="Emit JSON log lines instead of console output",
    )

    model_config = {"frozen": True}

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def validate_enabled_methods(cls, v: Any) -> list[str]:
        """Validate and normalize enabled HTTP methods.

        Args:
            v: List of HTTP method strings or comma-separated string.

        Returns:
            List of uppercase, validated HTTP methods.

        Raises:
            ValueError: If any method is not a valid HTTP method.

        Example:
            >>> IdempotencyConfig(enabled_methods="post, put").enabled_methods
            ['POST', 'PUT']
        """
        if isinstance(v, str):
            v = [method.strip() for method in v.split(",") if method.strip()]

        if not isinstance(v, list):
            raise ValueError("enabled_methods must be a list or comma-separated string")

        methods = [method.upper() for method in v]

        invalid_methods = set(methods) - VALID_HTTP_METHODS
        if invalid_methods:
            raise ValueError(
                f"Invalid HTTP methods: {', '.join(sorted(invalid_methods))}. "
                f"Valid methods are: {', '.join(sorted(VALID_HTTP_METHODS))}"
            )

        return methods

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("header_name")
    @classmethod
    def validate_header_name(cls, v: str) -> str:
        """Reject header names containing whitespace or separators."""
        name = v.strip()
        if not name or any(c.isspace() or c in ":;," for c in name):
            raise ValueError(f"header_name must be a single HTTP header token, got {v!r}")
        return name

    @field_validator("ttl_seconds")
    @classmethod
    def validate_ttl_seconds(cls, v: int) -> int:
        """Validate TTL is within acceptable range.

        Raises:
            ValueError: If TTL is not between 1 and 604800 (7 days).
        """
        if not (1 <= v <= 604800):
            raise ValueError(f"ttl_seconds must be between 1 and 604800 (7 days), got {v}")
        return v

    @field_validator("cleanup_interval_seconds")
    @classmethod
    def validate_cleanup_interval_seconds(cls, v: int) -> int:
        """Validate the sweep interval is within acceptable range.

        Raises:
            ValueError: If the interval is not between 1 and 86400 (1 day).
        """
        if not (1 <= v <= 86400):
            raise ValueError(
                f"cleanup_interval_seconds must be between 1 and 86400 (1 day), got {v}"
            )
        return v

    @field_validator("max_key_length")
    @classmethod
    def validate_max_key_length(cls, v: int) -> int:
        if not (1 <= v <= MAX_STORED_KEY_LENGTH):
            raise ValueError(
                f"max_key_length must be between 1 and {MAX_STORED_KEY_LENGTH}, got {v}"
            )
        return v

    def is_method_enabled(self, method: str) -> bool:
        """Return True if requests with ``method`` are eligible for idempotency."""
        return method.upper() in self.enabled_methods

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are the uppercase field names with the prefix, for
        example ``IDEMPOTENCY_TTL_SECONDS``. Missing variables use defaults.

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            IdempotencyConfig instance populated from environment variables.

        Raises:
            ValueError: If a boolean or integer variable cannot be parsed.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "enabled_methods": list,
            "header_name": str,
            "ttl_seconds": int,
            "cleanup_interval_seconds": int,
            "normalize_key_case": bool,
            "max_key_length": int,
            "storage_adapter": str,
            "database_url": str,
            "log_level": str,
            "log_json": bool,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is None:
                continue

            if field_type is int:
                config_dict[field_name] = int(env_value)
            elif field_type is bool:
                config_dict[field_name] = _parse_bool(env_var, env_value)
            else:
                # Lists stay comma-separated strings; the validator splits them
                config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {value!r}")
