"""Unit tests for configuration module.

Tests the IdempotencyConfig class including validation, factory methods,
and immutability.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from idempotency_coordinator.config import VALID_HTTP_METHODS, IdempotencyConfig


class TestIdempotencyConfigDefaults:
    """Tests for default configuration values."""

    def test_default_values(self) -> None:
        """Test that default values are set correctly."""
        config = IdempotencyConfig()

        assert config.enabled_methods == ["POST", "PUT"]
        assert config.header_name == "Idempotency-Key"
        assert config.ttl_seconds == 86400
        assert config.cleanup_interval_seconds == 3600
        assert config.normalize_key_case is True
        assert config.max_key_length == 255
        assert config.storage_adapter == "memory"
        assert config.database_url.startswith("sqlite+aiosqlite://")


class TestEnabledMethodsValidation:
    """Tests for enabled_methods field validation."""

    def test_enabled_methods_uppercase_conversion(self) -> None:
        config = IdempotencyConfig(enabled_methods=["post", "put", "patch"])
        assert config.enabled_methods == ["POST", "PUT", "PATCH"]

    def test_enabled_methods_comma_separated_string(self) -> None:
        config = IdempotencyConfig(enabled_methods="post, put")
        assert config.enabled_methods == ["POST", "PUT"]

    def test_enabled_methods_invalid_method(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            IdempotencyConfig(enabled_methods=["POST", "FETCH"])
        assert "Invalid HTTP methods" in str(exc_info.value)

    def test_enabled_methods_rejects_non_list(self) -> None:
        with pytest.raises(ValidationError):
            IdempotencyConfig(enabled_methods=42)

    def test_is_method_enabled_case_insensitive(self) -> None:
        config = IdempotencyConfig()
        assert config.is_method_enabled("post")
        assert config.is_method_enabled("PUT")
        assert not config.is_method_enabled("GET")
        assert not config.is_method_enabled("DELETE")

    @given(methods=st.lists(st.sampled_from(sorted(VALID_HTTP_METHODS)), min_size=1))
    def test_valid_methods_always_accepted(self, methods: list[str]) -> None:
        config = IdempotencyConfig(enabled_methods=[m.lower() for m in methods])
        assert config.enabled_methods == methods


class TestHeaderNameValidation:
    """Tests for header_name validation."""

    def test_custom_header_name(self) -> None:
        config = IdempotencyConfig(header_name="X-Request-Key")
        assert config.header_name == "X-Request-Key"

    @pytest.mark.parametrize("name", ["", "Idempotency Key", "Key:Value", "a,b"])
    def test_invalid_header_names(self, name: str) -> None:
        with pytest.raises(ValidationError):
            IdempotencyConfig(header_name=name)


class TestRangeValidation:
    """Tests for numeric bounds."""

    @pytest.mark.parametrize("ttl", [1, 3600, 604800])
    def test_ttl_boundaries_accepted(self, ttl: int) -> None:
        assert IdempotencyConfig(ttl_seconds=ttl).ttl_seconds == ttl

    @pytest.mark.parametrize("ttl", [0, -1, 604801])
    def test_ttl_out_of_range(self, ttl: int) -> None:
        with pytest.raises(ValidationError) as exc_info:
            IdempotencyConfig(ttl_seconds=ttl)
        assert "ttl_seconds" in str(exc_info.value)

    @pytest.mark.parametrize("interval", [0, 86401])
    def test_cleanup_interval_out_of_range(self, interval: int) -> None:
        with pytest.raises(ValidationError):
            IdempotencyConfig(cleanup_interval_seconds=interval)

    @pytest.mark.parametrize("length", [0, 256])
    def test_max_key_length_out_of_range(self, length: int) -> None:
        with pytest.raises(ValidationError):
            IdempotencyConfig(max_key_length=length)

    def test_storage_adapter_literal(self) -> None:
        with pytest.raises(ValidationError):
            IdempotencyConfig(storage_adapter="redis")

    @given(ttl=st.integers(min_value=1, max_value=604800))
    def test_any_ttl_in_range_accepted(self, ttl: int) -> None:
        assert IdempotencyConfig(ttl_seconds=ttl).ttl_seconds == ttl


class TestImmutability:
    def test_config_is_frozen(self) -> None:
        config = IdempotencyConfig()
        with pytest.raises(ValidationError):
            config.ttl_seconds = 10  # type: ignore[misc]


class TestFromEnv:
    """Tests for environment-driven configuration."""

    def test_from_env_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in IdempotencyConfig.model_fields:
            monkeypatch.delenv(f"IDEMPOTENCY_{name.upper()}", raising=False)
        assert IdempotencyConfig.from_env() == IdempotencyConfig()

    def test_from_env_reads_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IDEMPOTENCY_TTL_SECONDS", "600")
        monkeypatch.setenv("IDEMPOTENCY_ENABLED_METHODS", "post,put,patch")
        monkeypatch.setenv("IDEMPOTENCY_NORMALIZE_KEY_CASE", "false")
        monkeypatch.setenv("IDEMPOTENCY_STORAGE_ADAPTER", "sql")
        monkeypatch.setenv("IDEMPOTENCY_DATABASE_URL", "sqlite+aiosqlite:///./test.db")

        config = IdempotencyConfig.from_env()

        assert config.ttl_seconds == 600
        assert config.enabled_methods == ["POST", "PUT", "PATCH"]
        assert config.normalize_key_case is False
        assert config.storage_adapter == "sql"
        assert config.database_url == "sqlite+aiosqlite:///./test.db"

    def test_from_env_custom_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WALLET_HEADER_NAME", "X-Idempotency-Key")
        config = IdempotencyConfig.from_env(prefix="WALLET_")
        assert config.header_name == "X-Idempotency-Key"

    def test_from_env_invalid_bool(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IDEMPOTENCY_NORMALIZE_KEY_CASE", "maybe")
        with pytest.raises(ValueError, match="IDEMPOTENCY_NORMALIZE_KEY_CASE"):
            IdempotencyConfig.from_env()

    def test_from_env_invalid_int(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IDEMPOTENCY_TTL_SECONDS", "one day")
        with pytest.raises(ValueError):
            IdempotencyConfig.from_env()


    def test_from_env_logging(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IDEMPOTENCY_LOG_LEVEL", "warning")
        monkeypatch.setenv("IDEMPOTENCY_LOG_JSON", "no")
        config = IdempotencyConfig.from_env()
        assert config.log_level == "WARNING"
        assert config.log_json is False

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            IdempotencyConfig(log_level="LOUD")


class TestFromDict:
    def test_from_dict(self) -> None:
        config = IdempotencyConfig.from_dict({"ttl_seconds": 120, "header_name": "X-Key"})
        assert config.ttl_seconds == 120
        assert config.header_name == "X-Key"
