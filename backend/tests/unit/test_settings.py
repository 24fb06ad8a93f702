"""
Unit tests for Pydantic Settings configuration.

Tests settings loading and validation.
"""

import pytest
from unittest.mock import patch
import os

from app.api.dependencies import build_webhook_processor
from app.config.settings import Settings
from app.infrastructure.exceptions import ConfigurationError
from app.infrastructure.payments import WebhookProcessor


class TestSettings:
    """Tests for Settings configuration."""

    def test_settings_has_defaults(self):
        """Settings should have sensible defaults."""
        settings = Settings(_env_file=None)

        assert settings.billing_provider == "caktos"
        assert settings.billing_currency == "BRL"
        assert settings.default_plan_name == "Premium"
        assert settings.webhook_max_retries == 5
        assert settings.storage_backend == "postgres"

    def test_is_production_property(self):
        """is_production should follow ENVIRONMENT."""
        settings = Settings(_env_file=None, environment="production")

        assert settings.is_production is True
        assert settings.is_development is False

    @pytest.mark.parametrize("url", [
        "postgres://user:pw@localhost:5432/billing",
        "postgresql://user:pw@localhost:5432/billing",
    ])
    def test_database_url_uses_asyncpg(self, url):
        settings = Settings(_env_file=None, database_url=url)
        assert settings.database_url == "postgresql+asyncpg://user:pw@localhost:5432/billing"

    def test_loads_from_env(self):
        """Environment variables override defaults."""
        with patch.dict(os.environ, {"STORAGE_BACKEND": "memory", "WEBHOOK_MAX_RETRIES": "3"}):
            settings = Settings(_env_file=None)

        assert settings.storage_backend == "memory"
        assert settings.webhook_max_retries == 3

    def test_rejects_unknown_storage_backend(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, storage_backend="sqlite")


class TestProcessorWiring:

    def test_memory_backend(self):
        processor = build_webhook_processor(Settings(_env_file=None, storage_backend="memory"))
        assert isinstance(processor, WebhookProcessor)

    def test_unknown_backend_raises_configuration_error(self):
        settings = Settings(_env_file=None).model_copy(update={"storage_backend": "sqlite"})

        with pytest.raises(ConfigurationError):
            build_webhook_processor(settings)
