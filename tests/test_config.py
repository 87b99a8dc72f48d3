"""
Tests for fail-fast configuration validation.
"""

import pytest

from marketplace.config import ConfigurationError, Settings

SECRET = "x" * 32


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///./test.db",
        "asset_signing_secret": SECRET,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSettingsValidation:
    """Critical configuration is validated at construction."""

    def test_valid_sqlite(self):
        settings = make_settings()
        assert settings.is_sqlite is True

    def test_valid_postgres(self):
        settings = make_settings(database_url="postgresql+asyncpg://u:p@db:5432/marketplace")
        assert settings.is_sqlite is False

    def test_missing_database_url(self):
        with pytest.raises(ConfigurationError, match="DATABASE_URL is required"):
            make_settings(database_url="")

    def test_unsupported_database(self):
        with pytest.raises(ConfigurationError, match="PostgreSQL or SQLite"):
            make_settings(database_url="mysql://u:p@db/marketplace")

    def test_short_signing_secret(self):
        with pytest.raises(ConfigurationError, match="ASSET_SIGNING_SECRET"):
            make_settings(asset_signing_secret="short")

    def test_low_entropy_tokens_refused(self):
        with pytest.raises(ConfigurationError, match="DOWNLOAD_TOKEN_BYTES"):
            make_settings(download_token_bytes=8)

    def test_token_longer_than_column_refused(self):
        with pytest.raises(ConfigurationError, match="cannot exceed 96"):
            make_settings(download_token_bytes=97)

    def test_largest_token_fits_column(self):
        assert make_settings(download_token_bytes=96).download_token_bytes == 96

    def test_non_positive_ttl(self):
        with pytest.raises(ConfigurationError, match="DOWNLOAD_TOKEN_TTL_HOURS"):
            make_settings(download_token_ttl_hours=0)

    def test_negative_retries(self):
        with pytest.raises(ConfigurationError, match="UPLOAD_MAX_RETRIES"):
            make_settings(upload_max_retries=-1)

    def test_currency_code(self):
        with pytest.raises(ConfigurationError, match="CURRENCY"):
            make_settings(currency="EURO")

    def test_defaults(self):
        settings = make_settings()
        assert settings.download_token_ttl_hours == 24
        assert settings.download_token_bytes == 32
        assert settings.upload_max_retries == 3
        assert settings.allow_self_purchase is False
