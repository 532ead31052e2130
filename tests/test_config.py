"""
Tests for configuration validation.
"""

import pytest

from loyalty.config import ConfigurationError, Settings

PG_URL = "postgresql+asyncpg://loyalty:secret@db:5432/loyalty"


class TestSettings:
    def test_postgres_url_accepted(self) -> None:
        settings = Settings(database_url=PG_URL)
        assert settings.database_url == PG_URL
        assert settings.run_migrations_on_startup is False

    @pytest.mark.parametrize(
        "url", ["sqlite+aiosqlite:///ledger.db", "mysql://root@localhost/loyalty"]
    )
    def test_non_postgres_url_rejected(self, url: str) -> None:
        with pytest.raises(ConfigurationError, match="PostgreSQL"):
            Settings(database_url=url)

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="DATABASE_URL is required"):
            Settings(database_url="")

    def test_bad_log_format_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="LOG_FORMAT"):
            Settings(database_url=PG_URL, log_format="xml")
