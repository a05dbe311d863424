"""
Unit tests for runner settings.
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from stepwise.config.settings import ConfigManager, Settings, get_settings
from stepwise.core.types import BrowserName


class TestSettings:
    """Tests for the Settings model."""

    def test_defaults(self):
        """Test a fresh settings object uses the documented defaults."""
        settings = Settings()

        assert settings.default_browser == BrowserName.CHROMIUM
        assert settings.step_timeout_seconds == 10
        assert settings.step_timeout_ms == 10000
        assert settings.continue_on_failure is False
        assert settings.browser_headless is True
        assert (settings.browser_viewport_width, settings.browser_viewport_height) == (1280, 720)
        assert settings.navigation_wait_until == "domcontentloaded"
        assert settings.thumbnail_max_size == 320
        assert settings.enable_sample_project_seed is False

    def test_environment_overrides(self):
        """Test environment variables override defaults."""
        env = {
            "DEFAULT_BROWSER": "firefox",
            "STEP_TIMEOUT_SECONDS": "30",
            "CONTINUE_ON_FAILURE": "true",
            "DATABASE_URL": "sqlite:///:memory:",
            "LOG_FORMAT": "text",
        }
        with patch.dict(os.environ, env):
            settings = Settings()

        assert settings.default_browser == BrowserName.FIREFOX
        assert settings.step_timeout_seconds == 30
        assert settings.continue_on_failure is True
        assert settings.database_url == "sqlite:///:memory:"
        assert settings.log_format == "text"

    @pytest.mark.parametrize(
        "raw, expected",
        [(0, 1), (0.4, 1), (2.5, 3), ("45", 45), (500, 120)],
    )
    def test_step_timeout_clamped(self, raw, expected):
        """Test step timeouts are rounded and clamped to [1, 120] seconds."""
        assert Settings(step_timeout_seconds=raw).step_timeout_seconds == expected

    @pytest.mark.parametrize("raw", ["soon", float("nan"), float("inf")])
    def test_step_timeout_invalid(self, raw):
        with pytest.raises(ValueError, match="Invalid step timeout"):
            Settings(step_timeout_seconds=raw)

    def test_unknown_browser(self):
        with pytest.raises(ValueError):
            Settings(default_browser="safari")

    def test_wait_until(self):
        assert Settings(navigation_wait_until="load").navigation_wait_until == "load"

        with pytest.raises(ValueError, match="Invalid navigation wait state"):
            Settings(navigation_wait_until="idle")

    def test_log_level_normalized(self):
        assert Settings(log_level="warning").log_level == "WARNING"

        with pytest.raises(ValueError, match="Invalid log level"):
            Settings(log_level="LOUD")

    def test_log_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            Settings(log_format="xml")

    def test_viewport_lower_bound(self):
        with pytest.raises(ValueError):
            Settings(browser_viewport_width=100)

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("sqlite:///data/x.sqlite", "data/x.sqlite"),
            ("sqlite:///:memory:", None),
            ("postgresql://db/stepwise", None),
        ],
    )
    def test_sqlite_path(self, url, expected):
        path = Settings(database_url=url).sqlite_path

        assert (str(path) if path else None) == expected

    def test_create_directories(self, tmp_path):
        """Test data, artifacts and database folders are created."""
        settings = Settings(
            data_dir=tmp_path / "data",
            artifacts_dir=tmp_path / "shots",
            database_url=f"sqlite:///{tmp_path / 'db' / 'stepwise.sqlite'}",
        )

        settings.create_directories()

        assert (tmp_path / "data").is_dir()
        assert (tmp_path / "shots").is_dir()
        assert (tmp_path / "db").is_dir()

    def test_create_directories_in_memory_db(self, tmp_path):
        settings = Settings(
            data_dir=tmp_path / "data",
            artifacts_dir=tmp_path / "shots",
            database_url="sqlite:///:memory:",
        )

        settings.create_directories()

        assert (tmp_path / "shots").is_dir()


class TestConfigManager:
    """Tests for key-based settings access."""

    @pytest.fixture
    def config(self):
        return ConfigManager(Settings(step_timeout_seconds=20, continue_on_failure=True))

    def test_get(self, config):
        assert config.get("step_timeout_seconds") == 20
        assert config.get("unknown") is None
        assert config.get("unknown", "fallback") == "fallback"

    def test_get_required(self, config):
        assert config.get_required("continue_on_failure") is True

        with pytest.raises(KeyError, match="Required configuration key not found"):
            config.get_required("unknown")

    def test_get_all(self, config):
        values = config.get_all()

        assert values["continue_on_failure"] is True
        assert {"database_url", "artifacts_dir"} <= set(values)


class TestGetSettings:
    """Tests for the cached settings loader."""

    @patch("stepwise.config.settings.Settings")
    @patch("stepwise.config.settings.load_dotenv")
    @patch("stepwise.config.settings.Path")
    def test_loads_env_file(self, mock_path_class, mock_load_dotenv, mock_settings):
        """Test a present .env file is loaded before settings are built."""
        env_file = MagicMock()
        env_file.exists.return_value = True
        mock_path_class.return_value = env_file

        get_settings.cache_clear()
        try:
            get_settings()
        finally:
            get_settings.cache_clear()

        mock_load_dotenv.assert_called_once_with(env_file)
        mock_settings.return_value.create_directories.assert_called_once()

    def test_cached(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        get_settings.cache_clear()
        try:
            first = get_settings()
            second = get_settings()
        finally:
            get_settings.cache_clear()

        assert first is second
        assert (tmp_path / "data" / "artifacts").is_dir()
