"""
Configuration loading and EngineSettings
"""
from pathlib import Path

import pytest
import yaml

from contentflow.core.config import (
    DEFAULT_INTERVALS,
    FILE_RETENTION_DEFAULT,
    MAX_TURNS_DEFAULT,
    ConfigManager,
    EngineSettings,
    clamp_max_turns,
)
from contentflow.core.exceptions import ConfigError


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    for name in ("CONTENTFLOW_AI__MAX_TURNS", "CONTENTFLOW_STORAGE__DB_PATH", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "base.yaml").write_text(yaml.safe_dump({
        "ai": {"max_turns": 8, "default_model": "base-model"},
        "storage": {"db_path": "data/base.db", "file_retention_days": 14},
        "scheduler_intervals": {"every_10_minutes": 600},
    }), encoding="utf-8")
    return directory


class TestClamps:

    @pytest.mark.parametrize("value, expected", [(0, 1), (-5, 1), (1, 1), (20, 20), (50, 50), (51, 50),
                                                 ("7", 7), ("many", MAX_TURNS_DEFAULT), (None, MAX_TURNS_DEFAULT)])
    def test_clamp_max_turns(self, value, expected):
        assert clamp_max_turns(value) == expected

    def test_retention_out_of_range_falls_back(self):
        assert EngineSettings.from_mapping({"storage": {"file_retention_days": 120}}).file_retention_days \
            == FILE_RETENTION_DEFAULT
        assert EngineSettings.from_mapping({"storage": {"file_retention_days": 0}}).file_retention_days \
            == FILE_RETENTION_DEFAULT
        assert EngineSettings.from_mapping({"storage": {"file_retention_days": 30}}).file_retention_days == 30


class TestEngineSettings:

    def test_defaults(self):
        settings = EngineSettings.from_mapping({})

        assert settings.max_turns == MAX_TURNS_DEFAULT
        assert settings.cleanup_job_data_on_failure is True
        assert settings.processed_items_retention_days == 0
        assert dict(settings.scheduler_intervals) == DEFAULT_INTERVALS
        assert settings.extensions == ()

    def test_settings_are_read_only(self):
        settings = EngineSettings.from_mapping({})

        with pytest.raises(Exception):
            settings.max_turns = 3
        with pytest.raises(TypeError):
            settings.scheduler_intervals["hourly"] = 1

    def test_string_booleans(self):
        settings = EngineSettings.from_mapping({"engine": {"cleanup_job_data_on_failure": "false"}})
        assert settings.cleanup_job_data_on_failure is False


class TestConfigManager:

    def test_base_file(self, config_dir):
        manager = ConfigManager(config_dir=config_dir)

        assert manager.get_config_value("ai.max_turns") == 8
        assert manager.get_config_value("ai.missing", "fallback") == "fallback"
        assert manager.get_config_value("storage.db_path.deeper", 1) == 1

    def test_local_file_overrides_base(self, config_dir):
        (config_dir / "dev.local.yaml").write_text(yaml.safe_dump({"ai": {"max_turns": 20}}), encoding="utf-8")

        settings = ConfigManager(config_dir=config_dir).build_settings()

        assert settings.max_turns == 20
        assert settings.default_model == "base-model"

    def test_environment_overrides_files(self, config_dir, monkeypatch):
        monkeypatch.setenv("CONTENTFLOW_AI__MAX_TURNS", "99")
        monkeypatch.setenv("CONTENTFLOW_STORAGE__DB_PATH", "/tmp/env.db")

        settings = ConfigManager(config_dir=config_dir).build_settings()

        assert settings.max_turns == 50
        assert settings.db_path == Path("/tmp/env.db")
        assert settings.file_retention_days == 14
        assert settings.scheduler_intervals["every_10_minutes"] == 600
        assert settings.scheduler_intervals["hourly"] == 3600

    def test_api_key_falls_back_to_environment(self, config_dir, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert ConfigManager(config_dir=config_dir).build_settings().openai_api_key == "sk-test"

    def test_reload_picks_up_changes(self, config_dir):
        manager = ConfigManager(config_dir=config_dir)
        assert manager.get_config_value("ai.max_turns") == 8

        (config_dir / "base.yaml").write_text(yaml.safe_dump({"ai": {"max_turns": 4}}), encoding="utf-8")
        assert manager.get_config_value("ai.max_turns") == 8
        manager.reload_config()
        assert manager.get_config_value("ai.max_turns") == 4

    def test_invalid_yaml(self, config_dir):
        (config_dir / "base.yaml").write_text("ai: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError):
            ConfigManager(config_dir=config_dir).load_config()

    def test_missing_directory_gives_defaults(self, tmp_path):
        settings = ConfigManager(config_dir=tmp_path / "nowhere").build_settings()
        assert settings.max_turns == MAX_TURNS_DEFAULT
