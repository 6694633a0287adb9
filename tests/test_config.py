import pytest

from livestream_dl.exceptions import ConfigurationError
from livestream_dl.models.config import CaptureConfig
from livestream_dl.storage.config_manager import ConfigManager, default_config_path


class TestCaptureConfig:
    def test_defaults(self):
        config = CaptureConfig()
        assert config.max_workers == 8
        assert config.poll_interval_factor == 0.5
        assert config.playlist_gone_policy == "end"
        assert config.missing_retry_polls == 3

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_workers": 0},
            {"max_workers": 65},
            {"segment_attempts": 0},
            {"poll_interval_factor": 0},
            {"poll_interval_factor": 5},
            {"playlist_gone_policy": "ignore"},
            {"request_timeout": 0},
            {"retry_base_delay": 2.0, "retry_max_delay": 1.0},
            {"cookies": {"bad name": "x"}},
            {"choose_stream": True, "video": "v0"},
        ],
    )
    def test_invalid(self, overrides):
        with pytest.raises(ValueError):
            CaptureConfig(**overrides)

    def test_internal_fields_not_in_ini(self):
        keys = CaptureConfig.get_ini_keys()
        assert "max_workers" in keys
        assert not keys & {"source_url", "output_dir", "cookies", "video"}


class TestConfigManager:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = ConfigManager(tmp_path / "absent.ini").load_config()
        assert config == CaptureConfig()

    def test_file_values_and_cli_overrides(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text(
            "[DEFAULT]\nmax_workers = 4\ncopy_query = yes\npoll_interval_factor = 1.5\n"
            "playlist_gone_policy = fatal\n",
            encoding="utf-8",
        )

        config = ConfigManager(path).load_config({"max_workers": 12, "remux": None})

        assert config.max_workers == 12
        assert config.copy_query is True
        assert config.poll_interval_factor == 1.5
        assert config.playlist_gone_policy == "fatal"
        assert config.remux is False

    def test_unknown_keys_are_ignored(self, tmp_path, caplog):
        path = tmp_path / "config.ini"
        path.write_text("[DEFAULT]\nquality = 27\n", encoding="utf-8")
        config = ConfigManager(path).load_config()
        assert config.max_workers == 8
        assert "quality" in caplog.text

    @pytest.mark.parametrize(
        "content",
        ["[DEFAULT]\nmax_workers = many\n", "[DEFAULT]\nmax_workers = 100\n", "not an ini"],
    )
    def test_invalid_file(self, tmp_path, content):
        path = tmp_path / "config.ini"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "nested" / "config.ini"
        manager = ConfigManager(path)
        manager.save_new_config({"max_workers": 3, "remux": True})

        config = ConfigManager(path).load_config()
        assert config.max_workers == 3
        assert config.remux is True
        assert config.event_log_dir is None

    def test_default_path_follows_xdg(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert default_config_path() == tmp_path / "livestream-dl" / "config.ini"
