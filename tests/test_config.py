"""Tests for configuration loading"""

from pathlib import Path

import pytest
import yaml

from strmarr.config import Config, ConfigError, SyncSettings

BASE_CONFIG = {
    "xtream": {"url": "http://provider.test/", "username": "user", "password": 1234},
    "library": {"path": "/media/strm"},
}


def write_config(temp_dir, data):
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def merged(**sections):
    data = {key: dict(value) for key, value in BASE_CONFIG.items()}
    for key, value in sections.items():
        data.setdefault(key, {}).update(value)
    return data


class TestConfig:
    """Test config file loading and validation"""

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigError, match="not found"):
            Config(str(temp_dir / "missing.yaml"))

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text("xtream: [unclosed")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            Config(str(path))

    def test_required_keys(self, temp_dir):
        data = merged()
        del data["library"]

        with pytest.raises(ConfigError, match="library.path"):
            Config(str(write_config(temp_dir, data)))

    @pytest.mark.parametrize("sync,message", [
        ({"movie_folder_mode": "nested"}, "movie_folder_mode"),
        ({"orphan_threshold": 1.5}, "orphan_threshold"),
        ({"parallelism": 0}, "parallelism"),
        ({"category_batch_size": -1}, "category_batch_size"),
        ({"series_folder_mappings": ["Kids"]}, "series_folder_mappings"),
    ])
    def test_invalid_sync_settings(self, temp_dir, sync, message):
        with pytest.raises(ConfigError, match=message):
            Config(str(write_config(temp_dir, merged(sync=sync))))

    def test_dot_notation(self, temp_dir):
        config = Config(str(write_config(temp_dir, merged())))

        assert config.get("xtream.username") == "user"
        assert config.get("xtream.missing", "fallback") == "fallback"
        assert config.get("xtream.username.deeper") is None


class TestSyncSettings:
    """Test building run settings from config"""

    def test_defaults(self, temp_dir):
        settings = SyncSettings.from_config(Config(str(write_config(temp_dir, merged()))))

        assert settings.provider_url == "http://provider.test"
        assert settings.password == "1234"
        assert settings.library_path == Path("/media/strm")
        assert settings.state_dir == Path("/media/strm/.strmarr")
        assert settings.movies_root == Path("/media/strm/Movies")
        assert settings.series_root == Path("/media/strm/Series")
        assert settings.incremental is True
        assert settings.orphan_threshold == 0.2
        assert settings.orphan_min_files == 10
        assert settings.metadata.enabled is True
        assert settings.metadata.max_concurrent_lookups == 3

    def test_sync_section(self, temp_dir):
        data = merged(
            library={"state_dir": str(temp_dir / "state")},
            sync={
                "movies": False,
                "parallelism": 8,
                "category_batch_size": 5,
                "remove_terms": ["[MULTI]", 4],
                "selected_vod_categories": ["3", 4],
                "movie_folder_mode": "multiple",
                "movie_folder_mappings": {"Kids": [1, "2"], "Docs": 9, "Empty": None},
            },
            metadata={
                "enabled": False,
                "lookup_timeout": 2,
                "tmdb_overrides": {"  The Office ": "2316"},
            },
        )

        settings = SyncSettings.from_config(Config(str(write_config(temp_dir, data))))

        assert settings.state_dir == temp_dir / "state"
        assert settings.sync_movies is False
        assert settings.parallelism == 8
        assert settings.category_batch_size == 5
        assert settings.remove_terms == ["[MULTI]", "4"]
        assert settings.selected_vod_categories == [3, 4]
        assert settings.movie_folder_mappings == {"Kids": [1, 2], "Docs": [9]}
        assert settings.metadata.enabled is False
        assert settings.metadata.lookup_timeout == 2.0
        assert settings.tmdb_overrides == {"the office": 2316}
