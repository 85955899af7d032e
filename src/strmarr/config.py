"""Configuration management."""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

FOLDER_MODES = ("single", "multiple")


class ConfigError(Exception):
    """Configuration error."""
    pass


class Config:
    """Configuration container."""

    def __init__(self, config_path: str):
        """Load configuration from YAML file.

        Args:
            config_path: Path to config.yaml

        Raises:
            ConfigError: If config is invalid
        """
        self.config_path = Path(config_path)

        if not self.config_path.exists():
            raise ConfigError(
                f"Config file not found: {config_path}\n"
                "Copy config.example.yaml to config.yaml and fill in your settings."
            )

        try:
            with open(self.config_path) as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file: {e}")

        self._validate()

    def _validate(self):
        """Validate required configuration."""
        for key in ("xtream.url", "xtream.username", "xtream.password", "library.path"):
            if not self.get(key):
                raise ConfigError(f"{key} is required in config")

        for key in ("sync.movie_folder_mode", "sync.series_folder_mode"):
            mode = self.get(key, "single")
            if mode not in FOLDER_MODES:
                raise ConfigError(
                    f"{key} must be one of {', '.join(FOLDER_MODES)} (got '{mode}')"
                )

        threshold = self.get("sync.orphan_threshold", 0.2)
        if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
            raise ConfigError("sync.orphan_threshold must be a number between 0 and 1")

        parallelism = self.get("sync.parallelism", 4)
        if not isinstance(parallelism, int) or parallelism < 1:
            raise ConfigError("sync.parallelism must be a positive integer")

        batch_size = self.get("sync.category_batch_size", 0)
        if not isinstance(batch_size, int) or batch_size < 0:
            raise ConfigError("sync.category_batch_size must be 0 or a positive integer")

        for key in ("sync.movie_folder_mappings", "sync.series_folder_mappings"):
            mappings = self.get(key, {})
            if not isinstance(mappings, dict):
                raise ConfigError(f"{key} must map folder names to category ID lists")

    def get(self, key: str, default=None):
        """Get config value by dot-notation key.

        Args:
            key: Dot-notation key (e.g., 'xtream.url')
            default: Default value if not found

        Returns:
            Config value or default
        """
        keys = key.split(".")
        value = self.data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

            if value is None:
                return default

        return value


@dataclass(frozen=True)
class MetadataSettings:
    """Settings for external ID resolution."""
    enabled: bool = True
    cache_max_age_days: int = 30
    max_concurrent_lookups: int = 3
    lookup_timeout: float = 5.0
    yearless_fallback: bool = True
    year_tolerance: int = 2
    short_title_max: int = 3
    long_title_min: int = 15


@dataclass(frozen=True)
class SyncSettings:
    """Explicit settings for one reconciliation run.

    Built once from Config and handed to the engine; nothing in the sync
    package reads configuration from anywhere else.
    """
    provider_url: str
    username: str
    password: str
    library_path: Path
    state_dir: Path
    sync_movies: bool = True
    sync_series: bool = True
    incremental: bool = True
    parallelism: int = 4
    category_batch_size: int = 0
    parallel_content_types: bool = False
    cleanup_orphans: bool = True
    orphan_threshold: float = 0.2
    orphan_min_files: int = 10
    smart_skip: bool = True
    write_nfo: bool = False
    snapshot_retention: int = 3
    remove_terms: List[str] = field(default_factory=list)
    selected_vod_categories: List[int] = field(default_factory=list)
    selected_series_categories: List[int] = field(default_factory=list)
    movie_folder_mode: str = "single"
    movie_folder_mappings: Dict[str, List[int]] = field(default_factory=dict)
    series_folder_mode: str = "single"
    series_folder_mappings: Dict[str, List[int]] = field(default_factory=dict)
    tmdb_overrides: Dict[str, int] = field(default_factory=dict)
    tvdb_overrides: Dict[str, int] = field(default_factory=dict)
    metadata: MetadataSettings = field(default_factory=MetadataSettings)

    @property
    def movies_root(self) -> Path:
        return self.library_path / "Movies"

    @property
    def series_root(self) -> Path:
        return self.library_path / "Series"

    @classmethod
    def from_config(cls, config: Config) -> "SyncSettings":
        """Build settings from a loaded config.

        Args:
            config: Config object

        Returns:
            SyncSettings instance
        """
        library_path = Path(config.get("library.path")).expanduser()
        state_dir = config.get("library.state_dir")
        state_dir = Path(state_dir).expanduser() if state_dir else library_path / ".strmarr"

        metadata = MetadataSettings(
            enabled=bool(config.get("metadata.enabled", True)),
            cache_max_age_days=int(config.get("metadata.cache_max_age_days", 30)),
            max_concurrent_lookups=int(config.get("metadata.max_concurrent_lookups", 3)),
            lookup_timeout=float(config.get("metadata.lookup_timeout", 5.0)),
            yearless_fallback=bool(config.get("metadata.yearless_fallback", True)),
            year_tolerance=int(config.get("metadata.year_tolerance", 2)),
            short_title_max=int(config.get("metadata.short_title_max", 3)),
            long_title_min=int(config.get("metadata.long_title_min", 15)),
        )

        return cls(
            provider_url=str(config.get("xtream.url")).rstrip("/"),
            username=str(config.get("xtream.username")),
            password=str(config.get("xtream.password")),
            library_path=library_path,
            state_dir=state_dir,
            sync_movies=bool(config.get("sync.movies", True)),
            sync_series=bool(config.get("sync.series", True)),
            incremental=bool(config.get("sync.incremental", True)),
            parallelism=int(config.get("sync.parallelism", 4)),
            category_batch_size=int(config.get("sync.category_batch_size", 0)),
            parallel_content_types=bool(config.get("sync.parallel_content_types", False)),
            cleanup_orphans=bool(config.get("sync.cleanup_orphans", True)),
            orphan_threshold=float(config.get("sync.orphan_threshold", 0.2)),
            orphan_min_files=int(config.get("sync.orphan_min_files", 10)),
            smart_skip=bool(config.get("sync.smart_skip", True)),
            write_nfo=bool(config.get("sync.write_nfo", False)),
            snapshot_retention=int(config.get("sync.snapshot_retention", 3)),
            remove_terms=[str(t) for t in config.get("sync.remove_terms", [])],
            selected_vod_categories=_int_list(config.get("sync.selected_vod_categories", [])),
            selected_series_categories=_int_list(config.get("sync.selected_series_categories", [])),
            movie_folder_mode=config.get("sync.movie_folder_mode", "single"),
            movie_folder_mappings=_folder_mappings(config.get("sync.movie_folder_mappings", {})),
            series_folder_mode=config.get("sync.series_folder_mode", "single"),
            series_folder_mappings=_folder_mappings(config.get("sync.series_folder_mappings", {})),
            tmdb_overrides=_overrides(config.get("metadata.tmdb_overrides", {})),
            tvdb_overrides=_overrides(config.get("metadata.tvdb_overrides", {})),
            metadata=metadata,
        )


def _int_list(values) -> List[int]:
    if not values:
        return []
    return [int(v) for v in values]


def _folder_mappings(raw: Optional[dict]) -> Dict[str, List[int]]:
    """Normalize {folder: [category ids]}; a single ID may be given as a scalar."""
    mappings = {}
    for folder, ids in (raw or {}).items():
        if ids is None:
            continue
        if not isinstance(ids, (list, tuple)):
            ids = [ids]
        mappings[str(folder)] = [int(i) for i in ids]
    return mappings


def _overrides(raw: Optional[dict]) -> Dict[str, int]:
    """Override tables are matched case-insensitively on the clean title."""
    return {str(title).strip().lower(): int(value) for title, value in (raw or {}).items()}


def setup_logging(config: Config):
    """Setup logging configuration.

    Args:
        config: Config object
    """
    log_level_str = config.get("logging.level", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    log_file = config.get("logging.file")

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
    )

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
