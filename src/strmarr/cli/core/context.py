"""Application context for CLI."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ...config import Config, SyncSettings


@dataclass
class StrmarrContext:
    """Shared application context passed through Click commands."""

    config: Config
    config_path: Path
    settings: SyncSettings
    db_path: Path

    @classmethod
    def create(cls, config_path: str, db_path: Optional[str] = None):
        """
        Factory method to create context from paths.

        Args:
            config_path: Path to config file
            db_path: Path to database file (defaults to the state directory)

        Returns:
            StrmarrContext instance

        Raises:
            ConfigurationError: If config is invalid
        """
        from .exceptions import ConfigurationError

        try:
            config = Config(config_path)
            settings = SyncSettings.from_config(config)
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

        resolved_db_path = db_path or config.get("library.database") or settings.state_dir / "strmarr.db"

        return cls(
            config=config,
            config_path=Path(config_path),
            settings=settings,
            db_path=Path(resolved_db_path),
        )
