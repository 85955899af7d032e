"""State database scoped to one CLI command."""

from pathlib import Path
from typing import Optional, Union

from ...db import Database


class DatabaseService:
    """Opens the state database (creating its tables) for the duration of a command."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.database: Optional[Database] = None

    def __enter__(self) -> Database:
        self.database = Database(str(self.db_path))
        return self.database

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Connections are opened per query, so there is nothing to close
        self.database = None
        return False
