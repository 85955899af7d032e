"""Engine service: wires config, clients and stores into a ReconciliationEngine."""

import logging
from typing import Callable, Optional

from ...api.tmdb import TmdbApi
from ...api.xtream import XtreamApi
from ...db import Database
from ...sync import MetadataCache, MetadataResolver, ReconciliationEngine

logger = logging.getLogger(__name__)


class EngineService:
    """
    Engine wrapper with context manager support.

    Closing it flushes the metadata cache and stops the lookup pool.
    """

    def __init__(self, engine: ReconciliationEngine):
        self._engine = engine

    @classmethod
    def from_context(
        cls,
        app_ctx,
        database: Database,
        catalog: XtreamApi,
        on_event: Optional[Callable[..., None]] = None,
    ):
        """
        Create EngineService from the CLI context.

        Args:
            app_ctx: StrmarrContext
            database: Open state database
            catalog: Xtream API client
            on_event: Engine event callback (hook trigger)

        Returns:
            EngineService instance
        """
        settings = app_ctx.settings
        config = app_ctx.config

        search = None
        tmdb_key = config.get("metadata.tmdb_api_key")
        if settings.metadata.enabled and tmdb_key:
            search = TmdbApi(api_key=tmdb_key)
        elif settings.metadata.enabled:
            logger.info("No metadata.tmdb_api_key configured; folders are named without IDs")

        cache = MetadataCache(database, max_age_days=settings.metadata.cache_max_age_days)
        cache.load()
        purged = cache.purge_stale()
        if purged:
            logger.info(f"Purged {purged} expired metadata lookups")
        resolver = MetadataResolver(search, cache, settings.metadata)

        engine = ReconciliationEngine(
            settings=settings,
            catalog=catalog,
            resolver=resolver,
            database=database,
            on_event=on_event,
        )
        return cls(engine)

    def __enter__(self) -> ReconciliationEngine:
        return self._engine

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._engine.resolver.flush()
        self._engine.resolver.close()
        return False
