"""Dependency injection decorators for CLI commands."""

from functools import wraps
import sys

import rich_click as click

from ..commands.common import (
    print_connection_test,
    print_connection_success,
    print_connection_failure,
)
from .exceptions import ConnectionError
from .hooks import trigger_hook


def _require_connection(xtream):
    """Exit with the connection error code unless the provider accepts our login."""
    print_connection_test("Xtream")
    if not xtream.test_connection():
        print_connection_failure(
            "Xtream", "Check xtream.url, username and password in config.yaml"
        )
        sys.exit(ConnectionError.exit_code)
    print_connection_success("Xtream")


def with_database(f):
    """
    Inject the state database.

    Usage:
        @with_database
        def command(database, ...):
            pass
    """
    @wraps(f)
    @click.pass_context
    def wrapper(ctx, *args, **kwargs):
        from ..services.database import DatabaseService

        with DatabaseService(ctx.obj.db_path) as database:
            return f(database=database, **kwargs)
    return wrapper


def with_xtream(test_connection=True):
    """
    Inject the Xtream API client.

    Args:
        test_connection: Exit if the provider rejects the credentials

    Usage:
        @with_xtream()
        def command(xtream, ...):
            pass
    """
    def decorator(f):
        @wraps(f)
        @click.pass_context
        def wrapper(ctx, *args, **kwargs):
            from ..services.xtream import XtreamService

            with XtreamService.from_config(ctx.obj.config) as xtream:
                if test_connection:
                    _require_connection(xtream)
                return f(xtream=xtream, **kwargs)
        return wrapper
    return decorator


def with_engine(test_connection=False):
    """
    Inject a ReconciliationEngine wired to the database, Xtream and TMDB.

    Engine events (e.g. a blocked orphan sweep) are forwarded to the
    configured hooks. Leaving the command flushes the metadata cache.

    Args:
        test_connection: Test the provider before running the command

    Usage:
        @with_engine(test_connection=True)
        def command(engine, ...):
            pass
    """
    def decorator(f):
        @wraps(f)
        @click.pass_context
        def wrapper(ctx, *args, **kwargs):
            from ..services.database import DatabaseService
            from ..services.engine import EngineService
            from ..services.xtream import XtreamService

            with DatabaseService(ctx.obj.db_path) as database, \
                    XtreamService.from_config(ctx.obj.config) as xtream:
                if test_connection:
                    _require_connection(xtream)

                service = EngineService.from_context(ctx.obj, database, xtream, on_event=trigger_hook)
                with service as engine:
                    return f(engine=engine, **kwargs)
        return wrapper
    return decorator
