"""Xtream API service wrapper."""

from ...api.xtream import XtreamApi


class XtreamService:
    """
    Xtream API service wrapper with context manager support.

    Provides factory methods and automatic resource management.
    """

    def __init__(self, api: XtreamApi):
        self._api = api

    @classmethod
    def from_config(cls, config):
        """
        Create XtreamService from configuration.

        Args:
            config: Config object

        Returns:
            XtreamService instance
        """
        api = XtreamApi(
            url=config.get("xtream.url"),
            username=str(config.get("xtream.username")),
            password=str(config.get("xtream.password")),
            user_agent=config.get("xtream.user_agent"),
            timeout=int(config.get("xtream.timeout", 30)),
            request_delay_ms=int(config.get("xtream.request_delay_ms", 0)),
            max_retries=int(config.get("xtream.max_retries", 3)),
            retry_backoff=float(config.get("xtream.retry_backoff", 1.0)),
        )
        return cls(api)

    def __enter__(self) -> XtreamApi:
        return self._api

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._api.session.close()
        return False

    def test_connection(self):
        return self._api.test_connection()
