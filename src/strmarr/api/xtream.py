"""Xtream Codes API client for the provider catalog."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests

from ..models import Category, Episode, Movie, MovieDetail, Series, SeriesInfo
from ..sync.exceptions import ItemNotFoundError

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class XtreamApiError(Exception):
    """Xtream API error."""
    pass


class XtreamNotFoundError(XtreamApiError, ItemNotFoundError):
    """The provider does not know the requested item."""
    pass


class XtreamApi:
    """Client for the Xtream Codes player API."""

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        user_agent: Optional[str] = None,
        timeout: int = 30,
        request_delay_ms: int = 0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ):
        """Initialize Xtream API client.

        Args:
            url: Provider base URL
            username: Account username
            password: Account password
            user_agent: User-Agent header to send (optional)
            timeout: Request timeout in seconds
            request_delay_ms: Minimum delay between requests
            max_retries: Retries for connection errors, 429 and 5xx responses
            retry_backoff: Base backoff in seconds, doubled per attempt
        """
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.request_delay = request_delay_ms / 1000.0
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.session = requests.Session()
        if user_agent:
            self.session.headers["User-Agent"] = user_agent
        self._throttle_lock = threading.Lock()
        self._last_request = 0.0

    def _throttle(self):
        if self.request_delay <= 0:
            return
        with self._throttle_lock:
            wait = self._last_request + self.request_delay - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _request(self, action: Optional[str] = None, **params):
        """Call player_api.php and return decoded JSON.

        Raises:
            XtreamNotFoundError: On 404
            XtreamApiError: If the request fails after retries
        """
        query = {"username": self.username, "password": self.password}
        if action:
            query["action"] = action
        query.update(params)
        label = action or "account info"

        for attempt in range(self.max_retries + 1):
            self._throttle()
            try:
                response = self.session.get(
                    f"{self.url}/player_api.php", params=query, timeout=self.timeout
                )
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    self._backoff(attempt, label, str(e))
                    continue
                raise XtreamApiError(f"Request failed for {label}: {e}")

            if response.status_code == 404:
                raise XtreamNotFoundError(f"Not found: {label} {params}")
            if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                self._backoff(attempt, label, f"HTTP {response.status_code}")
                continue

            try:
                response.raise_for_status()
                return response.json()
            except requests.HTTPError as e:
                raise XtreamApiError(f"Failed to fetch {label}: {e}")
            except ValueError as e:
                raise XtreamApiError(f"Invalid JSON in {label} response: {e}")

        raise XtreamApiError(f"Failed to fetch {label}")

    def _backoff(self, attempt: int, label: str, reason: str):
        delay = self.retry_backoff * (2 ** attempt)
        logger.warning(
            f"Xtream {label} failed ({reason}), retrying in {delay:.1f}s "
            f"(attempt {attempt + 1}/{self.max_retries})"
        )
        time.sleep(delay)

    def test_connection(self) -> bool:
        """Test provider credentials.

        Returns:
            True if the account is authenticated
        """
        try:
            data = self._request()
        except XtreamApiError:
            return False
        user_info = data.get("user_info") if isinstance(data, dict) else None
        return bool(user_info) and str(user_info.get("auth", "1")) == "1"

    def get_vod_categories(self) -> List[Category]:
        return [_parse_category(c) for c in _as_list(self._request("get_vod_categories"))]

    def get_series_categories(self) -> List[Category]:
        return [_parse_category(c) for c in _as_list(self._request("get_series_categories"))]

    def get_vod_streams(self, category_id: int) -> List[Movie]:
        """Get movie listings for one category.

        Args:
            category_id: VOD category ID

        Returns:
            List of Movie objects
        """
        data = self._request("get_vod_streams", category_id=category_id)
        movies = []
        for item in _as_list(data):
            stream_id = _to_int(item.get("stream_id"))
            if stream_id is None:
                continue
            movies.append(Movie(
                stream_id=stream_id,
                name=(item.get("name") or "").strip(),
                container_extension=item.get("container_extension") or None,
                category_id=_to_int(item.get("category_id")),
                stream_icon=item.get("stream_icon") or None,
                rating=str(item["rating"]) if item.get("rating") not in (None, "") else None,
                added=str(item["added"]) if item.get("added") else None,
                tmdb_id=_to_int(item.get("tmdb") or item.get("tmdb_id")),
            ))
        return movies

    def get_vod_info(self, vod_id: int) -> MovieDetail:
        """Get details for one movie.

        Raises:
            XtreamNotFoundError: If the provider no longer has the movie
        """
        data = self._request("get_vod_info", vod_id=vod_id)
        movie_data = data.get("movie_data") if isinstance(data, dict) else None
        if not movie_data:
            raise XtreamNotFoundError(f"Movie {vod_id} not found")
        info = data.get("info") or {}
        if not isinstance(info, dict):
            info = {}

        return MovieDetail(
            stream_id=_to_int(movie_data.get("stream_id")) or vod_id,
            name=(movie_data.get("name") or info.get("name") or "").strip(),
            container_extension=movie_data.get("container_extension") or None,
            category_id=_to_int(movie_data.get("category_id")),
            tmdb_id=_to_int(info.get("tmdb_id")),
        )

    def get_series(self, category_id: int) -> List[Series]:
        data = self._request("get_series", category_id=category_id)
        series = []
        for item in _as_list(data):
            series_id = _to_int(item.get("series_id"))
            if series_id is None:
                continue
            series.append(Series(
                series_id=series_id,
                name=(item.get("name") or "").strip(),
                category_id=_to_int(item.get("category_id")),
                cover=item.get("cover") or None,
                last_modified=_parse_unix_time(item.get("last_modified")),
                rating=str(item["rating"]) if item.get("rating") not in (None, "") else None,
                tmdb_id=_to_int(item.get("tmdb") or item.get("tmdb_id")),
            ))
        return series

    def get_series_info(self, series_id: int) -> SeriesInfo:
        """Get seasons and episodes for one series.

        Args:
            series_id: Provider series ID

        Returns:
            SeriesInfo with episodes grouped by season

        Raises:
            XtreamNotFoundError: If the provider no longer has the series
        """
        data = self._request("get_series_info", series_id=series_id)
        if not isinstance(data, dict) or not data:
            raise XtreamNotFoundError(f"Series {series_id} not found")

        info = data.get("info") or {}
        name = info.get("name") if isinstance(info, dict) else None
        return SeriesInfo(
            series_id=series_id,
            name=name,
            episodes=_parse_episodes(data.get("episodes")),
        )


def _parse_category(item: dict) -> Category:
    return Category(
        category_id=_to_int(item.get("category_id")),
        name=(item.get("category_name") or "").strip(),
        parent_id=_to_int(item.get("parent_id")) or None,
    )


def _parse_episodes(raw) -> Dict[int, List[Episode]]:
    """Normalize the episodes payload.

    Providers send a dict keyed by season number (values a list or a single
    object), or a flat list carrying a "season" field, or an empty list.
    """
    grouped: Dict[int, List[Episode]] = {}

    if isinstance(raw, dict):
        for season_key, value in raw.items():
            season = _to_int(season_key)
            if season is None:
                continue
            items = value if isinstance(value, list) else [value] if isinstance(value, dict) else []
            episodes = [_parse_episode(item, season) for item in items if isinstance(item, dict)]
            grouped[season] = [e for e in episodes if e is not None]
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            episode = _parse_episode(item, _to_int(item.get("season")) or 1)
            if episode is not None:
                grouped.setdefault(episode.season, []).append(episode)

    return grouped


def _parse_episode(item: dict, season: int) -> Optional[Episode]:
    episode_id = _to_int(item.get("id"))
    if episode_id is None:
        return None
    return Episode(
        episode_id=episode_id,
        episode_num=_to_int(item.get("episode_num")) or 0,
        season=season,
        title=(item.get("title") or "").strip() or None,
        container_extension=item.get("container_extension") or None,
    )


def _as_list(data) -> list:
    return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []


def _to_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_unix_time(value) -> Optional[datetime]:
    timestamp = _to_int(value)
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
