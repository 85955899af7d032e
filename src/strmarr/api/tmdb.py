"""TMDB API client for external ID searches."""

import logging
from typing import List, Optional

import requests

from ..models import SearchResult

logger = logging.getLogger(__name__)


class TmdbApiError(Exception):
    """TMDB API error."""
    pass


class TmdbApi:
    """Client for The Movie Database API."""

    BASE_URL = "https://api.themoviedb.org/3"

    def __init__(self, api_key: Optional[str] = None, timeout: int = 10):
        """Initialize TMDB API client.

        Args:
            api_key: TMDB API key (optional)
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()

    def is_configured(self) -> bool:
        """Check if API key is configured.

        Returns:
            True if API key is set
        """
        return bool(self.api_key)

    def _get(self, path: str, **params) -> dict:
        params["api_key"] = self.api_key
        try:
            response = self.session.get(
                f"{self.BASE_URL}{path}", params=params, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise TmdbApiError(f"TMDB request {path} failed: {e}")
        except ValueError as e:
            raise TmdbApiError(f"Invalid JSON from TMDB {path}: {e}")

    def search_movies(self, title: str, year: Optional[int] = None) -> List[SearchResult]:
        """Search TMDB for a movie by title (and optional year).

        Args:
            title: Movie title
            year: Primary release year

        Returns:
            Ranked results with TMDB IDs

        Raises:
            TmdbApiError: If the request fails
        """
        if not self.is_configured() or not title:
            return []

        params = {"query": title}
        if year:
            params["primary_release_year"] = year
        data = self._get("/search/movie", **params)

        return [
            SearchResult(
                name=item.get("title") or item.get("original_title"),
                year=_year(item.get("release_date")),
                provider_ids={"tmdb": str(item["id"])},
            )
            for item in data.get("results") or []
            if item.get("id")
        ]

    def search_series(self, title: str, year: Optional[int] = None) -> List[SearchResult]:
        """Search TMDB for a series; the top result also gets its TVDB ID.

        Args:
            title: Series title
            year: First air year

        Returns:
            Ranked results with TMDB (and for the top one, TVDB) IDs

        Raises:
            TmdbApiError: If the request fails
        """
        if not self.is_configured() or not title:
            return []

        params = {"query": title}
        if year:
            params["first_air_date_year"] = year
        data = self._get("/search/tv", **params)

        results = [
            SearchResult(
                name=item.get("name") or item.get("original_name"),
                year=_year(item.get("first_air_date")),
                provider_ids={"tmdb": str(item["id"])},
            )
            for item in data.get("results") or []
            if item.get("id")
        ]

        if results:
            top = results[0]
            external = self._get(f"/tv/{top.provider_ids['tmdb']}/external_ids")
            tvdb_id = external.get("tvdb_id")
            if tvdb_id:
                top.provider_ids["tvdb"] = str(tvdb_id)
            else:
                logger.debug(f"No TVDB ID on TMDB for '{top.name}'")

        return results


def _year(date: Optional[str]) -> Optional[int]:
    if not date or len(date) < 4 or not date[:4].isdigit():
        return None
    return int(date[:4])
