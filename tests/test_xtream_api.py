"""Tests for the Xtream API client"""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from strmarr.api.xtream import XtreamApi, XtreamApiError, XtreamNotFoundError
from strmarr.sync import ItemNotFoundError


def response(payload=None, status=200):
    mock = Mock()
    mock.status_code = status
    mock.json.return_value = payload
    if status >= 400:
        mock.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return mock


@pytest.fixture
def api():
    return XtreamApi("http://provider.test/", "user", "pass", max_retries=2, retry_backoff=0.5)


class TestRequests:
    """Test request building, retries and errors"""

    def test_query_parameters(self, api):
        with patch.object(api.session, "get", return_value=response([])) as get:
            api.get_vod_streams(7)

        get.assert_called_once_with(
            "http://provider.test/player_api.php",
            params={"username": "user", "password": "pass", "action": "get_vod_streams", "category_id": 7},
            timeout=30,
        )

    def test_retries_server_errors(self, api):
        replies = [response(status=502), response(status=503), response([])]
        with patch.object(api.session, "get", side_effect=replies) as get, \
                patch("strmarr.api.xtream.time.sleep") as sleep:
            assert api.get_vod_categories() == []

        assert get.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_retries_connection_errors(self, api):
        replies = [requests.ConnectionError("reset"), response([])]
        with patch.object(api.session, "get", side_effect=replies), \
                patch("strmarr.api.xtream.time.sleep"):
            assert api.get_series_categories() == []

    def test_gives_up_after_retries(self, api):
        with patch.object(api.session, "get", side_effect=requests.Timeout("slow")) as get, \
                patch("strmarr.api.xtream.time.sleep"):
            with pytest.raises(XtreamApiError):
                api.get_vod_categories()

        assert get.call_count == 3

    def test_persistent_server_error(self, api):
        with patch.object(api.session, "get", return_value=response(status=500)), \
                patch("strmarr.api.xtream.time.sleep"):
            with pytest.raises(XtreamApiError):
                api.get_vod_categories()

    def test_not_found_is_not_retried(self, api):
        with patch.object(api.session, "get", return_value=response(status=404)) as get:
            with pytest.raises(ItemNotFoundError):
                api.get_vod_info(5)

        assert get.call_count == 1

    def test_invalid_json(self, api):
        bad = response()
        bad.json.side_effect = ValueError("Expecting value")
        with patch.object(api.session, "get", return_value=bad):
            with pytest.raises(XtreamApiError, match="Invalid JSON"):
                api.get_vod_categories()

    def test_user_agent(self):
        api = XtreamApi("http://provider.test", "u", "p", user_agent="VLC/3.0")

        assert api.session.headers["User-Agent"] == "VLC/3.0"


class TestConnection:
    """Test credential checks"""

    def test_authenticated(self, api):
        with patch.object(api.session, "get", return_value=response({"user_info": {"auth": 1}})):
            assert api.test_connection() is True

    def test_rejected(self, api):
        with patch.object(api.session, "get", return_value=response({"user_info": {"auth": 0}})):
            assert api.test_connection() is False

    def test_unreachable(self, api):
        with patch.object(api.session, "get", side_effect=requests.ConnectionError("down")), \
                patch("strmarr.api.xtream.time.sleep"):
            assert api.test_connection() is False


class TestParsing:
    """Test payload parsing"""

    def test_categories(self, api):
        payload = [
            {"category_id": "3", "category_name": " Action ", "parent_id": 0},
            {"category_id": "4", "category_name": "Kids", "parent_id": "3"},
        ]
        with patch.object(api.session, "get", return_value=response(payload)):
            categories = api.get_vod_categories()

        assert [(c.category_id, c.name, c.parent_id) for c in categories] == [
            (3, "Action", None),
            (4, "Kids", 3),
        ]

    def test_vod_streams(self, api):
        payload = [
            {
                "stream_id": "101", "name": "EN - Heat (1995) ", "container_extension": "mkv",
                "category_id": "3", "rating": 8.3, "tmdb": "949",
            },
            {"stream_id": None, "name": "broken"},
            "garbage",
        ]
        with patch.object(api.session, "get", return_value=response(payload)):
            movies = api.get_vod_streams(3)

        assert len(movies) == 1
        movie = movies[0]
        assert movie.stream_id == 101
        assert movie.name == "EN - Heat (1995)"
        assert movie.category_id == 3
        assert movie.rating == "8.3"
        assert movie.tmdb_id == 949

    def test_vod_info(self, api):
        payload = {
            "info": {"tmdb_id": "949", "name": "Heat"},
            "movie_data": {"stream_id": 101, "name": "Heat (1995)", "container_extension": "mp4", "category_id": "3"},
        }
        with patch.object(api.session, "get", return_value=response(payload)):
            detail = api.get_vod_info(101)

        assert detail.to_movie().container_extension == "mp4"
        assert detail.tmdb_id == 949
        assert detail.category_id == 3

    def test_vod_info_empty_is_not_found(self, api):
        with patch.object(api.session, "get", return_value=response({"info": [], "movie_data": []})):
            with pytest.raises(XtreamNotFoundError):
                api.get_vod_info(101)

    def test_series_listing(self, api):
        payload = [{"series_id": 10, "name": "Lost", "category_id": "5", "last_modified": "1700000000"}]
        with patch.object(api.session, "get", return_value=response(payload)):
            series = api.get_series(5)

        assert series[0].last_modified == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert series[0].tmdb_id is None

    def test_series_info_grouped_by_season(self, api):
        payload = {
            "info": {"name": "Lost"},
            "episodes": {
                "1": [
                    {"id": "1001", "episode_num": 1, "title": "Pilot", "container_extension": "mkv"},
                    {"id": "1002", "episode_num": "2", "title": ""},
                ],
                "2": {"id": "2001", "episode_num": 1, "title": "Man of Science"},
            },
        }
        with patch.object(api.session, "get", return_value=response(payload)):
            info = api.get_series_info(10)

        assert info.name == "Lost"
        assert info.episode_count == 3
        assert [e.episode_id for e in info.episodes[1]] == [1001, 1002]
        assert info.episodes[1][1].title is None
        assert info.episodes[2][0].season == 2

    def test_series_info_flat_list(self, api):
        payload = {
            "episodes": [
                {"id": 1, "episode_num": 1, "season": 1},
                {"id": 2, "episode_num": 1, "season": "3"},
                {"id": 3, "episode_num": 2},
            ],
        }
        with patch.object(api.session, "get", return_value=response(payload)):
            info = api.get_series_info(10)

        assert sorted(info.episodes) == [1, 3]
        assert [e.episode_id for e in info.episodes[1]] == [1, 3]

    def test_series_info_empty_episodes(self, api):
        with patch.object(api.session, "get", return_value=response({"info": {}, "episodes": []})):
            info = api.get_series_info(10)

        assert info.episode_count == 0

    def test_series_info_missing(self, api):
        with patch.object(api.session, "get", return_value=response([])):
            with pytest.raises(ItemNotFoundError):
                api.get_series_info(10)
