"""Unit tests for MetaGraphClient.

WHAT:
    Retry, error translation and pagination of the Graph accessor with the
    blocking SDK call mocked out.

WHY:
    Every Meta read (insights, ads, lead forms, creatives) goes through this
    client; a wrong retry decision either hammers a throttled account or
    gives up on a recoverable one.

REFERENCES:
    - adboard/services/meta_graph_client.py (module under test)
    - facebook_business SDK (mocked)
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from facebook_business.exceptions import FacebookRequestError
from requests.exceptions import ConnectionError as RequestsConnectionError

from adboard.errors import AuthError, TransientUpstreamError, UpstreamError
from adboard.services.meta_graph_client import MetaGraphClient


def _graph_error(http_status, code=None, is_transient=False, message="boom"):
    error = {"message": message, "is_transient": is_transient}
    if code is not None:
        error["code"] = code
    return FacebookRequestError(
        message=message,
        request_context={},
        http_status=http_status,
        http_headers={},
        body={"error": error},
    )


def _client(max_retries=3):
    sleep = AsyncMock()
    return MetaGraphClient(max_retries=max_retries, base_delay=1.0, sleep=sleep), sleep


class TestFetchPageRetries:
    """Retry policy of fetch_page."""

    def test_success_returns_json_without_retry(self):
        """WHAT: A successful call returns the parsed body once.
        WHY: No sleeps on the happy path.
        """
        client, sleep = _client()
        with patch.object(MetaGraphClient, "_call", return_value={"id": "1"}) as call:
            result = asyncio.run(client.fetch_page("/1", {"fields": "id"}, "token"))

        assert result == {"id": "1"}
        call.assert_called_once_with("/1", {"fields": "id"}, "token")
        sleep.assert_not_called()

    def test_rate_limit_retried_with_exponential_backoff(self):
        """WHAT: Throttling code 17 is retried with 1s, 2s delays.
        WHY: Meta throttles per ad account; backing off lets it recover.
        """
        client, sleep = _client()
        side_effect = [_graph_error(400, code=17), _graph_error(400, code=17), {"ok": True}]
        with patch.object(MetaGraphClient, "_call", side_effect=side_effect) as call:
            result = asyncio.run(client.fetch_page("/act_1/insights", {}, "token"))

        assert result == {"ok": True}
        assert call.call_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    def test_business_use_case_code_is_retried(self):
        """WHAT: Codes in 80000-80099 count as rate limiting."""
        client, _ = _client()
        with patch.object(MetaGraphClient, "_call", side_effect=[_graph_error(400, code=80004), {"ok": 1}]):
            assert asyncio.run(client.fetch_page("/x", {}, "token")) == {"ok": 1}

    def test_http_429_and_transient_flag_are_retried(self):
        client, _ = _client()
        side_effect = [_graph_error(429), _graph_error(500, code=2, is_transient=True), {"ok": 1}]
        with patch.object(MetaGraphClient, "_call", side_effect=side_effect):
            assert asyncio.run(client.fetch_page("/x", {}, "token")) == {"ok": 1}

    def test_network_error_is_retried(self):
        client, _ = _client()
        with patch.object(MetaGraphClient, "_call", side_effect=[RequestsConnectionError("reset"), {"ok": 1}]):
            assert asyncio.run(client.fetch_page("/x", {}, "token")) == {"ok": 1}

    def test_exhausted_retries_raise_transient_error(self):
        """WHAT: max_retries=2 means 3 attempts, then TransientUpstreamError.
        WHY: Callers record the week as failed instead of hanging forever.
        """
        client, sleep = _client(max_retries=2)
        with patch.object(MetaGraphClient, "_call", side_effect=_graph_error(400, code=4)) as call:
            with pytest.raises(TransientUpstreamError):
                asyncio.run(client.fetch_page("/x", {}, "token"))

        assert call.call_count == 3
        assert sleep.await_count == 2

    def test_non_transient_error_is_not_retried(self):
        """WHAT: An invalid-parameter error surfaces immediately as UpstreamError."""
        client, sleep = _client()
        with patch.object(MetaGraphClient, "_call", side_effect=_graph_error(400, code=100)) as call:
            with pytest.raises(UpstreamError) as exc_info:
                asyncio.run(client.fetch_page("/x", {}, "token"))

        assert not isinstance(exc_info.value, TransientUpstreamError)
        assert exc_info.value.status == 400
        call.assert_called_once()
        sleep.assert_not_called()

    def test_auth_failure_raises_auth_error(self):
        client, _ = _client()
        with patch.object(MetaGraphClient, "_call", side_effect=_graph_error(400, code=190)):
            with pytest.raises(AuthError):
                asyncio.run(client.fetch_page("/x", {}, "token"))

    def test_missing_token_raises_before_calling(self):
        client, _ = _client()
        with patch.object(MetaGraphClient, "_call") as call:
            with pytest.raises(AuthError):
                asyncio.run(client.fetch_page("/x", {}, None))
        call.assert_not_called()


class TestSdkCall:
    """_call builds a per-token session and splits the path."""

    @patch("adboard.services.meta_graph_client.FacebookAdsApi")
    @patch("adboard.services.meta_graph_client.FacebookSession")
    def test_call_uses_token_session_and_path_parts(self, mock_session, mock_api):
        response = Mock()
        response.json.return_value = {"data": []}
        mock_api.return_value.call.return_value = response

        client = MetaGraphClient(api_version="v24.0", timeout=12)
        result = client._call("/act_1/insights", {"level": "ad"}, "tok")

        assert result == {"data": []}
        mock_session.assert_called_once_with(access_token="tok", timeout=12)
        mock_api.assert_called_once_with(mock_session.return_value, api_version="v24.0")
        mock_api.return_value.call.assert_called_once_with("GET", ("act_1", "insights"), params={"level": "ad"})


class TestFetchAll:
    """Cursor pagination."""

    def test_follows_after_cursor_until_no_next(self):
        client, _ = _client()
        pages = [
            {"data": [{"id": 1}], "paging": {"cursors": {"after": "c1"}, "next": "https://graph/next"}},
            {"data": [{"id": 2}], "paging": {"cursors": {"after": "c2"}}},
        ]
        fetch = AsyncMock(side_effect=pages)
        with patch.object(client, "fetch_page", fetch):
            items = asyncio.run(client.fetch_all("/act_1/insights", {"limit": 500}, "token"))

        assert items == [{"id": 1}, {"id": 2}]
        assert fetch.await_count == 2
        assert fetch.await_args_list[1].args[1]["after"] == "c1"

    def test_stops_at_max_pages(self):
        client, _ = _client()
        page = {"data": [{"id": 1}], "paging": {"cursors": {"after": "c"}, "next": "n"}}
        with patch.object(client, "fetch_page", AsyncMock(return_value=page)) as fetch:
            items = asyncio.run(client.fetch_all("/x", {}, "token", max_pages=3))

        assert len(items) == 3
        assert fetch.await_count == 3
