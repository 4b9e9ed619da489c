"""Tests for HTTP retry helpers."""

from unittest.mock import MagicMock

import pytest
import requests

from wxdash.errors import FetchFailed
from wxdash.pipelines.http import backoff_delay, fetch_json_optional, fetch_json_with_retry


def _response(status_code=200, body=None, bad_json=False):
    response = MagicMock()
    response.status_code = status_code
    if bad_json:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = body
    return response


class TestBackoff:
    """Tests for backoff_delay."""

    def test_doubles(self):
        assert [backoff_delay(a) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        assert backoff_delay(20) == 512.0
        assert backoff_delay(5, base_delay=1.0, max_delay=10.0) == 10.0


class TestFetchJsonWithRetry:
    """Tests for fetch_json_with_retry."""

    def test_success(self):
        session = MagicMock()
        session.get.return_value = _response(body={"ok": True})

        result = fetch_json_with_retry(session, "https://example.test", params={"a": 1})

        assert result == {"ok": True}
        session.get.assert_called_once()
        assert session.get.call_args.kwargs["params"] == {"a": 1}

    def test_retries_503_then_succeeds(self):
        session = MagicMock()
        session.get.side_effect = [_response(503), _response(503), _response(body=[1])]
        sleeps = []

        result = fetch_json_with_retry(session, "https://example.test", sleep=sleeps.append)

        assert result == [1]
        assert sleeps == [1.0, 2.0]

    def test_retries_connection_errors(self):
        session = MagicMock()
        session.get.side_effect = [requests.ConnectionError("reset"), _response(body={})]

        assert fetch_json_with_retry(session, "https://example.test", sleep=lambda s: None) == {}

    def test_gives_up(self):
        """After max_attempts the last error is raised as FetchFailed."""
        session = MagicMock()
        session.get.return_value = _response(503)
        sleeps = []

        with pytest.raises(FetchFailed) as exc_info:
            fetch_json_with_retry(
                session, "https://example.test", source="nws",
                max_attempts=3, sleep=sleeps.append,
            )

        assert session.get.call_count == 3
        assert len(sleeps) == 2
        assert exc_info.value.source == "nws"
        assert "503" in str(exc_info.value)

    def test_client_error_not_retried(self):
        session = MagicMock()
        session.get.return_value = _response(404)

        with pytest.raises(FetchFailed):
            fetch_json_with_retry(session, "https://example.test", sleep=lambda s: None)

        session.get.assert_called_once()

    def test_invalid_json(self):
        session = MagicMock()
        session.get.return_value = _response(bad_json=True)

        with pytest.raises(FetchFailed, match="Invalid JSON"):
            fetch_json_with_retry(session, "https://example.test")


class TestFetchJsonOptional:
    """Tests for fetch_json_optional."""

    def test_success(self):
        session = MagicMock()
        session.get.return_value = _response(body={"features": []})
        assert fetch_json_optional(session, "https://example.test") == {"features": []}

    @pytest.mark.parametrize("response", [
        _response(500),
        _response(bad_json=True),
    ])
    def test_failures_return_none(self, response):
        session = MagicMock()
        session.get.return_value = response
        assert fetch_json_optional(session, "https://example.test") is None

    def test_transport_error_returns_none(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        assert fetch_json_optional(session, "https://example.test") is None
