"""
Tests for the REST client fetchers.
"""
import pytest
import requests

from silo_cache.api_client import ApiClient


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def json(self):
        return self.payload


class FakeSession:
    """Records requests.Session.get calls and replays one response."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.response


def _client(payload, status_code=200, token="secret"):
    session = FakeSession(FakeResponse(payload, status_code))
    client = ApiClient(
        base_url="http://backend.test/api/",
        token=token,
        timeout=5,
        session=session,
    )
    return client, session


class TestApiClient:

    def test_get_builds_url_and_headers(self):
        client, session = _client({"ok": True})

        assert client.get("/categories", params={"page": 2}) == {"ok": True}

        url, kwargs = session.calls[0]
        assert url == "http://backend.test/api/categories"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["params"] == {"page": 2}
        assert kwargs["timeout"] == 5

    def test_no_token_no_authorization_header(self):
        client, session = _client({}, token="")
        client.get("tables")
        assert "Authorization" not in session.calls[0][1]["headers"]

    def test_fetcher_unwraps_data_envelope(self):
        client, _ = _client({"success": True, "data": [{"id": 1}]})
        assert client.fetcher("/store-products")() == [{"id": 1}]

    def test_fetcher_returns_body_without_envelope(self):
        client, _ = _client([1, 2, 3])
        assert client.fetcher("/bundles")() == [1, 2, 3]

    def test_fetcher_custom_extract(self):
        client, _ = _client({"data": {"items": ["a"], "total": 1}})
        fetch = client.fetcher("/inventory/items", extract=lambda body: body["data"]["items"])
        assert fetch() == ["a"]

    def test_http_error_propagates(self):
        client, _ = _client({"error": "nope"}, status_code=503)
        with pytest.raises(requests.HTTPError):
            client.fetcher("/orders")()

    def test_fetcher_through_cache(self, manager):
        client, session = _client({"data": ["drinks"]})
        fetch = client.fetcher("/categories")

        assert manager.get_or_fetch("categories", fetch, ttl=60) == ["drinks"]
        assert manager.get_or_fetch("categories", fetch, ttl=60) == ["drinks"]
        assert len(session.calls) == 1
