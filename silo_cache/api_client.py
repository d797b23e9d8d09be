"""
REST client for the business backend.

Builds fetcher callables for CacheManager.get_or_fetch; the cache never
talks HTTP itself.
"""
import logging
from typing import Any, Callable, Dict, Optional

import requests
from dotenv import load_dotenv

from config.settings import settings

load_dotenv()

# Configure logging for fetch diagnostics
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("api_client")


def _default_extract(payload: Any) -> Any:
    """Unwrap the backend's {"success": ..., "data": ...} envelope."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class ApiClient:
    """
    Thin requests.Session wrapper with bearer auth and a fixed timeout.

    Usage:
        client = ApiClient()
        products = cache.get_or_fetch(
            keys.products(),
            client.fetcher("/store-products"),
        )
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token if token is not None else settings.api_token
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.session = session or requests.Session()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an endpoint and return the decoded JSON body.

        Raises:
            requests.HTTPError: non-2xx response
            requests.RequestException: connection problems
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        response = self.session.get(
            url,
            headers=self._get_headers(),
            params=params,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetcher(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        extract: Optional[Callable[[Any], Any]] = None,
    ) -> Callable[[], Any]:
        """
        Build a zero-argument fetcher for the cache.

        Args:
            extract: Picks the cached value out of the response body;
                defaults to the "data" field when present
        """
        extract = extract or _default_extract

        def fetch() -> Any:
            logger.debug(f"GET {endpoint} params={params}")
            return extract(self.get(endpoint, params=params))

        return fetch
