"""Microsoft Graph API client.

Thin wrapper over a requests Session that adds bearer tokens, builds URLs,
follows @odata.nextLink pagination and turns error responses into
GraphAPIError with actionable messages. Requests are not retried; callers
re-run the command instead.

Usage:
    from mailaudit.auth.msal_auth import GraphAuth
    from mailaudit.graph.client import GraphClient

    client = GraphClient(auth)
    domains = client.paginate("/domains")
"""

from collections.abc import Iterator
from typing import Any, Protocol

import requests

from mailaudit.core.errors import AuthenticationError, GraphAPIError
from mailaudit.core.logging import get_logger

logger = get_logger(__name__)

# Microsoft Graph API base URL
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class TokenProvider(Protocol):
    """Anything that can hand out a Graph access token (GraphAuth in practice)."""

    def get_access_token(self) -> str: ...


class GraphClient:
    """Microsoft Graph API client with error handling.

    Attributes:
        auth: Token provider
        base_url: Microsoft Graph API base URL
        session: requests Session used for connection pooling
    """

    def __init__(
        self,
        auth: TokenProvider,
        base_url: str = GRAPH_BASE_URL,
        session: requests.Session | None = None,
    ):
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

        logger.debug("GraphClient initialized", base_url=self.base_url)

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with current access token.

        Raises:
            AuthenticationError: If token cannot be acquired
        """
        try:
            token = self.auth.get_access_token()
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error("Failed to get access token", error=str(e))
            raise AuthenticationError(
                f"Cannot authenticate with Microsoft Graph: {e}. "
                "Run 'mailaudit validate-config' to check your auth settings."
            ) from e

        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _make_url(self, endpoint: str) -> str:
        """Construct the full URL for an endpoint (absolute URLs pass through)."""
        if endpoint.startswith("http"):
            return endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    def _handle_error_response(
        self, response: requests.Response, method: str, endpoint: str
    ) -> None:
        """Raise GraphAPIError with details from an error response."""
        try:
            error_info = response.json().get("error", {})
            error_code = error_info.get("code", "unknown")
            error_message = error_info.get("message", response.text)
        except ValueError:
            error_code = "unknown"
            error_message = response.text or f"HTTP {response.status_code}"

        logger.error(
            "Graph API error",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message[:200],
        )

        if response.status_code == 401:
            hint = "Your access token may have expired. Delete the token cache and sign in again."
        elif response.status_code == 403:
            hint = (
                "Check that the required API permissions (e.g. AuditLogsQuery.Read.All) "
                "are granted and admin-consented in Azure Portal."
            )
        elif response.status_code == 404:
            hint = f"The endpoint '{endpoint}' may be incorrect or the resource doesn't exist."
        elif response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            hint = f"Rate limited; retry after {retry_after} seconds."
        else:
            hint = ""

        raise GraphAPIError(
            f"Graph API error ({response.status_code}) on {method} {endpoint}: "
            f"{error_message}. {hint}".strip(),
            status_code=response.status_code,
            error_code=error_code,
        )

    def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> dict[str, Any]:
        """Make an HTTP request to the Graph API.

        Returns:
            Parsed JSON response ({} for 204 No Content)

        Raises:
            GraphAPIError: For API errors and transport failures
            AuthenticationError: When authentication fails
        """
        url = self._make_url(endpoint)
        headers = self._get_headers()

        logger.debug(
            "Graph API request",
            method=method,
            endpoint=endpoint,
            params=list(params.keys()) if params else None,
        )

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json,
                timeout=timeout,
            )
        except requests.exceptions.Timeout:
            raise GraphAPIError(
                f"Request to {endpoint} timed out after {timeout}s. "
                "Microsoft Graph API may be experiencing issues.",
                status_code=None,
            ) from None
        except requests.exceptions.ConnectionError as e:
            raise GraphAPIError(
                f"Connection to Microsoft Graph failed: {e}. "
                "Check your internet connection and try again.",
                status_code=None,
            ) from e

        if response.status_code >= 400:
            self._handle_error_response(response, method, endpoint)

        if response.status_code == 204:
            return {}
        return response.json()

    def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> dict[str, Any]:
        """Make a GET request to the Graph API."""
        return self.request("GET", endpoint, params=params, timeout=timeout)

    def post(
        self,
        endpoint: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float = 30.0,
    ) -> dict[str, Any]:
        """Make a POST request to the Graph API."""
        return self.request("POST", endpoint, params=params, json=json, timeout=timeout)

    def iter_pages(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
    ) -> Iterator[list[dict[str, Any]]]:
        """Yield each page's 'value' list, following @odata.nextLink.

        Args:
            endpoint: API endpoint path
            params: Query parameters for the first page (nextLink carries them afterwards)
            max_pages: Stop after this many pages (None for unlimited)
        """
        next_url: str | None = endpoint
        page_count = 0

        while next_url:
            if max_pages is not None and page_count >= max_pages:
                logger.debug("Pagination stopped at max_pages", max_pages=max_pages)
                return

            response = self.get(next_url, params=params if page_count == 0 else None)
            items = response.get("value", [])
            page_count += 1

            logger.debug(
                "Pagination page fetched",
                endpoint=endpoint,
                page=page_count,
                items_on_page=len(items),
            )
            yield items

            next_url = response.get("@odata.nextLink")

    def paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch all pages of a paginated Graph API response.

        Args:
            endpoint: API endpoint path
            params: Initial query parameters
            max_items: Stop once this many items are collected (None for all)

        Returns:
            List of items across all pages (truncated to max_items)
        """
        all_items: list[dict[str, Any]] = []
        for items in self.iter_pages(endpoint, params=params):
            all_items.extend(items)
            if max_items is not None and len(all_items) >= max_items:
                return all_items[:max_items]
        return all_items
