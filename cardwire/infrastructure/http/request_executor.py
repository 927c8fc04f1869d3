"""Authenticated request execution against the card API.

One logical request is one ``RequestDescriptor`` run through the
``ApiRetryService``. Each attempt asks the credential provider for the
current token, sends the request and turns the response into either the
parsed JSON body or a classified ``CardApiError``.
"""

import logging
from typing import Any, Mapping, Optional

import httpx

from cardwire.domain.interfaces.credentials import CredentialProvider
from cardwire.domain.models.common import ApiPath, RequestDescriptor
from cardwire.domain.models.errors import (
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    ResponseParseError,
    classify_response,
)
from cardwire.infrastructure.config.settings import ClientSettings
from cardwire.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PATCH", "PUT", "DELETE")


class RequestExecutor:
    """Sends authenticated requests and applies the retry policy."""

    def __init__(
        self,
        settings: ClientSettings,
        credentials: CredentialProvider,
        http_client: httpx.Client,
        retry_service: ApiRetryService,
    ):
        self.settings = settings
        self.credentials = credentials
        self.retry_service = retry_service
        self._http = http_client

    def request(
        self,
        method: str,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Any:
        """Performs one logical request, retrying transient failures.

        Args:
            method: HTTP method ('GET', 'POST', 'PATCH', 'DELETE').
            path: API path relative to the base URL, e.g. '/cards/Home'.
            query: Query parameters; ``None`` values are dropped.
            body: JSON-serializable request body.

        Returns:
            The decoded JSON body, or ``None`` for an empty 2xx response.

        Raises:
            CardApiError: The classified failure.
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ConfigurationError(f"Unsupported HTTP method: {method}")

        descriptor = RequestDescriptor(method=method, path=ApiPath(path), query=query, body=body)
        return self.retry_service.execute_with_retry(
            self.attempt,
            descriptor,
            endpoint_name=f"{method} {path}",
        )

    def attempt(self, descriptor: RequestDescriptor) -> Any:
        """Executes a single attempt. No retries happen here."""
        # re-read on every attempt so a token refreshed mid-sequence is used
        token = self.credentials.get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        url = self.settings.url_for(descriptor.path)
        logger.debug(f"{descriptor.method} {url} params={descriptor.clean_query()}")

        try:
            response = self._http.request(
                descriptor.method,
                url,
                params=descriptor.clean_query(),
                json=descriptor.body,
                headers=headers,
            )
        except httpx.TransportError as e:
            # connect/read timeouts, refused connections, DNS failures
            raise NetworkError(f"HTTP request failed: {type(e).__name__}: {e}") from e

        try:
            return handle_response(response)
        except AuthenticationError:
            # the server rejected the cached token; the next call must fetch a new one
            logger.info(f"Access token rejected by {descriptor.method} {descriptor.path}, cache cleared.")
            self.credentials.clear_cache()
            raise


def handle_response(response: httpx.Response) -> Any:
    """Returns the parsed body of a 2xx response or raises the classified error."""
    if response.is_success:
        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ResponseParseError(f"Response parse failed: {e}", status=response.status_code) from e

    raise classify_response(response.status_code, response.text, response.headers)
