"""HTTP client facade for the card API.

Wires the credential manager, retry service, request executor, paginator
and batch engine around one shared ``httpx.Client``. This is the surface
the tool layer talks to.
"""

import logging
import time
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence

import httpx

from cardwire.domain.events.api_events import EventSink
from cardwire.domain.models.common import PER_ITEM, BatchOperation, BatchResult, Page
from cardwire.domain.models.errors import NetworkError, ResponseParseError, classify_response
from cardwire.infrastructure.auth.credential_manager import CredentialManager
from cardwire.infrastructure.config.settings import ClientSettings
from cardwire.infrastructure.http import batch
from cardwire.infrastructure.http.batch import BatchEngine
from cardwire.infrastructure.http.pagination import Paginator
from cardwire.infrastructure.http.request_executor import RequestExecutor
from cardwire.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
PING_PATH = "/health/ping"


class CardClient:
    """Authenticated, retrying client for the card API.

    Instances are safe to share between threads: the only mutable shared
    state is the cached credential, which the credential manager guards.
    """

    def __init__(
        self,
        settings: ClientSettings,
        http_client: httpx.Client,
        credentials: CredentialManager,
        executor: RequestExecutor,
        paginator: Paginator,
        batch_engine: BatchEngine,
    ):
        self.settings = settings
        self.credentials = credentials
        self.executor = executor
        self.paginator = paginator
        self.batch_engine = batch_engine
        self._http = http_client

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.time,
        event_sink: Optional[EventSink] = None,
    ) -> "CardClient":
        """Builds a client and all its collaborators from settings.

        Args:
            settings: Validated client settings.
            transport: Optional httpx transport (e.g. ``httpx.MockTransport`` in tests).
            sleep: Sleep used between retry attempts.
            clock: Wall clock used for token and key set expiry.
            event_sink: Receiver for domain events; defaults to debug logging.
        """
        http_client = httpx.Client(
            timeout=settings.http_timeout_seconds,
            headers={"User-Agent": settings.user_agent},
            transport=transport,
        )
        credentials = CredentialManager(settings, http_client, clock=clock, event_sink=event_sink)
        retry_service = ApiRetryService(
            max_retries=settings.max_retries,
            initial_backoff_s=settings.initial_backoff_seconds,
            backoff_factor=settings.backoff_factor,
            sleep=sleep,
            event_sink=event_sink,
        )
        executor = RequestExecutor(settings, credentials, http_client, retry_service)
        paginator = Paginator(
            executor,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
            max_pages=settings.max_pages,
            event_sink=event_sink,
        )
        batch_engine = BatchEngine(executor, event_sink=event_sink)
        logger.debug(f"CardClient created for {settings.base_url}")
        return cls(settings, http_client, credentials, executor, paginator, batch_engine)

    # --- Credentials ---

    def get_token(self) -> str:
        return self.credentials.get_token()

    # --- Plain requests ---

    def request(self, method: str, path: str, query: Optional[Mapping[str, Any]] = None, body: Any = None) -> Any:
        return self.executor.request(method, path, query=query, body=body)

    def get(self, path: str, **params: Any) -> Any:
        return self.executor.request("GET", path, query=params or None)

    def post(self, path: str, **data: Any) -> Any:
        return self.executor.request("POST", path, body=data)

    def patch(self, path: str, **data: Any) -> Any:
        return self.executor.request("PATCH", path, body=data)

    def delete(self, path: str, **params: Any) -> Any:
        return self.executor.request("DELETE", path, query=params or None)

    # --- Pagination ---

    def paginated_get(self, path: str, limit: Optional[int] = None, offset: int = 0, **params: Any) -> Page:
        """One page of a collection together with its cursor."""
        return self.paginator.fetch_page(path, query=params, limit=limit, offset=offset)

    def each_page(
        self,
        path: str,
        limit: Optional[int] = None,
        callback: Optional[Callable[[List[Any]], None]] = None,
        max_pages: Optional[int] = None,
        **params: Any,
    ) -> Optional[Iterator[List[Any]]]:
        return self.paginator.each_page(path, query=params, limit=limit, callback=callback, max_pages=max_pages)

    def fetch_all(self, path: str, limit: Optional[int] = None, max_pages: Optional[int] = None, **params: Any) -> List[Any]:
        return self.paginator.fetch_all(path, query=params, limit=limit, max_pages=max_pages)

    # --- Batches ---

    def submit_batch(self, operations: Sequence[BatchOperation], mode: str = PER_ITEM) -> BatchResult:
        return self.batch_engine.submit(operations, mode)

    @staticmethod
    def build_child_op(parent_name: str, child_name: str, content: Optional[str] = None,
                       type: Optional[str] = None) -> BatchOperation:
        return batch.build_child_op(parent_name, child_name, content=content, type=type)

    # --- Health (no credentials, no retries) ---

    def health_check(self) -> Any:
        """Full health report of the service: status, timestamp and component checks."""
        return self._unauthenticated_get(HEALTH_PATH, "Health check")

    def ping(self) -> Any:
        """Cheapest liveness probe; only proves the server answers."""
        return self._unauthenticated_get(PING_PATH, "Ping")

    def _unauthenticated_get(self, path: str, what: str) -> Any:
        url = self.settings.url_for(path)
        try:
            response = self._http.get(url, headers={"Accept": "application/json"})
        except httpx.TransportError as e:
            raise NetworkError(f"{what} failed: {type(e).__name__}: {e}") from e

        if not response.is_success:
            error = classify_response(response.status_code, response.text, response.headers)
            logger.warning(f"{what} failed (HTTP {response.status_code}): {error}")
            raise error
        try:
            return response.json()
        except ValueError as e:
            raise ResponseParseError(f"{what} parse failed: {e}", status=response.status_code) from e

    # --- Lifecycle ---

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CardClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
