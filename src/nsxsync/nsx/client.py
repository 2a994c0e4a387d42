"""NSX Policy REST API client.

Architecture Overview:
---------------------
Thin async wrapper over the NSX Policy API exposing only what the
synchronization core needs:

- ``search_resources``: tag-scoped search used to populate stores
- ``patch_infra`` / ``patch_org_root``: hierarchical writes, always with
  ``enforce_revision_check=false`` (the diff engine owns conflict
  resolution, the backend is last-writer-wins)
- ``list_realized_entities``: realized state of an intent path

Error Handling:
--------------
Status codes map onto the ``NSXAPIError`` hierarchy. The NSX error body is
parsed with ``ErrorResponse`` and its ``error_code`` / ``related_errors``
are carried on the exception so services can detect specific conditions
(e.g. IP block exhaustion, code 520012). Transport failures are retried
with tenacity; nothing else is retried here.

Search Query Format:
-------------------
``resource_type:Segment AND tags.scope:ncp\\/vnet_uid AND tags.tag:<uid>``
Slashes in scopes and colons in values are escaped.
"""

import asyncio
import logging
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import NSXConfig
from ..constants import MAX_SEARCH_PAGES
from ..models.resources import Tag
from ..observability.logger import trace
from ..observability.metrics import get_global_collector
from ..utils.exceptions import (
    NSXAPIError,
    NSXAuthenticationError,
    NSXRateLimitError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from .endpoints import NSXEndpoints
from .response_models import ErrorResponse, RealizedEntity, RealizedEntityList, SearchResponse

logger = structlog.get_logger(__name__)
# Stdlib logger for TRACE request bodies
wire_logger = logging.getLogger(__name__)

MAX_RATE_LIMIT_RETRIES = 3


def _is_retriable_transport_error(exc: BaseException) -> bool:
    return isinstance(exc, httpx.NetworkError | httpx.TimeoutException)


def build_search_query(resource_type: str, tags: list[Tag] | tuple[Tag, ...] = ()) -> str:
    """
    Build a search query for ``resource_type`` restricted by ``tags``.

    A tag without value matches any value of its scope.
    """
    terms = [f"resource_type:{resource_type}"]
    for tag in tags:
        terms.append("tags.scope:" + tag.scope.replace("/", "\\/"))
        if tag.tag is not None:
            terms.append("tags.tag:" + tag.tag.replace(":", "\\:"))
    return " AND ".join(terms)


class NSXClient:
    """
    NSX Policy API client.

    Features:
    - Basic authentication on every request
    - Automatic retries with exponential backoff for transport errors
    - Retry-After handling for 429
    - Cursor pagination with loop guards
    - Connection pooling via httpx.AsyncClient
    """

    def __init__(self, config: NSXConfig) -> None:
        self.config = config
        self.base_url = f"{config.base_url.rstrip('/')}/policy/api/v1"
        self._client: httpx.AsyncClient | None = None
        self.collector = get_global_collector()

    async def __aenter__(self) -> "NSXClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client, created on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=httpx.BasicAuth(self.config.username, self.config.password),
                verify=self.config.verify_ssl,
                timeout=self.config.timeout,
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_keepalive,
                ),
            )
        return self._client

    @staticmethod
    def _parse_error(response: httpx.Response) -> tuple[str, ErrorResponse | None]:
        """Return (message, parsed body) for an error response."""
        try:
            data = response.json()
        except ValueError:
            return response.text, None
        if not isinstance(data, dict):
            return response.text, None
        try:
            error = ErrorResponse.model_validate(data)
        except ValidationError:
            return str(data.get("error_message") or response.text), None
        return error.get_full_message(), error

    def _raise_for_status(self, response: httpx.Response, method: str, endpoint: str) -> None:
        if not response.is_error:
            return
        message, error = self._parse_error(response)
        status = response.status_code

        if status == 404:
            raise ResourceNotFoundError(f"Resource ({endpoint})", message)
        if status in (401, 403):
            raise NSXAuthenticationError(message, status_code=status)
        if status in (409, 412):
            raise ResourceConflictError(message, status_code=status)

        logger.error(
            "NSX API request failed",
            method=method,
            endpoint=endpoint,
            status_code=status,
            error_code=error.error_code if error else None,
        )
        raise NSXAPIError(
            f"API Error {status}: {message}",
            status_code=status,
            error_code=error.error_code if error else None,
            related_errors=[r.model_dump() for r in error.related_errors] if error else None,
        )

    @retry(
        retry=retry_if_exception(_is_retriable_transport_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        _rate_limit_retries: int = 0,
    ) -> Any:
        """
        Make a request to the NSX Policy API.

        Args:
            method: HTTP method
            endpoint: Endpoint relative to ``/policy/api/v1``
            params: Query parameters
            json: JSON body
            _rate_limit_retries: Internal recursion counter. DO NOT USE EXTERNALLY.

        Returns:
            Parsed JSON response, ``None`` for empty bodies

        Raises:
            NSXAPIError: For general API errors (with error_code / related_errors)
            NSXAuthenticationError: For 401 / 403
            NSXRateLimitError: For 429 after max retries
            ResourceNotFoundError: For 404
            ResourceConflictError: For 409 / 412
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        self.collector.backend.increment("nsx_api_requests_total", tags={"method": method})
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            response = await self.client.request(method, url, params=params, json=json)
        except (httpx.NetworkError, httpx.TimeoutException):
            raise
        except httpx.HTTPError as e:
            raise NSXAPIError(f"HTTP request failed: {e}") from e

        duration = (loop.time() - start_time) * 1000
        self.collector.backend.timing("nsx_api_latency_ms", duration, tags={"method": method})

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", 5))
            if _rate_limit_retries >= MAX_RATE_LIMIT_RETRIES:
                logger.error("Rate limit retries exhausted", retries=_rate_limit_retries, endpoint=endpoint)
                raise NSXRateLimitError(retry_after)
            logger.warning(
                "Rate limited, waiting before retry",
                retry_after=retry_after,
                attempt=_rate_limit_retries + 1,
                endpoint=endpoint,
            )
            await asyncio.sleep(retry_after)
            return await self.request(
                method, endpoint, params=params, json=json, _rate_limit_retries=_rate_limit_retries + 1
            )

        self._raise_for_status(response, method, endpoint)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """Helper for GET requests."""
        return await self.request("GET", endpoint, params=params)

    async def patch(self, endpoint: str, json: dict[str, Any], params: dict[str, Any] | None = None) -> Any:
        """Helper for PATCH requests."""
        return await self.request("PATCH", endpoint, params=params, json=json)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def search_resources(
        self,
        resource_type: str,
        tags: list[Tag] | tuple[Tag, ...] = (),
        page_size: int | None = None,
        max_pages: int = MAX_SEARCH_PAGES,
    ) -> list[dict[str, Any]]:
        """
        Return every resource of ``resource_type`` carrying ``tags``.

        Follows ``cursor`` until the last page. Stops early (with a warning)
        after ``max_pages`` pages or when NSX returns a cursor already seen.
        """
        query = build_search_query(resource_type, tags)
        params: dict[str, Any] = {"query": query, "page_size": page_size or self.config.page_size}
        items: list[dict[str, Any]] = []
        seen_cursors: set[str] = set()
        page_count = 0

        while True:
            page_count += 1
            if page_count > max_pages:
                logger.warning("Search page limit reached", query=query, max_pages=max_pages, items=len(items))
                break

            data = await self.get(NSXEndpoints.SEARCH_QUERY, params=params)
            try:
                page = SearchResponse.model_validate(data or {})
            except ValidationError as e:
                raise NSXAPIError(f"Malformed search response for {resource_type}: {e}") from e
            items.extend(page.results)

            cursor = page.cursor
            if not cursor or not page.results:
                break
            if cursor in seen_cursors:
                logger.warning("Search cursor loop detected", query=query, cursor=cursor, items=len(items))
                break
            seen_cursors.add(cursor)
            params = {**params, "cursor": cursor}

        logger.debug("Search complete", resource_type=resource_type, pages=page_count, items=len(items))
        return items

    # -------------------------------------------------------------------------
    # Hierarchical writes
    # -------------------------------------------------------------------------

    async def patch_infra(self, body: dict[str, Any]) -> None:
        """PATCH an ``Infra`` hierarchical body."""
        trace(wire_logger, "Patching infra: %s", body)
        await self.patch(NSXEndpoints.INFRA, body, params={"enforce_revision_check": "false"})

    async def patch_org_root(self, body: dict[str, Any]) -> None:
        """PATCH an ``OrgRoot`` hierarchical body."""
        trace(wire_logger, "Patching org root: %s", body)
        await self.patch(NSXEndpoints.ORG_ROOT, body, params={"enforce_revision_check": "false"})

    # -------------------------------------------------------------------------
    # Realized state
    # -------------------------------------------------------------------------

    async def list_realized_entities(self, intent_path: str) -> list[RealizedEntity]:
        data = await self.get(NSXEndpoints.REALIZED_ENTITIES, params={"intent_path": intent_path})
        return RealizedEntityList.model_validate(data or {}).results
