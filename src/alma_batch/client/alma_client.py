"""Async client for the Alma users API.

Every request first waits on the shared `RateLimiter`, then either returns a
decoded body or raises a classified `AlmaBatchError`:

- `TransportError` when no HTTP response was received
- `APIError` / `ApiProtocolError` for 4xx and 5xx responses
- `DecodeError` when a successful body cannot be read
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import quote

import httpx

from alma_batch.client.decoder import UserListDecoder
from alma_batch.client.error_handler import ErrorClassifier, is_error_status
from alma_batch.client.rate_limiter import RateLimiter
from alma_batch.constants import (
    APIKEY_PARAM,
    BASE_URL_TEMPLATE,
    JSON_MEDIA_TYPE,
    LIST_ORDER_BY,
    NETWORK_TIMEOUT,
    USERS_COLLECTION,
    XML_MEDIA_TYPE,
)
from alma_batch.core.exceptions import DecodeError, TransportError
from alma_batch.telemetry import TelemetryContext

if TYPE_CHECKING:
    from types import TracebackType

    from alma_batch.config import FrozenConfig
    from alma_batch.core.types import UserList
    from alma_batch.telemetry import TelemetryContextProtocol

log = logging.getLogger(__name__)

# InvalidURL is not an HTTPError subclass
_HTTPX_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


def base_url_for_region(region: str) -> str:
    """Return the Alma API base URL for a hosting region (e.g. ``na``, ``eu``)."""
    region = region.strip()
    if not region:
        raise ValueError("region must be a non-empty string")
    return BASE_URL_TEMPLATE.format(region=region)


def quote_user_id(user_id: str) -> str:
    """Percent-encode a user id as a single path segment."""
    return quote(user_id, safe="")


def _translate_httpx_error(
    method: str, url: str, error: Exception
) -> DecodeError | TransportError:
    if isinstance(error, httpx.DecodingError):
        return DecodeError(f"{method} {url}: response body could not be decoded: {error}")
    return TransportError(f"{method} {url} failed: {error}")


class AlmaClient:
    """Rate-limited client for listing, fetching and replacing Alma users.

    Cheap to share between concurrent tasks: the underlying `httpx.AsyncClient`
    and the `RateLimiter` are both safe for concurrent use.
    """

    def __init__(
        self,
        api_key: str,
        *,
        region: str | None = None,
        base_url: str | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = NETWORK_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        error_classifier: ErrorClassifier | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Alma API key, sent as the ``apikey`` query parameter.
            region: Hosting region used to derive the base URL.
            base_url: Explicit base URL; takes precedence over `region`.
            rate_limiter: Shared limiter. A default 10 requests/second limiter
                is created when omitted.
            timeout: Per-request timeout in seconds for the owned HTTP client.
            http_client: Optional pre-built client (e.g. with a mock transport).
                Injected clients are not closed by `aclose`.
            error_classifier: Classifier for failed responses.
            telemetry: Optional telemetry context.
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key must be a non-empty string")
        if base_url is None:
            if region is None:
                raise ValueError("either region or base_url is required")
            base_url = base_url_for_region(region)
        if not base_url.endswith("/"):
            base_url += "/"

        self.base_url = base_url
        self._api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter()
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._classifier = error_classifier or ErrorClassifier()
        self._telemetry = telemetry or TelemetryContext()

    @classmethod
    def from_config(
        cls,
        config: FrozenConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> AlmaClient:
        """Build a client and its rate limiter from a frozen run configuration."""
        limiter = RateLimiter(
            config.requests_per_second,
            burst=config.burst,
            jitter=config.jitter_ms / 1000,
        )
        return cls(
            config.api_key,
            base_url=config.base_url,
            rate_limiter=limiter,
            timeout=config.timeout_seconds,
            http_client=http_client,
            telemetry=telemetry,
        )

    def __repr__(self) -> str:
        """Representation without the API key."""
        return f"AlmaClient(base_url={self.base_url!r}, api_key='[REDACTED]')"

    async def __aenter__(self) -> Self:  # noqa: D105
        return self

    async def __aexit__(  # noqa: D105
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the owned HTTP client."""
        if self._owns_http_client:
            await self._http.aclose()

    # --- Listing ---

    async def list_user_ids_and_total(
        self, offset: int, limit: int
    ) -> tuple[list[str], int]:
        """List one page of user ids together with the total user count.

        Raises:
            DecodeError: If the listing has no total record count.
        """
        user_list = await self._list_users(offset, limit, require_total=True)
        if user_list.total is None:
            raise DecodeError("Failed to get total record count")
        return list(user_list.ids), user_list.total

    async def list_user_ids(self, offset: int, limit: int) -> list[str]:
        """List one page of user ids ordered by primary id."""
        user_list = await self._list_users(offset, limit, require_total=False)
        return list(user_list.ids)

    async def _list_users(
        self, offset: int, limit: int, *, require_total: bool
    ) -> UserList:
        if offset < 0 or limit <= 0:
            raise ValueError(f"invalid page: offset={offset}, limit={limit}")
        params = {
            "order_by": LIST_ORDER_BY,
            "limit": str(limit),
            "offset": str(offset),
        }
        await self.rate_limiter.acquire()
        url = self.base_url + USERS_COLLECTION
        log.debug("GET %s?%s", url, httpx.QueryParams(params))
        decoder = UserListDecoder(require_total=require_total)
        with self._telemetry("alma.request", method="GET", endpoint="list"):
            try:
                async with self._http.stream(
                    "GET",
                    url,
                    params=self._with_key(params),
                    headers={"Accept": XML_MEDIA_TYPE},
                ) as response:
                    if is_error_status(response.status_code):
                        await response.aread()
                        self._telemetry.count(
                            "errors", status_code=response.status_code
                        )
                        raise self._classifier.classify_response(response)
                    async for chunk in response.aiter_bytes():
                        decoder.feed(chunk)
            except _HTTPX_ERRORS as e:
                raise _translate_httpx_error("GET", url, e) from e
        return decoder.close()

    # --- Single users ---

    async def get_user(self, user_id: str, *, expand: str | None = None) -> dict[str, Any]:
        """Fetch a user's full JSON document.

        Args:
            user_id: Primary id of the user.
            expand: Optional ``expand`` value, e.g. ``"fees"``.
        """
        params = {"expand": expand} if expand else {}
        url = self._user_url(user_id)
        await self.rate_limiter.acquire()
        log.debug("GET %s", url)
        with self._telemetry("alma.request", method="GET", endpoint="user"):
            response = await self._send(
                "GET",
                url,
                params=self._with_key(params),
                headers={"Accept": JSON_MEDIA_TYPE},
            )
        try:
            user = response.json()
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(f"User {user_id}: response is not valid JSON: {e}") from e
        if not isinstance(user, dict):
            raise DecodeError(
                f"User {user_id}: expected a JSON object, got {type(user).__name__}"
            )
        return user

    async def update_user(self, user_id: str, user: dict[str, Any]) -> None:
        """Replace a user's document with a PUT of the full JSON body."""
        url = self._user_url(user_id)
        body = json.dumps(user, ensure_ascii=False).encode("utf-8")
        await self.rate_limiter.acquire()
        log.debug("PUT %s", url)
        with self._telemetry("alma.request", method="PUT", endpoint="user"):
            await self._send(
                "PUT",
                url,
                params=self._with_key({}),
                content=body,
                headers={
                    "Content-Type": JSON_MEDIA_TYPE,
                    "Accept": JSON_MEDIA_TYPE,
                },
            )

    # --- Internal helpers ---

    def _user_url(self, user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        return f"{self.base_url}{USERS_COLLECTION}/{quote_user_id(user_id)}"

    def _with_key(self, params: dict[str, str]) -> dict[str, str]:
        return {**params, APIKEY_PARAM: self._api_key}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except _HTTPX_ERRORS as e:
            raise _translate_httpx_error(method, url, e) from e
        if is_error_status(response.status_code):
            self._telemetry.count("errors", status_code=response.status_code)
            raise self._classifier.classify_response(response)
        return response
