"""Tests for the Alma users API client against a mocked transport."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from alma_batch.client.alma_client import AlmaClient, base_url_for_region, quote_user_id
from alma_batch.client.rate_limiter import RateLimiter
from alma_batch.config import FrozenConfig, RuleConfig
from alma_batch.core.exceptions import APIError, DecodeError, TransportError
from alma_batch.telemetry import SimpleReporter, TelemetryContext

BASE_URL = "https://alma.test/almaws/v1/"

LISTING = b"""<users total_record_count="3">
  <user><primary_id>a1</primary_id></user>
  <user><primary_id>b#2</primary_id></user>
</users>"""

ERROR_XML = b"""<web_service_result><errorList><error>
  <errorCode>401861</errorCode><errorMessage>not found</errorMessage>
  <trackingId>E01</trackingId>
</error></errorList></web_service_result>"""


def _client(handler, *, rate_limiter=None) -> AlmaClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AlmaClient(
        "secret-key",
        base_url=BASE_URL,
        rate_limiter=rate_limiter or RateLimiter(1000, jitter=0.0),
        http_client=http,
    )


def _mock_limiter() -> MagicMock:
    limiter = MagicMock(spec=RateLimiter)
    limiter.acquire = AsyncMock()
    return limiter


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_user_ids_and_total_sends_paging_parameters():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, headers={"Content-Type": "application/xml"}, content=LISTING
        )

    async with _client(handler) as client:
        ids, total = await client.list_user_ids_and_total(200, 100)

    assert ids == ["a1", "b#2"]
    assert total == 3
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/almaws/v1/users"
    assert dict(request.url.params) == {
        "order_by": "primary_id",
        "limit": "100",
        "offset": "200",
        "apikey": "secret-key",
    }
    assert request.headers["Accept"] == "application/xml"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_user_ids_tolerates_missing_total():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "application/xml"},
            content=b"<users><user><primary_id>z</primary_id></user></users>",
        )

    async with _client(handler) as client:
        assert await client.list_user_ids(0, 10) == ["z"]
        with pytest.raises(DecodeError, match="total record count"):
            await client.list_user_ids_and_total(0, 10)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_listing_error_status_raises_classified_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, headers={"Content-Type": "application/xml"}, content=ERROR_XML
        )

    async with _client(handler) as client:
        with pytest.raises(APIError) as exc_info:
            await client.list_user_ids(0, 100)

    assert exc_info.value.status_code == 400
    assert exc_info.value.error_codes == ("401861",)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_user_encodes_hash_in_path_and_passes_expand():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"primary_id": "b#2"})

    async with _client(handler) as client:
        user = await client.get_user("b#2", expand="fees")

    assert user == {"primary_id": "b#2"}
    request = seen[0]
    assert request.url.raw_path.startswith(b"/almaws/v1/users/b%232?")
    assert request.url.params["expand"] == "fees"
    assert request.url.params["apikey"] == "secret-key"
    assert request.headers["Accept"] == "application/json"


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"not json", b"[1, 2]"])
async def test_get_user_rejects_non_object_bodies(content):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, headers={"Content-Type": "application/json"}, content=content
        )

    async with _client(handler) as client:
        with pytest.raises(DecodeError):
            await client.get_user("a1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_user_json_error_body_is_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "errorsExist": True,
                "errorList": {
                    "error": [
                        {"errorCode": "401861", "errorMessage": "x", "trackingId": "t"}
                    ]
                },
            },
        )

    async with _client(handler) as client:
        with pytest.raises(APIError) as exc_info:
            await client.get_user("missing")

    assert exc_info.value.error_codes == ("401861",)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_user_puts_full_json_document():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=json.loads(request.content))

    user = {"primary_id": "a1", "user_title": {"value": "DR", "desc": "Dr."}}
    async with _client(handler) as client:
        await client.update_user("a1", user)

    request = seen[0]
    assert request.method == "PUT"
    assert request.url.path == "/almaws/v1/users/a1"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == user


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_failure_is_a_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(TransportError) as exc_info:
            await client.get_user("a1")

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_undecodable_listing_body_is_a_decode_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "application/xml", "Content-Encoding": "gzip"},
            stream=httpx.ByteStream(b"not gzip at all"),
        )

    async with _client(handler) as client:
        with pytest.raises(DecodeError, match="could not be decoded") as exc_info:
            await client.list_user_ids_and_total(0, 10)

    assert isinstance(exc_info.value.__cause__, httpx.DecodingError)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_undecodable_user_body_is_a_decode_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "application/json", "Content-Encoding": "gzip"},
            stream=httpx.ByteStream(b"not gzip at all"),
        )

    async with _client(handler) as client:
        with pytest.raises(DecodeError, match="could not be decoded"):
            await client.get_user("a1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redirect_loop_is_a_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("Exceeded maximum redirects.", request=request)

    async with _client(handler) as client:
        with pytest.raises(TransportError):
            await client.update_user("a1", {"primary_id": "a1"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_error_responses_are_counted_in_telemetry(monkeypatch):
    monkeypatch.setenv("ALMA_BATCH_TELEMETRY", "1")
    reporter = SimpleReporter()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, headers={"Content-Type": "application/xml"}, content=ERROR_XML
        )

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = AlmaClient(
        "secret-key",
        base_url=BASE_URL,
        rate_limiter=RateLimiter(1000, jitter=0.0),
        http_client=http,
        telemetry=TelemetryContext(reporter),
    )
    async with client:
        for _ in range(2):
            with pytest.raises(APIError):
                await client.get_user("a1")

    assert reporter.metrics["alma.request.errors"] == [1, 1]
    assert len(reporter.timings["alma.request"]) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_every_request_waits_on_the_rate_limiter():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            return httpx.Response(200, json={})
        if request.url.path.endswith("/users"):
            return httpx.Response(
                200, headers={"Content-Type": "application/xml"}, content=LISTING
            )
        return httpx.Response(200, json={"primary_id": "a1"})

    limiter = _mock_limiter()
    async with _client(handler, rate_limiter=limiter) as client:
        await client.list_user_ids_and_total(0, 100)
        await client.list_user_ids(100, 100)
        await client.get_user("a1")
        await client.update_user("a1", {"primary_id": "a1"})

    assert limiter.acquire.await_count == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_injected_http_client_is_not_closed():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    client = AlmaClient("k", base_url=BASE_URL, http_client=http)

    await client.aclose()

    assert not http.is_closed
    await http.aclose()


@pytest.mark.unit
def test_repr_redacts_api_key():
    client = AlmaClient("secret-key", region="eu")

    assert "secret-key" not in repr(client)
    assert client.base_url == "https://api-eu.hosted.exlibrisgroup.com/almaws/v1/"


@pytest.mark.unit
def test_constructor_requires_region_or_base_url():
    with pytest.raises(ValueError, match="region or base_url"):
        AlmaClient("k")
    with pytest.raises(ValueError, match="api_key"):
        AlmaClient(" ", region="eu")


@pytest.mark.unit
def test_from_config_builds_limiter_from_settings():
    config = FrozenConfig(
        api_key="k",
        base_url="https://alma.test/almaws/v1",
        page_size=50,
        requests_per_second=5.0,
        burst=2,
        jitter_ms=20.0,
        timeout_seconds=10.0,
        max_concurrency=None,
        rules=RuleConfig(),
    )

    client = AlmaClient.from_config(config)

    assert client.base_url == "https://alma.test/almaws/v1/"
    assert client.rate_limiter.requests_per_second == 5.0
    assert client.rate_limiter.burst == 2
    assert client.rate_limiter.jitter == pytest.approx(0.02)


@pytest.mark.unit
def test_url_helpers():
    assert base_url_for_region("na") == (
        "https://api-na.hosted.exlibrisgroup.com/almaws/v1/"
    )
    assert quote_user_id("a#b?c%d") == "a%23b%3Fc%25d"
    assert quote_user_id("a/b c") == "a%2Fb%20c"
    with pytest.raises(ValueError):
        base_url_for_region("  ")
