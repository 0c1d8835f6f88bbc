"""
Tests for CanvasClient
======================
End-to-end behaviour of the request pipeline against a mock transport.
"""

import asyncio
import json

import httpx
import pytest
from pydantic import BaseModel
from structlog.testing import capture_logs

from canvas_core import (
    DEFAULT_QUOTA_TOTAL,
    APIError,
    ClientConfig,
    ConfigurationError,
    DecodeError,
    ForbiddenError,
    NotFoundError,
    RetryExhausted,
    is_not_found_error,
    is_server_error,
)
from canvas_core.http import CanvasClient

BASE_URL = "https://canvas.example.com"
META = "version=2024.01.15;region=us-east-1"
ACCOUNTS = "/api/v1/accounts"
COURSES = "/api/v1/courses"


class Course(BaseModel):
    id: int
    name: str


class FakeCanvas:
    """
    Mock transport handler.

    Routes map a path to a callable taking the request and returning a
    response. The discovery endpoint answers with version metadata unless
    overridden.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is not None:
            return handler(request)
        if request.url.path == ACCOUNTS:
            return httpx.Response(200, json=[], headers={"X-Canvas-Meta": META})
        return httpx.Response(404, json={"errors": [{"message": "The specified resource does not exist."}]})

    def calls(self, path: str):
        return [r for r in self.requests if r.url.path == path]


def make_client(fake: FakeCanvas, **overrides) -> CanvasClient:
    settings = dict(
        base_url=BASE_URL,
        token="secret-token",
        requests_per_second=1000.0,
        initial_backoff=0.001,
        max_backoff=0.004,
        as_user_id=None,
        max_results=0,
    )
    settings.update(overrides)
    token_source = settings.pop("token_source", None)
    return CanvasClient(
        ClientConfig(**settings),
        token_source=token_source,
        transport=httpx.MockTransport(fake),
    )


def sequence(*responses):
    """Route handler that replays `responses` in order, repeating the last."""
    remaining = list(responses)

    def handler(request):
        template = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(template.status_code, headers=template.headers, content=template.content)

    return handler


def page(items, next_page=None):
    headers = {}
    if next_page is not None:
        headers["Link"] = f'<{BASE_URL}{COURSES}?page={next_page}&per_page=2>; rel="next"'

    def handler(request):
        return httpx.Response(200, json=items, headers=headers)

    return handler


class TestConfiguration:
    """Tests for client construction."""

    def test_missing_base_url(self):
        with pytest.raises(ConfigurationError):
            CanvasClient(ClientConfig(base_url="", token="t"))

    def test_missing_token(self):
        with pytest.raises(ConfigurationError):
            CanvasClient(ClientConfig(base_url=BASE_URL, token=""))

    def test_token_source_replaces_token(self):
        client = CanvasClient(ClientConfig(base_url=BASE_URL, token=""), token_source=lambda: "t")

        assert client.base_url == BASE_URL

    @pytest.mark.parametrize("field,value", [
        ("requests_per_second", 0),
        ("quota_total", -1),
        ("max_retries", -1),
        ("cache_sweep_interval", 0),
    ])
    def test_invalid_numbers(self, field, value):
        with pytest.raises(ConfigurationError):
            CanvasClient(ClientConfig(base_url=BASE_URL, token="t", **{field: value}))

    def test_default_quota_total(self):
        assert DEFAULT_QUOTA_TOTAL == 700.0

    def test_quota_total_override(self):
        client = CanvasClient(ClientConfig(base_url=BASE_URL, token="t", quota_total=700.0))

        assert client.get_quota_total() == 700.0
        client.set_quota_total(1000.0)
        assert client.get_quota_total() == 1000.0


class TestRequests:
    """Tests for request construction and decoding."""

    @pytest.mark.asyncio
    async def test_get_json_sends_auth_and_user_agent(self):
        fake = FakeCanvas({COURSES: page([{"id": 1, "name": "Math"}])})

        async with make_client(fake) as client:
            data = await client.get_json(COURSES)

        assert data == [{"id": 1, "name": "Math"}]
        request = fake.calls(COURSES)[0]
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["User-Agent"] == "canvas-cli"
        assert request.url.host == "canvas.example.com"

    @pytest.mark.asyncio
    async def test_custom_user_agent(self):
        fake = FakeCanvas({COURSES: page([])})

        async with make_client(fake, user_agent="grader/2.0") as client:
            await client.get_json(COURSES)

        assert fake.calls(COURSES)[0].headers["User-Agent"] == "grader/2.0"

    @pytest.mark.asyncio
    async def test_as_user_id_is_sent(self):
        fake = FakeCanvas({COURSES: page([])})

        async with make_client(fake, as_user_id=42) as client:
            await client.get_json(f"{COURSES}?per_page=5")

        params = fake.calls(COURSES)[0].url.params
        assert params["as_user_id"] == "42"
        assert params["per_page"] == "5"

    @pytest.mark.asyncio
    async def test_async_token_source(self):
        fake = FakeCanvas({COURSES: page([])})

        async def refresh():
            return "fresh-token"

        async with make_client(fake, token="", token_source=refresh) as client:
            await client.get_json(COURSES)

        assert fake.calls(COURSES)[0].headers["Authorization"] == "Bearer fresh-token"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(200, json=json.loads(request.content))})

        async with make_client(fake) as client:
            course = await client.post_json(COURSES, {"id": 3, "name": "Art"}, response_model=Course)

        assert course == Course(id=3, name="Art")
        assert fake.calls(COURSES)[0].method == "POST"

    @pytest.mark.asyncio
    async def test_delete_no_content(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(204)})

        async with make_client(fake) as client:
            assert await client.delete(COURSES) is None

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(200, content=b"{not json")})

        async with make_client(fake) as client:
            with pytest.raises(DecodeError) as exc_info:
                await client.get_json(COURSES)

        assert exc_info.value.path == COURSES

    @pytest.mark.asyncio
    async def test_model_mismatch(self):
        fake = FakeCanvas({COURSES: page({"id": "not-a-number"})})

        async with make_client(fake) as client:
            with pytest.raises(DecodeError):
                await client.get_json(COURSES, response_model=Course)

    @pytest.mark.asyncio
    async def test_redirect_is_followed(self):
        """A 302 should be followed to the resource it points at."""
        fake = FakeCanvas({
            f"{COURSES}/1": lambda request: httpx.Response(302, headers={"Location": f"{COURSES}/2"}),
            f"{COURSES}/2": lambda request: httpx.Response(200, json={"id": 2, "name": "Moved"}),
        })

        async with make_client(fake) as client:
            course = await client.get_json(f"{COURSES}/1", response_model=Course)

        assert course == Course(id=2, name="Moved")
        assert len(fake.calls(f"{COURSES}/2")) == 1

    @pytest.mark.asyncio
    async def test_unfollowed_redirect_raises(self):
        """An injected client that stops at a 3xx must not yield an empty result."""
        fake = FakeCanvas({
            f"{COURSES}/1": lambda request: httpx.Response(302, headers={"Location": f"{COURSES}/2"}),
        })

        async with httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(fake)) as http:
            client = CanvasClient(
                ClientConfig(base_url=BASE_URL, token="t", requests_per_second=1000.0, as_user_id=None),
                http_client=http,
            )
            async with client:
                with pytest.raises(APIError) as exc_info:
                    await client.get_json(f"{COURSES}/1")

        assert exc_info.value.status_code == 302
        assert len(fake.calls(f"{COURSES}/1")) == 1


class TestErrors:
    """Tests for status handling and retries."""

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self):
        fake = FakeCanvas()

        async with make_client(fake) as client:
            with pytest.raises(NotFoundError) as exc_info:
                await client.get_json("/api/v1/courses/999")

        assert len(fake.calls("/api/v1/courses/999")) == 1
        assert exc_info.value.errors[0].message == "The specified resource does not exist."
        assert is_not_found_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        """Two 503s then success should succeed on the third attempt."""
        fake = FakeCanvas({COURSES: sequence(
            httpx.Response(503),
            httpx.Response(503),
            httpx.Response(200, json=[{"id": 1, "name": "Math"}]),
        )})

        async with make_client(fake) as client:
            data = await client.get_json(COURSES)

        assert data == [{"id": 1, "name": "Math"}]
        assert len(fake.calls(COURSES)) == 3

    @pytest.mark.asyncio
    async def test_rate_limited_then_success(self):
        fake = FakeCanvas({COURSES: sequence(
            httpx.Response(429, headers={"X-Rate-Limit-Remaining": "0"}),
            httpx.Response(200, json=[]),
        )})

        async with make_client(fake) as client:
            assert await client.get_json(COURSES) == []

        assert len(fake.calls(COURSES)) == 2

    @pytest.mark.asyncio
    async def test_persistent_server_error_exhausts(self):
        fake = FakeCanvas({COURSES: sequence(httpx.Response(500))})

        async with make_client(fake, max_retries=3) as client:
            with pytest.raises(RetryExhausted) as exc_info:
                await client.get_json(COURSES)

        assert len(fake.calls(COURSES)) == 4
        assert exc_info.value.attempts == 4
        assert is_server_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) < 2:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json=[])

        fake = FakeCanvas({COURSES: flaky})

        async with make_client(fake) as client:
            assert await client.get_json(COURSES) == []

        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self):
        attempts = []

        async def slow(request):
            attempts.append(request)
            await asyncio.sleep(10)
            return httpx.Response(200, json=[])

        async def handler(request):
            if request.url.path == COURSES:
                return await slow(request)
            return httpx.Response(200, json=[])

        client = CanvasClient(
            ClientConfig(base_url=BASE_URL, token="t", requests_per_second=1000.0),
            transport=httpx.MockTransport(handler),
        )
        async with client:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(client.get_json(COURSES), timeout=0.05)

        assert len(attempts) == 1


class TestCaching:
    """Tests for GET response caching."""

    @pytest.mark.asyncio
    async def test_repeat_get_is_served_from_cache(self):
        fake = FakeCanvas({COURSES: page([{"id": 1, "name": "Math"}])})

        async with make_client(fake) as client:
            first = await client.get_json(COURSES)
            response = await client.get(COURSES)

        assert response.json() == first
        assert response.extensions.get("from_cache") is True
        assert len(fake.calls(COURSES)) == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_by_config(self):
        fake = FakeCanvas({COURSES: page([])})

        async with make_client(fake, cache_enabled=False) as client:
            await client.get_json(COURSES)
            await client.get_json(COURSES)

        assert client.cache is None
        assert len(fake.calls(COURSES)) == 2

    @pytest.mark.asyncio
    async def test_toggle_and_clear(self):
        fake = FakeCanvas({COURSES: page([])})

        async with make_client(fake) as client:
            await client.get_json(COURSES)
            client.set_cache_enabled(False)
            await client.get_json(COURSES)
            assert len(fake.calls(COURSES)) == 2

            client.set_cache_enabled(True)
            await client.get_json(COURSES)
            assert len(fake.calls(COURSES)) == 2

            client.clear_cache()
            await client.get_json(COURSES)
            assert len(fake.calls(COURSES)) == 3
            assert client.cache_stats().active == 1

    @pytest.mark.asyncio
    async def test_writes_are_never_cached(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(200, json={"id": 1, "name": "x"})})

        async with make_client(fake) as client:
            await client.post_json(COURSES, {"name": "x"})
            await client.post_json(COURSES, {"name": "x"})

        assert len(fake.calls(COURSES)) == 2
        assert client.cache_stats().total == 0

    @pytest.mark.asyncio
    async def test_errors_are_never_cached(self):
        fake = FakeCanvas()

        async with make_client(fake) as client:
            for _ in range(2):
                with pytest.raises(NotFoundError):
                    await client.get_json("/api/v1/courses/1")

        assert len(fake.calls("/api/v1/courses/1")) == 2

    @pytest.mark.asyncio
    async def test_acting_user_does_not_share_cache(self):
        fake = FakeCanvas({COURSES: page([])})
        cache_owner = make_client(fake)

        async with cache_owner:
            other = CanvasClient(
                ClientConfig(
                    base_url=BASE_URL,
                    token="t",
                    requests_per_second=1000.0,
                    as_user_id=9,
                ),
                cache=cache_owner.cache,
                transport=httpx.MockTransport(fake),
            )
            async with other:
                await cache_owner.get_json(COURSES)
                await other.get_json(COURSES)

        assert len(fake.calls(COURSES)) == 2

    @pytest.mark.asyncio
    async def test_expired_entries_are_swept(self):
        """The client's own cache should not keep expired pages forever."""
        def course(request):
            return httpx.Response(200, json={"path": request.url.path})

        fake = FakeCanvas({f"{COURSES}/{n}": course for n in range(20)})

        async with make_client(fake, cache_ttl=0.01, cache_sweep_interval=0.01) as client:
            for n in range(20):
                await client.get_json(f"{COURSES}/{n}")
            await asyncio.sleep(0.1)
            stats = client.cache_stats()

        assert stats.expired == 0
        assert stats.total == 0


class TestPagination:
    """Tests for get_all_pages."""

    @pytest.mark.asyncio
    async def test_collects_pages_in_order(self):
        def courses(request):
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"id": 3, "name": "C"}])
            return page([{"id": 1, "name": "A"}, {"id": 2, "name": "B"}], next_page=2)(request)

        fake = FakeCanvas({COURSES: courses})

        async with make_client(fake) as client:
            results = await client.get_all_pages(COURSES, response_model=Course)

        assert [c.id for c in results] == [1, 2, 3]
        assert [r.url.params.get("page") for r in fake.calls(COURSES)] == [None, "2"]

    @pytest.mark.asyncio
    async def test_cached_pages_keep_links(self):
        def courses(request):
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[3])
            return page([1, 2], next_page=2)(request)

        fake = FakeCanvas({COURSES: courses})

        async with make_client(fake) as client:
            assert await client.get_all_pages(COURSES) == [1, 2, 3]
            assert await client.get_all_pages(COURSES) == [1, 2, 3]

        assert len(fake.calls(COURSES)) == 2

    @pytest.mark.asyncio
    async def test_failing_page_aborts(self):
        def courses(request):
            if request.url.params.get("page") == "2":
                return httpx.Response(404)
            return page([1, 2], next_page=2)(request)

        fake = FakeCanvas({COURSES: courses})

        async with make_client(fake) as client:
            with pytest.raises(NotFoundError):
                await client.get_all_pages(COURSES)

    @pytest.mark.asyncio
    async def test_max_results_stops_early(self):
        def courses(request):
            number = int(request.url.params.get("page", "1"))
            return page([number * 10, number * 10 + 1], next_page=number + 1)(request)

        fake = FakeCanvas({COURSES: courses})

        async with make_client(fake, max_results=3) as client:
            results = await client.get_all_pages(COURSES)

        assert results == [10, 11, 20]
        assert len(fake.calls(COURSES)) == 2

    @pytest.mark.asyncio
    async def test_non_array_page(self):
        fake = FakeCanvas({COURSES: page({"id": 1})})

        async with make_client(fake) as client:
            with pytest.raises(DecodeError):
                await client.get_all_pages(COURSES)


class TestQuotaAdaptation:
    """Tests for quota-driven pacing."""

    @pytest.mark.asyncio
    async def test_low_quota_slows_down(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(
            200, json=[], headers={"X-Rate-Limit-Remaining": "100"}
        )})

        async with make_client(fake, requests_per_second=5.0) as client:
            await client.get_json(COURSES)
            # 100 / 700 is below the critical threshold
            assert client.current_rate == 1.0

    @pytest.mark.asyncio
    async def test_quota_total_header(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(
            200,
            json=[],
            headers={"X-Rate-Limit-Remaining": "400", "X-Rate-Limit-Total": "1000"},
        )})

        async with make_client(fake, requests_per_second=5.0) as client:
            await client.get_json(COURSES)
            assert client.current_rate == 2.0

    @pytest.mark.asyncio
    async def test_error_responses_still_adjust(self):
        fake = FakeCanvas({COURSES: lambda request: httpx.Response(
            403, headers={"X-Rate-Limit-Remaining": "300"}
        )})

        async with make_client(fake, requests_per_second=5.0, quota_total=1000.0) as client:
            with pytest.raises(ForbiddenError):
                await client.get_json(COURSES)
            assert client.current_rate == 2.0


class TestCapabilityDetection:
    """Tests for background version detection."""

    @pytest.mark.asyncio
    async def test_version_unknown_before_first_request(self):
        fake = FakeCanvas()

        async with make_client(fake) as client:
            assert client.get_version() is None
            assert client.supports_feature("graphql") is False

        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_probe_after_first_response(self):
        fake = FakeCanvas({COURSES: page([])})

        async with make_client(fake) as client:
            await client.get_json(COURSES)
            await client.capability_probe.wait()

            assert client.get_version() == "2024.01.15"
            assert client.supports_feature("canvas_studio") is True
            assert client.supports_feature("teleportation") is False
            assert client.capabilities.meta["region"] == "us-east-1"

    @pytest.mark.asyncio
    async def test_probe_runs_once_under_concurrency(self):
        fake = FakeCanvas({
            f"{COURSES}/{n}": (lambda request: httpx.Response(200, json={}))
            for n in range(5)
        })

        async with make_client(fake) as client:
            await asyncio.gather(*(client.get_json(f"{COURSES}/{n}") for n in range(5)))
            await client.capability_probe.wait()
            await client.get_json(f"{COURSES}/0?fresh=1")

        assert len(fake.calls(ACCOUNTS)) == 1

    @pytest.mark.asyncio
    async def test_failed_probe_is_harmless(self):
        fake = FakeCanvas({
            COURSES: page([]),
            ACCOUNTS: lambda request: httpx.Response(500),
        })

        async with make_client(fake) as client:
            await client.get_json(COURSES)
            await client.capability_probe.wait()

            # A 500 without metadata publishes nothing
            assert client.capabilities is None
            assert client.get_version() is None
            assert client.supports_feature("graphql") is False

    @pytest.mark.asyncio
    async def test_warn_if_unsupported(self):
        fake = FakeCanvas()

        async with make_client(fake) as client:
            with capture_logs() as logs:
                assert client.warn_if_unsupported("graphql") is False

        assert logs[0]["event"] == "feature_unsupported"
        assert logs[0]["version"] == "unknown"


class TestDryRun:
    """Tests for dry-run mode."""

    @pytest.mark.asyncio
    async def test_nothing_is_sent(self):
        fake = FakeCanvas()

        async with make_client(fake, dry_run=True) as client:
            with capture_logs() as logs:
                result = await client.post_json(COURSES, {"name": "x"})

            assert client.get_version() == "dry-run"
            assert client.supports_feature("graphql") is True

        assert result == []
        assert fake.requests == []
        entry = next(e for e in logs if e["event"] == "dry_run_request")
        assert entry["method"] == "POST"
        assert "Bearer [REDACTED]" in entry["curl"]
        assert "secret-token" not in entry["curl"]
        assert entry["curl"].startswith(f"curl -X POST '{BASE_URL}{COURSES}'")

    @pytest.mark.asyncio
    async def test_show_token(self):
        fake = FakeCanvas()

        async with make_client(fake, dry_run=True, show_token=True) as client:
            with capture_logs() as logs:
                await client.get_json(COURSES)

        entry = next(e for e in logs if e["event"] == "dry_run_request")
        assert "Bearer secret-token" in entry["curl"]
