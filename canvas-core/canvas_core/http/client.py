import inspect
import json
import threading
from typing import Any, Awaitable, Callable, List, Optional, Type, TypeVar, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from canvas_core.cache import CacheStats, ResponseCache, build_cache_key
from canvas_core.capabilities import (
    DISCOVERY_PATH,
    KNOWN_FEATURES,
    CapabilityDescriptor,
    CapabilityProbe,
)
from canvas_core.config import DEFAULT_USER_AGENT, ClientConfig
from canvas_core.exceptions import APIError, CanvasError, DecodeError
from canvas_core.rate_limit import AdaptiveRateLimiter, QuotaSnapshot
from canvas_core.retry import RetryPolicy

from .dryrun import generate_curl
from .pagination import LINK_HEADER, next_request_path, parse_pagination_links

# Generic type for Pydantic models
T = TypeVar("T", bound=BaseModel)

TokenSource = Callable[[], Union[str, Awaitable[str]]]

logger = structlog.get_logger(__name__)


class CanvasClient:
    """
    Quota-aware async client for the Canvas REST API.

    Features:
    - Adaptive pacing driven by X-Rate-Limit-Remaining.
    - Bounded exponential retries on network errors, 429 and 5xx.
    - Short-lived caching of successful GET responses.
    - Link-header pagination.
    - Background version/feature detection.

    Example:
        async with CanvasClient(ClientConfig(base_url=url, token=token)) as client:
            courses = await client.get_all_pages("/api/v1/courses", Course)
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        cache: Optional[ResponseCache] = None,
        token_source: Optional[TokenSource] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ClientConfig()
        self.config.validate(has_token_source=token_source is not None)

        self.base_url = self.config.base_url.rstrip("/")
        self.as_user_id = self.config.as_user_id
        self.user_agent = self.config.user_agent or DEFAULT_USER_AGENT
        self._token_source = token_source

        self.rate_limiter = AdaptiveRateLimiter(self.config.requests_per_second)
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self.config.max_retries,
            initial_backoff=self.config.initial_backoff,
            max_backoff=self.config.max_backoff,
        )

        self._owns_cache = cache is None and self.config.cache_enabled
        if self._owns_cache:
            cache = ResponseCache(ttl=self.config.cache_ttl)
        self._cache = cache
        self._cache_enabled = self.config.cache_enabled and cache is not None

        self._quota_total = self.config.quota_total
        self._lock = threading.Lock()

        self._owns_http = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.config.timeout,
                transport=transport,
                follow_redirects=True,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/json",
                },
            )
        self._http = http_client

        self.capability_probe = CapabilityProbe(self._fetch_capabilities)
        if self.config.dry_run:
            # Nothing is sent in dry-run mode, so assume everything is available
            self.capability_probe.publish(
                CapabilityDescriptor(version="dry-run", features=KNOWN_FEATURES)
            )

    async def __aenter__(self) -> "CanvasClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop background work and close the HTTP client if we own it."""
        await self.capability_probe.cancel()
        if self._owns_cache and self._cache is not None:
            await self._cache.close()
        if self._owns_http:
            await self._http.aclose()

    # Quota

    def set_quota_total(self, quota: float) -> None:
        """Override the assumed quota bucket size (default 700)."""
        with self._lock:
            self._quota_total = quota

    def get_quota_total(self) -> float:
        with self._lock:
            return self._quota_total

    @property
    def current_rate(self) -> float:
        return self.rate_limiter.current_rate

    # Capabilities

    @property
    def capabilities(self) -> Optional[CapabilityDescriptor]:
        return self.capability_probe.descriptor

    def get_version(self) -> Optional[str]:
        """Detected Canvas version, or None until the probe has published."""
        return self.capability_probe.get_version()

    def supports_feature(self, feature: str) -> bool:
        """False for unknown features and for anything asked before detection."""
        return self.capability_probe.supports_feature(feature)

    def warn_if_unsupported(self, feature: str) -> bool:
        supported = self.supports_feature(feature)
        if not supported:
            logger.warning(
                "feature_unsupported",
                feature=feature,
                version=self.get_version() or "unknown",
            )
        return supported

    # Cache

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self._cache

    @property
    def cache_enabled(self) -> bool:
        with self._lock:
            return self._cache_enabled

    def is_cache_enabled(self) -> bool:
        return self.cache_enabled

    def set_cache_enabled(self, enabled: bool) -> None:
        """Toggle caching; has no effect when the client has no cache."""
        with self._lock:
            self._cache_enabled = enabled and self._cache is not None

    def clear_cache(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def cache_stats(self) -> CacheStats:
        if self._cache is not None:
            return self._cache.stats()
        return CacheStats()

    def cache_key(self, path: str) -> str:
        return build_cache_key(self.base_url, path, self.as_user_id)

    def _ensure_sweeper(self) -> None:
        if self._owns_cache and self._cache is not None:
            self._cache.start_sweeper(self.config.cache_sweep_interval)

    # Request pipeline

    async def execute(
        self,
        method: str,
        path: str,
        json_body: Any = None,
    ) -> httpx.Response:
        """
        Run one logical exchange through cache, pacing and retries.

        Raises:
            APIError: For unfollowed 3xx and non-retryable 4xx responses
            RetryExhausted: When retryable failures outlast the retry budget
        """
        method = method.upper()

        cache_key = None
        if method == "GET" and self.cache_enabled:
            self._ensure_sweeper()
            cache_key = self.cache_key(path)
            cached = self._cached_response(cache_key, path)
            if cached is not None:
                return cached

        token = await self._get_token()
        url = self._with_identity(path)
        headers = self._request_headers(token)
        content = json.dumps(json_body).encode("utf-8") if json_body is not None else None

        if self.config.dry_run:
            return self._dry_run(method, url, headers, content)

        await self.rate_limiter.wait()

        async def attempt() -> httpx.Response:
            logger.debug("http_request", method=method, path=path)
            response = await self._http.request(method, url, content=content, headers=headers)
            self._observe(response)
            # Redirects are followed, so any 3xx left here is unusable
            if response.status_code >= 300:
                raise APIError.from_response(response, path=path)
            return response

        response = await self.retry_policy.run_with_retry(attempt)

        if cache_key is not None and self._is_cacheable(response):
            self._store(cache_key, response)

        return response

    async def get(self, path: str) -> httpx.Response:
        return await self.execute("GET", path)

    async def post(self, path: str, json_body: Any = None) -> httpx.Response:
        return await self.execute("POST", path, json_body)

    async def put(self, path: str, json_body: Any = None) -> httpx.Response:
        return await self.execute("PUT", path, json_body)

    async def get_json(self, path: str, response_model: Optional[Type[T]] = None) -> Union[T, Any]:
        response = await self.execute("GET", path)
        return self._decode(response, path, response_model)

    async def post_json(
        self,
        path: str,
        body: Any = None,
        response_model: Optional[Type[T]] = None,
    ) -> Union[T, Any]:
        response = await self.execute("POST", path, body)
        return self._decode(response, path, response_model)

    async def put_json(
        self,
        path: str,
        body: Any = None,
        response_model: Optional[Type[T]] = None,
    ) -> Union[T, Any]:
        response = await self.execute("PUT", path, body)
        return self._decode(response, path, response_model)

    async def delete(self, path: str, response_model: Optional[Type[T]] = None) -> Union[T, Any]:
        response = await self.execute("DELETE", path)
        return self._decode(response, path, response_model)

    async def get_all_pages(
        self,
        path: str,
        response_model: Optional[Type[T]] = None,
    ) -> Union[List[T], List[Any]]:
        """
        Follow `rel="next"` links and return every page's elements in order.

        Any failing page aborts the walk; no partial results are returned.
        Stops early once `max_results` elements are collected, if configured.
        """
        max_results = self.config.max_results
        results: List[Any] = []
        current: Optional[str] = path

        while current:
            response = await self.execute("GET", current)
            page = self._decode(response, current)
            if not isinstance(page, list):
                raise DecodeError(
                    "expected a JSON array page",
                    path=current,
                    status_code=response.status_code,
                    details=type(page).__name__,
                )

            if response_model is not None:
                page = [self._validate(item, current, response_model) for item in page]
            results.extend(page)

            if max_results > 0 and len(results) >= max_results:
                del results[max_results:]
                break

            links = parse_pagination_links(response)
            current = next_request_path(links.next) if links.has_next_page else None

        return results

    # Internals

    async def _get_token(self) -> str:
        if self._token_source is None:
            return self.config.token
        try:
            token = self._token_source()
            if inspect.isawaitable(token):
                token = await token
        except Exception as e:
            raise CanvasError(f"failed to get token: {e}") from e
        return token

    def _request_headers(self, token: str) -> dict:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }

    def _with_identity(self, path: str) -> str:
        """Add the masquerading parameter when acting as another user."""
        if not self.as_user_id:
            return path
        parts = urlsplit(path)
        query = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key != "as_user_id"
        ]
        query.append(("as_user_id", str(self.as_user_id)))
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    def _observe(self, response: httpx.Response) -> None:
        snapshot = QuotaSnapshot.from_headers(response.headers, self.get_quota_total())
        self.rate_limiter.observe(snapshot)
        self.capability_probe.trigger()

    async def _fetch_capabilities(self) -> httpx.Response:
        token = await self._get_token()
        await self.rate_limiter.wait()
        response = await self._http.get(
            self._with_identity(DISCOVERY_PATH),
            headers=self._request_headers(token),
        )
        self.rate_limiter.observe(
            QuotaSnapshot.from_headers(response.headers, self.get_quota_total())
        )
        return response

    @staticmethod
    def _is_cacheable(response: httpx.Response) -> bool:
        if not 200 <= response.status_code < 300:
            return False
        try:
            json.loads(response.content)
        except ValueError:
            return False
        return True

    def _store(self, key: str, response: httpx.Response) -> None:
        # Keep the Link header so cached pages still paginate
        envelope = {"body": response.text, "link": response.headers.get(LINK_HEADER)}
        self._cache.set(key, json.dumps(envelope).encode("utf-8"))

    def _cached_response(self, key: str, path: str) -> Optional[httpx.Response]:
        data = self._cache.get(key)
        if data is None:
            return None
        try:
            envelope = json.loads(data)
            body = envelope["body"]
        except (ValueError, KeyError, TypeError):
            self._cache.delete(key)
            return None

        headers = {"Content-Type": "application/json"}
        if envelope.get("link"):
            headers[LINK_HEADER] = envelope["link"]
        return httpx.Response(
            200,
            content=body.encode("utf-8"),
            headers=headers,
            request=httpx.Request("GET", self.base_url + path),
            extensions={"from_cache": True},
        )

    def _dry_run(
        self,
        method: str,
        url: str,
        headers: dict,
        content: Optional[bytes],
    ) -> httpx.Response:
        full_url = url if urlsplit(url).scheme else self.base_url + url
        curl = generate_curl(
            method,
            full_url,
            headers=headers,
            body=content.decode("utf-8") if content else None,
            show_token=self.config.show_token,
        )
        logger.info("dry_run_request", method=method, url=full_url, curl=curl)

        # An empty list decodes cleanly for list endpoints, the common case
        return httpx.Response(
            200,
            content=b"[]",
            headers={"Content-Type": "application/json"},
            request=httpx.Request(method, full_url),
            extensions={"dry_run": True},
        )

    def _decode(
        self,
        response: httpx.Response,
        path: str,
        response_model: Optional[Type[T]] = None,
    ) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(
                f"failed to decode response: {e}",
                path=path,
                status_code=response.status_code,
            ) from e
        if response_model is None:
            return data
        return self._validate(data, path, response_model)

    @staticmethod
    def _validate(data: Any, path: str, response_model: Type[T]) -> T:
        try:
            return response_model.model_validate(data)
        except ModelValidationError as e:
            raise DecodeError(
                f"response does not match {response_model.__name__}",
                path=path,
                details=e.errors(),
            ) from e
