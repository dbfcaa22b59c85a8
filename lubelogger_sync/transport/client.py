"""
Resilient HTTP transport for the LubeLogger API.

Every outbound call goes through ResilientTransport, which layers
rate-limit compliance, a circuit breaker and jittered exponential
backoff over an aiohttp ClientSession:

1. Wait out an exhausted rate-limit window (does not consume a retry).
2. Fail fast with CircuitOpenError while the circuit is open.
3. Retry transport failures, timeouts and 5xx responses with backoff.
4. Retry 429 responses after Retry-After; return the 429 once retries run out.

Breaker and rate-limit state belong to the transport instance, so two
transports pointed at different servers never interfere.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlencode

import aiohttp

from ..config import TransportConfig
from ..exceptions import CircuitOpenError, ServerError, TransportError
from .resilience import (
    CircuitBreaker,
    CircuitState,
    RateLimitInfo,
    backoff_delay,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

Pairs = Sequence[tuple[str, Any]]

_RETRYABLE_EXCEPTIONS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass
class ApiResponse:
    """A fully-read HTTP response."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to None."""
        if not self.body.strip():
            return None
        return json.loads(self.body)


@dataclass
class HealthStatus:
    """Timestamped outcome of the last health probe."""

    is_healthy: bool
    last_checked: datetime
    circuit_state: CircuitState
    rate_limit: RateLimitInfo
    response_time_ms: int = 0
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "last_checked": self.last_checked.isoformat(),
            "circuit_state": self.circuit_state.value,
            "rate_limit": self.rate_limit.to_dict(),
            "response_time_ms": self.response_time_ms,
            "diagnostics": self.diagnostics,
        }


def _clean_pairs(pairs: Pairs | None) -> list[tuple[str, str]]:
    if not pairs:
        return []
    return [(key, str(value)) for key, value in pairs if key and value is not None]


class ResilientTransport:
    """HTTP client with throttling, circuit breaking and retry.

    Example:
        >>> async with ResilientTransport(TransportConfig(base_url="https://lube.example")) as t:
        ...     t.set_auth_header("Basic dXNlcjpwYXNz")
        ...     response = await t.get("/api/vehicles")
        ...     vehicles = response.json()
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the transport.

        Args:
            config: Transport configuration (defaults if None)
            session: Existing aiohttp session to use; created lazily if None
        """
        self.config = config or TransportConfig()
        self.circuit = CircuitBreaker(
            failure_threshold=self.config.circuit_breaker_failure_threshold,
            reset_timeout=self.config.reset_timeout,
        )
        self.rate_limit = RateLimitInfo()

        self._session = session
        self._owns_session = session is None
        self._headers: dict[str, str] = {"Accept": "application/json"}
        self._features: dict[str, bool] = {}
        self._last_health: HealthStatus | None = None

    async def __aenter__(self) -> ResilientTransport:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying session if this transport created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    # =========================================================================
    # Configuration
    # =========================================================================

    def set_auth_header(self, value: str) -> None:
        """Set the Authorization header.

        A value that already names its scheme ("Basic ...", "Bearer ...") is
        sent verbatim; a bare token is sent as a Bearer token.
        """
        if " " not in value.strip():
            value = f"Bearer {value.strip()}"
        self._headers["Authorization"] = value

    def clear_auth_header(self) -> None:
        self._headers.pop("Authorization", None)

    @property
    def has_auth(self) -> bool:
        return "Authorization" in self._headers

    def set_base_url(self, base_url: str) -> None:
        self.config = replace(self.config, base_url=base_url)
        self._last_health = None
        self._features.clear()

    def set_api_version(self, api_version: str) -> None:
        self.config = replace(self.config, api_version=api_version or "")
        self._features.clear()

    def build_url(self, endpoint: str) -> str:
        """Resolve an endpoint against the base URL, inserting the API version.

        With api_version "v2", "/api/vehicles" becomes "/api/v2/vehicles".
        """
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        version = self.config.api_version.strip("/")
        if version and path.startswith("/api/") and not path.startswith(f"/api/{version}/"):
            path = f"/api/{version}/{path[len('/api/'):]}"
        return self.config.base_url.rstrip("/") + path

    @property
    def circuit_state(self) -> CircuitState:
        return self.circuit.state

    # =========================================================================
    # HTTP verbs
    # =========================================================================

    async def get(self, endpoint: str, params: Pairs | None = None) -> ApiResponse:
        return await self._send("GET", endpoint, params=params)

    async def post_form(
        self, endpoint: str, form: Pairs | None = None, params: Pairs | None = None
    ) -> ApiResponse:
        return await self._send("POST", endpoint, params=params, form=form or [])

    async def put_form(
        self, endpoint: str, form: Pairs | None = None, params: Pairs | None = None
    ) -> ApiResponse:
        return await self._send("PUT", endpoint, params=params, form=form or [])

    async def delete(self, endpoint: str, params: Pairs | None = None) -> ApiResponse:
        return await self._send("DELETE", endpoint, params=params)

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Pairs | None = None,
        form: Pairs | None = None,
        max_retries: int | None = None,
    ) -> ApiResponse:
        """Issue one logical call, applying throttle, breaker and retry rules.

        Raises:
            CircuitOpenError: The breaker rejected the call before any network attempt
            ServerError: Every attempt returned a 5xx status
            TransportError: Every attempt failed at the network level
        """
        url = self.build_url(endpoint)
        query = _clean_pairs(params)
        body = _clean_pairs(form) if form is not None else None
        allowed = self.config.max_retries if max_retries is None else max_retries
        base_delay = self.config.base_retry_delay
        retry = 0

        while True:
            await self._throttle(url)

            if self.config.enable_circuit_breaker and not self.circuit.allow_request():
                retry_at = self.circuit.reset_time
                state = self.circuit.state.value
                logger.warning("CIRCUIT_%s: rejecting %s %s", state.upper(), method, url)
                raise CircuitOpenError(url, retry_at.isoformat() if retry_at else None, state)

            try:
                response = await self._dispatch(method, url, query, body)
            except _RETRYABLE_EXCEPTIONS as exc:
                self._record_failure()
                if retry >= allowed:
                    logger.error(
                        "RETRY_EXHAUSTED: %s %s attempt=%d/%d: %s",
                        method,
                        url,
                        retry + 1,
                        allowed + 1,
                        exc,
                    )
                    raise TransportError(method, url, retry + 1, exc) from exc
                delay = backoff_delay(retry, base_delay)
                logger.warning(
                    "RETRYING: %s %s attempt=%d/%d delay=%.2fs: %s",
                    method,
                    url,
                    retry + 1,
                    allowed + 1,
                    delay,
                    exc,
                )
                await self._wait(delay)
                retry += 1
                continue
            except BaseException:
                # Cancellation or an unexpected error; no outcome to record
                if self.config.enable_circuit_breaker:
                    self.circuit.release_probe()
                raise

            self.rate_limit.update_from_headers(response.headers)

            if response.status >= 500:
                self._record_failure()
                if retry >= allowed:
                    logger.error(
                        "RETRY_EXHAUSTED: %s %s status=%d attempt=%d/%d",
                        method,
                        url,
                        response.status,
                        retry + 1,
                        allowed + 1,
                    )
                    raise ServerError(method, url, retry + 1, response.status)
                delay = backoff_delay(retry, base_delay)
                logger.warning(
                    "RETRYING: %s %s status=%d attempt=%d/%d delay=%.2fs",
                    method,
                    url,
                    response.status,
                    retry + 1,
                    allowed + 1,
                    delay,
                )
                await self._wait(delay)
                retry += 1
                continue

            self._record_success()

            if response.status == 429:
                if retry >= allowed:
                    logger.warning(
                        "THROTTLED: %s %s still 429 after %d attempt(s), returning response",
                        method,
                        url,
                        retry + 1,
                    )
                    return response
                delay = parse_retry_after(response.headers.get("Retry-After"))
                if delay is None:
                    delay = backoff_delay(retry, base_delay)
                logger.warning(
                    "THROTTLED: 429 Too Many Requests %s %s attempt=%d/%d retry_after=%.2fs",
                    method,
                    url,
                    retry + 1,
                    allowed + 1,
                    delay,
                )
                await self._wait(delay)
                retry += 1
                continue

            if retry > 0:
                logger.info(
                    "RETRY_RECOVERED: %s %s succeeded on attempt %d", method, url, retry + 1
                )
            return response

    async def _dispatch(
        self,
        method: str,
        url: str,
        query: list[tuple[str, str]],
        body: list[tuple[str, str]] | None,
    ) -> ApiResponse:
        session = self._get_session()
        data = aiohttp.FormData(body) if body is not None else None
        async with session.request(
            method,
            url,
            params=query or None,
            data=data,
            headers=self._headers,
        ) as response:
            payload = await response.read()
            return ApiResponse(
                status=response.status,
                headers=response.headers,
                body=payload,
                url=str(response.url),
            )

    async def _throttle(self, url: str) -> None:
        if not self.config.enable_throttling or not self.rate_limit.must_wait():
            return
        delay = self.rate_limit.seconds_until_reset()
        self.rate_limit.is_throttled = True
        logger.warning("THROTTLED: rate limit exhausted, waiting %.2fs before %s", delay, url)
        await self._wait(delay)
        self.rate_limit.is_throttled = False

    async def _wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _record_failure(self) -> None:
        if self.config.enable_circuit_breaker:
            self.circuit.record_failure()

    def _record_success(self) -> None:
        if self.config.enable_circuit_breaker:
            self.circuit.record_success()

    # =========================================================================
    # Probes
    # =========================================================================

    async def check_health(self) -> HealthStatus:
        """Probe the identity endpoint once, without retries.

        2xx and 401 both mean the server is up; anything else, or any
        exception, means unhealthy. The result is cached as last_health.
        """
        started = time.monotonic()
        diagnostics: dict[str, Any] = {"endpoint": self.config.health_endpoint}
        try:
            response = await self._send("GET", self.config.health_endpoint, max_retries=0)
            healthy = response.ok or response.status == 401
            diagnostics["status_code"] = response.status
        except Exception as e:
            healthy = False
            diagnostics["error"] = str(e)
            diagnostics["error_type"] = type(e).__name__

        status = HealthStatus(
            is_healthy=healthy,
            last_checked=datetime.now(UTC),
            circuit_state=self.circuit.state,
            rate_limit=replace(self.rate_limit),
            response_time_ms=int((time.monotonic() - started) * 1000),
            diagnostics=diagnostics,
        )
        self._last_health = status
        if not healthy:
            logger.warning(f"API health check failed: {diagnostics}")
        return status

    async def is_api_available(self) -> bool:
        return (await self.check_health()).is_healthy

    @property
    def last_health(self) -> HealthStatus | None:
        return self._last_health

    async def detect_feature(self, feature_name: str, test_endpoint: str) -> bool:
        """Check whether the server supports a feature, memoized per name.

        2xx and 404 both count as supported (the route exists but the test
        resource may not). Errors report False without being memoized.
        """
        if feature_name in self._features:
            return self._features[feature_name]
        try:
            response = await self.get(test_endpoint)
        except Exception as e:
            logger.warning(f"Feature detection for {feature_name} failed: {e}")
            return False
        supported = response.ok or response.status == 404
        self._features[feature_name] = supported
        logger.debug(f"Feature {feature_name} supported={supported}")
        return supported

    def clear_feature_cache(self) -> None:
        self._features.clear()

    @staticmethod
    def validate_payload_size(payload: str | bytes | Pairs, max_bytes: int) -> bool:
        """Return True when the encoded payload fits within max_bytes."""
        if isinstance(payload, str):
            size = len(payload.encode("utf-8"))
        elif isinstance(payload, bytes):
            size = len(payload)
        else:
            size = len(urlencode(_clean_pairs(payload)).encode("utf-8"))
        return size <= max_bytes
