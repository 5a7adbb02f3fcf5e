"""
Shared async HTTP client for upstream API calls.

Goals:
- Admit every attempt through the RateLimiter before it goes out.
- Bound each attempt with its own timeout (cancellation), counting an expiry
  as a retryable failure.
- Retry 5xx / 429 / 408 with exponential backoff (1s, 2s, 4s, ...); surface
  everything else immediately.
- Preserve the upstream error fields (code, message, type) plus the endpoint
  on the exception that is finally raised.

This module avoids any framework coupling (Starlette/MCP/etc.).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urlsplit

import httpx

from ads_common.errors import (
    RequestTimeoutError,
    UpstreamError,
    UpstreamTerminalError,
    UpstreamTransientError,
)
from ads_sources.core_infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_S = 1.0
RETRYABLE_STATUSES = (408, 429)


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUSES


def endpoint_label(url: str) -> str:
    """URL without query string; next-page URLs carry the access token."""
    parts = urlsplit(url)
    if not parts.scheme:
        return url.split("?", 1)[0]
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


@dataclass(frozen=True)
class HttpClientConfig:
    timeout: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE_S
    user_agent: str = "meta-ads-mcp/1.0"

    def backoff(self, attempt: int) -> float:
        """Delay after the 0-indexed `attempt` failed."""
        return (2 ** attempt) * self.backoff_base


@dataclass
class RequestAttempt:
    endpoint: str
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    attempt: int = 0


class HttpClient:
    """Rate-limited, retrying wrapper around `httpx.AsyncClient`."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        config: HttpClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.config = config or HttpClientConfig()
        self._client = client or httpx.AsyncClient()
        self._client.headers["User-Agent"] = self.config.user_agent
        self._sleep = sleep

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send_once(self, req: RequestAttempt, url: str, timeout: float) -> httpx.Response:
        # The per-attempt deadline cancels the in-flight request; a later
        # retry runs in a fresh wait_for scope.
        return await asyncio.wait_for(
            self._client.request(req.method, url, params=req.params or None, timeout=timeout),
            timeout=timeout,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Perform the call and return the decoded JSON body.

        `endpoint` is the label used in logs and errors (defaults to the URL
        without its query string).
        """
        cfg = self.config
        per_attempt = timeout or cfg.timeout
        req = RequestAttempt(
            endpoint=endpoint or endpoint_label(url),
            method=method.upper(),
            params=dict(params or {}),
        )
        total = cfg.max_retries + 1

        while True:
            await self.rate_limiter.admit()
            try:
                resp = await self._send_once(req, url, per_attempt)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                failure: UpstreamError = RequestTimeoutError(
                    endpoint=req.endpoint,
                    timeout=per_attempt,
                    attempts=req.attempt + 1,
                )
            except httpx.TransportError as e:
                logger.error("HTTP %s %s failed: %s", req.method, req.endpoint, e)
                raise UpstreamTerminalError(
                    endpoint=req.endpoint,
                    message=f"Network error: {e}",
                    error_type=type(e).__name__,
                    attempts=req.attempt + 1,
                ) from e
            else:
                if resp.is_success:
                    return self._decode(resp, req)

                payload = self._error_payload(resp)
                if not is_retryable_status(resp.status_code):
                    self._log_failure(resp, req, payload)
                    raise UpstreamTerminalError.from_payload(
                        endpoint=req.endpoint,
                        status=resp.status_code,
                        payload=payload,
                        attempts=req.attempt + 1,
                    )
                failure = UpstreamTransientError.from_payload(
                    endpoint=req.endpoint,
                    status=resp.status_code,
                    payload=payload,
                    attempts=req.attempt + 1,
                )

            if req.attempt >= cfg.max_retries:
                logger.error(
                    "HTTP %s %s giving up after %s attempts: %s",
                    req.method,
                    req.endpoint,
                    total,
                    failure,
                )
                raise failure

            delay = cfg.backoff(req.attempt)
            logger.warning(
                "HTTP %s %s failed (%s), retrying in %.1fs (attempt %s/%s)",
                req.method,
                req.endpoint,
                failure.message,
                delay,
                req.attempt + 1,
                total,
            )
            await self._sleep(delay)
            req.attempt += 1

    async def get_json(self, url: str, *, params: Mapping[str, Any] | None = None, endpoint: str | None = None) -> Any:
        return await self.request("GET", url, params=params, endpoint=endpoint)

    @staticmethod
    def _decode(resp: httpx.Response, req: RequestAttempt) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamTerminalError(
                endpoint=req.endpoint,
                status=resp.status_code,
                message="Malformed JSON in upstream response",
                error_type="MalformedResponse",
                attempts=req.attempt + 1,
            ) from e

    @staticmethod
    def _error_payload(resp: httpx.Response) -> Any:
        # An unparseable error body must not abort the retry decision.
        try:
            return resp.json()
        except ValueError:
            return {"error": {"message": "Unknown error"}}

    @staticmethod
    def _log_failure(resp: httpx.Response, req: RequestAttempt, payload: Any) -> None:
        err = payload.get("error") if isinstance(payload, dict) else None
        logger.error(
            "Upstream request failed: endpoint=%s status=%s reason=%s error=%s",
            req.endpoint,
            resp.status_code,
            resp.reason_phrase,
            err or "Unknown error",
        )
