"""Upstream request orchestration: rate limiting, retries and pagination."""

from ads_sources.core_infrastructure.http_client import HttpClient, HttpClientConfig
from ads_sources.core_infrastructure.pagination import AggregatedResult, PageAggregator
from ads_sources.core_infrastructure.rate_limiter import RateLimiter

__all__ = ["AggregatedResult", "HttpClient", "HttpClientConfig", "PageAggregator", "RateLimiter"]
