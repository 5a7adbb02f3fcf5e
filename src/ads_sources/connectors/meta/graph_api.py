from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping

from ads_common.errors import ConfigurationError
from ads_config.settings import GatewaySettings
from ads_sources.core_infrastructure.http_client import HttpClient, HttpClientConfig
from ads_sources.core_infrastructure.pagination import PageAggregator, is_paginated
from ads_sources.core_infrastructure.rate_limiter import RateLimiter


logger = logging.getLogger(__name__)

ACCOUNT_PREFIX = "act_"


def format_fields(fields: Any) -> str:
    """Comma-join a list of field names; anything else yields ''."""
    if not fields or not isinstance(fields, (list, tuple)):
        return ""
    return ",".join(str(f) for f in fields)


def build_filtering(filters: Iterable[Mapping[str, Any]]) -> str:
    """Graph API `filtering` parameter: a JSON list of {field, operator, value}."""
    return json.dumps([dict(f) for f in filters], separators=(",", ":"))


def ensure_account_prefix(account_id: str) -> str:
    account_id = str(account_id).strip()
    if account_id.startswith(ACCOUNT_PREFIX):
        return account_id
    return f"{ACCOUNT_PREFIX}{account_id}"


def _clean_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in (params or {}).items():
        if v is None or v == "":
            continue
        out[str(k)] = str(v)
    return out


class MetaGraphClient:
    """Calls `<base>/<version>/<endpoint>` with the configured access token.

    List responses that carry a `paging.next` cursor are drained into a
    single response unless pagination is turned off for the call.
    """

    def __init__(self, settings: GatewaySettings, http: HttpClient) -> None:
        self.settings = settings
        self.http = http
        self.pages = PageAggregator(self._fetch_next_page, max_pages=settings.max_pages)

    @classmethod
    def from_settings(cls, settings: GatewaySettings, *, client=None) -> "MetaGraphClient":
        limiter = RateLimiter(
            quota=settings.hourly_quota,
            window=settings.window_seconds,
            min_interval=settings.min_request_interval,
        )
        http = HttpClient(
            limiter,
            config=HttpClientConfig(
                timeout=settings.request_timeout,
                max_retries=settings.max_retries,
                user_agent=f"{settings.server_name}/{settings.server_version}",
            ),
            client=client,
        )
        return cls(settings, http)

    @property
    def api_version(self) -> str:
        return self.settings.api_version

    def url_for(self, endpoint: str) -> str:
        base = self.settings.graph_base_url.rstrip("/")
        return f"{base}/{self.api_version}/{endpoint.lstrip('/')}"

    async def _fetch_next_page(self, next_url: str) -> Any:
        # next URLs already embed the token and every query parameter
        return await self.http.get_json(next_url)

    async def call(
        self,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        method: str = "GET",
        *,
        paginate: bool = True,
        max_pages: int | None = None,
    ) -> Any:
        token = self.settings.access_token
        if not token:
            raise ConfigurationError("META_ACCESS_TOKEN is not configured. Please set it in the environment.")

        query = {"access_token": token}
        query.update(_clean_params(params))

        result = await self.http.request(method, self.url_for(endpoint), params=query, endpoint=endpoint)

        if paginate and is_paginated(result):
            aggregated = await self.pages.drain(result, max_pages=max_pages)
            return aggregated.as_response()
        return result

    async def aclose(self) -> None:
        await self.http.aclose()
