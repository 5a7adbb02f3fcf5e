import json

import httpx
import pytest

from ads_common.errors import ConfigurationError
from ads_config.settings import GatewaySettings
from ads_sources.connectors.meta.graph_api import (
    MetaGraphClient,
    build_filtering,
    ensure_account_prefix,
    format_fields,
)

BASE = "https://graph.example.test"


def _graph(handler, **overrides) -> MetaGraphClient:
    settings = GatewaySettings(
        access_token=overrides.pop("access_token", "tok-123"),
        graph_base_url=BASE,
        min_request_interval=0,
        **overrides,
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MetaGraphClient.from_settings(settings, client=client)


def test_format_fields():
    assert format_fields(["id", "name"]) == "id,name"
    assert format_fields([]) == ""
    assert format_fields("id,name") == ""
    assert format_fields(None) == ""


def test_ensure_account_prefix():
    assert ensure_account_prefix("123") == "act_123"
    assert ensure_account_prefix("act_123") == "act_123"
    assert ensure_account_prefix(" 42 ") == "act_42"


def test_build_filtering_is_compact_json():
    raw = build_filtering([{"field": "status", "operator": "IN", "value": ["ACTIVE"]}])
    assert raw == '[{"field":"status","operator":"IN","value":["ACTIVE"]}]'
    assert json.loads(raw)[0]["value"] == ["ACTIVE"]


@pytest.mark.asyncio
async def test_missing_token_fails_before_any_request():
    seen = []
    graph = _graph(lambda r: seen.append(r) or httpx.Response(200, json={}), access_token=None)

    with pytest.raises(ConfigurationError):
        await graph.call("me/adaccounts")

    assert seen == []
    assert graph.http.rate_limiter.in_window() == 0
    await graph.aclose()


@pytest.mark.asyncio
async def test_call_builds_versioned_url_with_token_and_clean_params():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "act_1", "name": "Main"})

    graph = _graph(handler, api_version="v20.0")

    result = await graph.call("act_1", {"fields": "id,name", "limit": 25, "after": None, "empty": ""})

    assert result == {"id": "act_1", "name": "Main"}
    (request,) = seen
    assert request.url.path == "/v20.0/act_1"
    assert request.url.params["access_token"] == "tok-123"
    assert request.url.params["fields"] == "id,name"
    assert request.url.params["limit"] == "25"
    assert "after" not in request.url.params
    assert "empty" not in request.url.params
    await graph.aclose()


@pytest.mark.asyncio
async def test_list_calls_follow_next_links():
    pages = {
        "1": {"data": [{"id": i} for i in range(10)], "paging": {"next": f"{BASE}/v19.0/act_1/campaigns?access_token=tok-123&after=2"}},
        "2": {"data": [{"id": i} for i in range(10, 20)], "paging": {"next": f"{BASE}/v19.0/act_1/campaigns?access_token=tok-123&after=3"}},
        "3": {"data": [{"id": i} for i in range(20, 25)], "paging": {"cursors": {"after": "z"}}},
    }
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=pages[request.url.params.get("after", "1")])

    graph = _graph(handler)

    result = await graph.call("act_1/campaigns", {"limit": 10})

    assert [r["id"] for r in result["data"]] == list(range(25))
    assert "next" not in result["paging"]
    assert len(seen) == 3
    # one admission per page
    assert graph.http.rate_limiter.in_window() == 3
    await graph.aclose()


@pytest.mark.asyncio
async def test_pagination_can_be_turned_off():
    first = {"data": [{"id": 1}], "paging": {"next": f"{BASE}/v19.0/me/adaccounts?after=2"}}
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=first)

    graph = _graph(handler)

    result = await graph.call("me/adaccounts", paginate=False)

    assert result == first
    assert len(seen) == 1
    await graph.aclose()


@pytest.mark.asyncio
async def test_configured_page_ceiling_applies():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        n = int(request.url.params.get("after", "1"))
        return httpx.Response(200, json={"data": [{"id": n}], "paging": {"next": f"{BASE}/v19.0/x?after={n + 1}"}})

    graph = _graph(handler, max_pages=3)

    result = await graph.call("x")

    assert [r["id"] for r in result["data"]] == [1, 2, 3]
    assert len(seen) == 3
    await graph.aclose()
