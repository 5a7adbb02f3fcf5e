from __future__ import annotations

import json
from typing import Any

from ads_common.errors import InvalidArgumentsError
from ads_common.telemetry import telemetry_recent
from ads_mcp.catalog import ToolCatalog
from ads_sources.connectors.meta.graph_api import (
    MetaGraphClient,
    build_filtering,
    ensure_account_prefix,
    format_fields,
)

TOOL_PREFIX = "mcp_meta_ads_"

DEFAULT_LIST_LIMIT = 100

ACCOUNT_FIELDS = "id,name,account_status,currency,timezone_name"
CAMPAIGN_FIELDS = "id,name,status,objective,created_time,updated_time,start_time,stop_time"
ADSET_FIELDS = (
    "id,name,status,campaign_id,daily_budget,lifetime_budget,targeting,optimization_goal,"
    "billing_event,bid_amount,created_time,updated_time"
)
AD_FIELDS = (
    "id,name,status,adset_id,creative{id,title,body,image_url,video_id},created_time,"
    "updated_time,configured_status,effective_status"
)
CREATIVE_FIELDS = "creative{id,title,body,image_url,video_id,object_story_spec,thumbnail_url,thumbnail_data_url}"
INSIGHT_FIELDS = "spend,impressions,clicks,actions,cost_per_action_type,ctr,cpp,cpm,reach,frequency,unique_clicks"

_FIELDS = {"type": "array", "items": {"type": "string"}, "description": "Specific fields to return"}
_ACCOUNT_ID = {"type": "string", "description": "The Meta ad account ID (e.g., act_123456789)"}


def _required(args: dict, name: str) -> str:
    value = args.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidArgumentsError(f"Missing required argument: {name}")
    return str(value).strip()


def _limit(args: dict, default: int = DEFAULT_LIST_LIMIT) -> int:
    try:
        value = int(args.get("limit") or default)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _fields_param(args: dict, default: str = "") -> dict[str, str]:
    fields = format_fields(args.get("fields")) or default
    return {"fields": fields} if fields else {}


def _time_params(args: dict) -> dict[str, str]:
    if args.get("date_preset"):
        return {"date_preset": _required(args, "date_preset")}
    time_range = args.get("time_range")
    if time_range:
        if isinstance(time_range, str) and time_range.strip().startswith("{"):
            return {"time_range": time_range.strip()}
        if isinstance(time_range, str):
            # bare preset passed where a range was expected
            return {"date_preset": time_range.strip()}
        return {"time_range": json.dumps(time_range, separators=(",", ":"))}
    return {"date_preset": "last_7d"}


def build_catalog(graph: MetaGraphClient) -> ToolCatalog:
    """Read-only Meta Ads tools backed by `graph`."""
    catalog = ToolCatalog()
    settings = graph.settings

    def tool(short_name: str, description: str, properties: dict | None = None, required: list[str] | None = None):
        return catalog.tool(TOOL_PREFIX + short_name, description, properties=properties, required=required)

    # Account & authentication

    @tool(
        "get_ad_accounts",
        "Get all ad accounts accessible by the user",
        {"fields": {**_FIELDS, "description": f"Specific fields to return (default: {ACCOUNT_FIELDS})"}},
    )
    async def get_ad_accounts(args: dict) -> Any:
        return await graph.call("me/adaccounts", _fields_param(args, ACCOUNT_FIELDS))

    @tool(
        "get_account_info",
        "Get detailed information about a specific ad account",
        {"account_id": _ACCOUNT_ID, "fields": _FIELDS},
        ["account_id"],
    )
    async def get_account_info(args: dict) -> Any:
        return await graph.call(ensure_account_prefix(_required(args, "account_id")), _fields_param(args))

    @tool("validate_token", "Validate current access token and get token information using /debug_token endpoint")
    async def validate_token(args: dict) -> Any:
        return await graph.call("debug_token", {"input_token": settings.access_token})

    # Campaigns

    @tool(
        "get_campaigns",
        "Get campaigns for an ad account with optional filtering",
        {
            "account_id": _ACCOUNT_ID,
            "limit": {"type": "number", "description": f"Maximum number of campaigns per page (default: {DEFAULT_LIST_LIMIT})"},
            "status_filter": {"type": "string", "description": "Filter by status: ACTIVE, PAUSED, ARCHIVED, etc."},
            "fields": _FIELDS,
        },
        ["account_id"],
    )
    async def get_campaigns(args: dict) -> Any:
        params: dict[str, Any] = {**_fields_param(args, CAMPAIGN_FIELDS), "limit": _limit(args)}
        if args.get("status_filter"):
            params["filtering"] = build_filtering(
                [{"field": "status", "operator": "IN", "value": [_required(args, "status_filter")]}]
            )
        return await graph.call(f"{ensure_account_prefix(_required(args, 'account_id'))}/campaigns", params)

    @tool(
        "get_campaign_details",
        "Get detailed information about a specific campaign",
        {"campaign_id": {"type": "string", "description": "The campaign ID"}, "fields": _FIELDS},
        ["campaign_id"],
    )
    async def get_campaign_details(args: dict) -> Any:
        return await graph.call(_required(args, "campaign_id"), _fields_param(args))

    # Ad sets

    @tool(
        "get_adsets",
        "Get ad sets for an account with optional filtering",
        {
            "account_id": _ACCOUNT_ID,
            "limit": {"type": "number", "description": f"Maximum number of ad sets per page (default: {DEFAULT_LIST_LIMIT})"},
            "campaign_id": {"type": "string", "description": "Optional: Filter by campaign ID"},
            "fields": _FIELDS,
        },
        ["account_id"],
    )
    async def get_adsets(args: dict) -> Any:
        params: dict[str, Any] = {**_fields_param(args, ADSET_FIELDS), "limit": _limit(args)}
        if args.get("campaign_id"):
            params["filtering"] = build_filtering(
                [{"field": "campaign.id", "operator": "IN", "value": [_required(args, "campaign_id")]}]
            )
        return await graph.call(f"{ensure_account_prefix(_required(args, 'account_id'))}/adsets", params)

    @tool(
        "get_adset_details",
        "Get detailed information about a specific ad set",
        {"adset_id": {"type": "string", "description": "The ad set ID"}, "fields": _FIELDS},
        ["adset_id"],
    )
    async def get_adset_details(args: dict) -> Any:
        return await graph.call(_required(args, "adset_id"), _fields_param(args))

    # Ads

    @tool(
        "get_ads",
        "Get ads for an account with optional filtering",
        {
            "account_id": _ACCOUNT_ID,
            "limit": {"type": "number", "description": f"Maximum number of ads per page (default: {DEFAULT_LIST_LIMIT})"},
            "campaign_id": {"type": "string", "description": "Optional: Filter by campaign ID"},
            "adset_id": {"type": "string", "description": "Optional: Filter by ad set ID"},
            "fields": _FIELDS,
        },
        ["account_id"],
    )
    async def get_ads(args: dict) -> Any:
        params: dict[str, Any] = {**_fields_param(args, AD_FIELDS), "limit": _limit(args)}
        # campaign filter wins when both are given
        if args.get("campaign_id"):
            params["filtering"] = build_filtering(
                [{"field": "campaign.id", "operator": "IN", "value": [_required(args, "campaign_id")]}]
            )
        elif args.get("adset_id"):
            params["filtering"] = build_filtering(
                [{"field": "adset.id", "operator": "IN", "value": [_required(args, "adset_id")]}]
            )
        return await graph.call(f"{ensure_account_prefix(_required(args, 'account_id'))}/ads", params)

    @tool(
        "get_ad_details",
        "Get detailed information about a specific ad",
        {"ad_id": {"type": "string", "description": "The ad ID"}, "fields": _FIELDS},
        ["ad_id"],
    )
    async def get_ad_details(args: dict) -> Any:
        return await graph.call(_required(args, "ad_id"), _fields_param(args))

    # Creatives

    @tool(
        "get_ad_creatives",
        "Get creative details for a specific ad",
        {
            "ad_id": {"type": "string", "description": "The ad ID"},
            "fields": {
                **_FIELDS,
                "description": "Specific creative fields to return (supports nested fields like creative{id,title,body,image_url,video_id})",
            },
        },
        ["ad_id"],
    )
    async def get_ad_creatives(args: dict) -> Any:
        return await graph.call(_required(args, "ad_id"), _fields_param(args, CREATIVE_FIELDS))

    @tool(
        "get_creative_details",
        "Get detailed information about a specific creative",
        {"creative_id": {"type": "string", "description": "The creative ID"}, "fields": _FIELDS},
        ["creative_id"],
    )
    async def get_creative_details(args: dict) -> Any:
        return await graph.call(_required(args, "creative_id"), _fields_param(args))

    # Insights

    @tool(
        "get_insights",
        "Get performance insights for account, campaign, ad set, or ad level",
        {
            "object_id": {
                "type": "string",
                "description": "The object ID (account ID with act_ prefix, campaign ID, adset ID, or ad ID)",
            },
            "level": {"type": "string", "description": "The level: account, campaign, adset, or ad"},
            "time_range": {
                "type": "string",
                "description": 'Time range as JSON string: {"since":"YYYY-MM-DD","until":"YYYY-MM-DD"} or date_preset like "last_7d"',
            },
            "fields": {**_FIELDS, "description": f"Specific insight fields to return (default: {INSIGHT_FIELDS})"},
            "date_preset": {
                "type": "string",
                "description": "Optional: Date preset (e.g., last_7d, last_30d) instead of time_range",
            },
        },
        ["object_id", "level"],
    )
    async def get_insights(args: dict) -> Any:
        level = _required(args, "level").strip().lower()
        object_id = _required(args, "object_id").strip()
        if level == "account":
            object_id = ensure_account_prefix(object_id)
        params = {**_fields_param(args, INSIGHT_FIELDS), "level": level, **_time_params(args)}
        return await graph.call(f"{object_id}/insights", params)

    # Diagnostics

    @tool("health_check", "Verify MCP server and Meta API connection status")
    async def health_check(args: dict) -> Any:
        has_token = bool(settings.access_token)
        connected = False
        error = None
        if has_token:
            try:
                await graph.call("me", {"fields": "id,name"}, paginate=False)
                connected = True
            except Exception as e:
                error = str(e)
        return {
            "server": {"name": settings.server_name, "version": settings.server_version, "status": "running"},
            "meta_api": {
                "connected": connected,
                "token_configured": has_token,
                "token_valid": connected,
                "api_version": graph.api_version,
                "error": error,
            },
            "rate_limit": {
                "requests_in_window": graph.http.rate_limiter.in_window(),
                "quota": graph.http.rate_limiter.quota,
            },
        }

    @tool(
        "telemetry_recent",
        "Return the most recent tool-call telemetry records (secrets redacted)",
        {"n": {"type": "number", "description": "Number of records to return (1-200, default 50)"}},
    )
    async def recent_telemetry(args: dict) -> Any:
        return telemetry_recent(n=args.get("n", 50))

    return catalog
