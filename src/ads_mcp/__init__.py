"""External-facing MCP gateway for the Meta Ads API.

Serves the tool catalog over SSE sessions and direct HTTP POSTs, routing
JSON-RPC messages to rate-limited Graph API calls.
"""
