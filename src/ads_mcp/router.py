"""
JSON-RPC message routing for the MCP gateway.

`MessageRouter.route()` turns one inbound message into at most one response
envelope. Tool failures never escape as exceptions: they come back as
`isError: true` tool results under the request's own id. JSON-RPC errors are
reserved for envelope problems (bad JSON, unknown method, bad params,
unexpected internal faults).

Every response is also pushed onto the caller's SSE session when one is
bound; the router only borrows the session for that write.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import mcp.types as mcp_types
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR

from ads_common.context import corr_id_scope
from ads_common.errors import AdsError, ChannelClosedError, ProtocolError, RequestTimeoutError, typed_error
from ads_common.telemetry import log_event
from ads_config.settings import GatewaySettings
from ads_mcp.catalog import ToolCatalog, as_tool_result, dump_model, text_result
from ads_mcp.sessions import Session

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

_SECRET_ARG_KEYS = {"access_token", "token", "authorization", "api_key", "apikey"}


class MessageKind(str, Enum):
    INITIALIZE = "initialize"
    LIST_OPERATIONS = "tools/list"
    CALL_OPERATION = "tools/call"
    PING = "ping"
    NOTIFICATION = "notification"
    UNKNOWN = "unknown"


_METHODS = {
    "initialize": MessageKind.INITIALIZE,
    "tools/list": MessageKind.LIST_OPERATIONS,
    "tools/call": MessageKind.CALL_OPERATION,
    "ping": MessageKind.PING,
}


@dataclass(frozen=True)
class ProtocolMessage:
    kind: MessageKind
    method: str | None
    id: Any = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "ProtocolMessage":
        if not isinstance(payload, dict):
            raise ProtocolError(INVALID_REQUEST, "Invalid Request: expected a JSON object")

        method = payload.get("method")
        if not isinstance(method, str):
            method = None

        params = payload.get("params")
        if method is not None and method.startswith("notifications/"):
            # acknowledged without a reply, whatever the params look like
            return cls(
                kind=MessageKind.NOTIFICATION,
                method=method,
                id=payload.get("id"),
                params=params if isinstance(params, dict) else {},
            )

        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ProtocolError(INVALID_PARAMS, "Invalid params: expected an object")

        kind = _METHODS.get(method, MessageKind.UNKNOWN) if method is not None else MessageKind.UNKNOWN
        return cls(kind=kind, method=method, id=payload.get("id"), params=params)


def rpc_result(msg_id: Any, result: Any) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "result": result}


def rpc_error(msg_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "error": {"code": code, "message": message}}


def error_tool_result(err: dict) -> dict:
    return text_result(json.dumps(err, indent=2, ensure_ascii=False, default=str), is_error=True)


def _safe_args(args: dict) -> dict:
    return {k: ("***redacted***" if str(k).lower() in _SECRET_ARG_KEYS else v) for k, v in args.items()}


class MessageRouter:
    def __init__(self, catalog: ToolCatalog, settings: GatewaySettings | None = None) -> None:
        self.catalog = catalog
        self.settings = settings or GatewaySettings()

    async def handle_body(self, body: bytes | str, session: Session | None = None) -> dict | None:
        """Parse raw request text and route it. Never raises."""
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("JSON parse error: %s", e)
            return rpc_error(None, PARSE_ERROR, "Parse error: invalid JSON format in request body")

        try:
            return await self.route(payload, session)
        except Exception as e:
            logger.exception("Message handling error")
            msg_id = payload.get("id") if isinstance(payload, dict) else None
            return rpc_error(msg_id, INTERNAL_ERROR, f"Internal error: {e}")

    async def route(self, payload: Any, session: Session | None = None) -> dict | None:
        """Dispatch one decoded message; returns the response, or None for notifications."""
        try:
            message = ProtocolMessage.from_payload(payload)
        except ProtocolError as e:
            msg_id = payload.get("id") if isinstance(payload, dict) else None
            response = rpc_error(msg_id, e.code, str(e))
            await self._deliver(response, session)
            return response

        logger.debug("Routing %s (id=%s)", message.method, message.id)

        if message.kind is MessageKind.NOTIFICATION:
            logger.info("Received notification: %s", message.method)
            return None

        if message.kind is MessageKind.INITIALIZE:
            response = rpc_result(message.id, self._initialize_result())
        elif message.kind is MessageKind.LIST_OPERATIONS:
            response = rpc_result(message.id, {"tools": self.catalog.describe_all()})
        elif message.kind is MessageKind.PING:
            response = rpc_result(message.id, dump_model(mcp_types.EmptyResult()))
        elif message.kind is MessageKind.CALL_OPERATION:
            response = await self._call_operation(message, session)
        else:
            response = rpc_error(
                message.id,
                METHOD_NOT_FOUND,
                f"Method not found: {message.method}",
            )

        await self._deliver(response, session)
        return response

    def _initialize_result(self) -> dict:
        s = self.settings
        return dump_model(
            mcp_types.InitializeResult(
                protocolVersion=s.protocol_version,
                capabilities=mcp_types.ServerCapabilities(tools=mcp_types.ToolsCapability()),
                serverInfo=mcp_types.Implementation(name=s.server_name, version=s.server_version),
            )
        )

    async def _call_operation(self, message: ProtocolMessage, session: Session | None) -> dict:
        name = message.params.get("name")
        args = message.params.get("arguments")
        if args is None:
            args = {}
        if not isinstance(name, str) or not isinstance(args, dict):
            return rpc_error(message.id, INVALID_PARAMS, "Invalid params: tools/call needs a string 'name' and object 'arguments'")

        tool = self.catalog.get(name)
        if tool is None:
            err = typed_error("unknown_operation", f"Unknown tool: {name}", details={"tool": name})
            return rpc_result(message.id, error_tool_result(err))

        with corr_id_scope() as corr_id:
            t0 = time.perf_counter()
            ok = True
            log_args: dict[str, Any] = {"args": _safe_args(args)}
            try:
                payload = await self._run_handler(tool.handler, args, name)
                result = as_tool_result(payload)
            except AdsError as e:
                ok = False
                log_args["error"] = e.to_error()["error"]
                logger.warning("Tool %s failed: %s", name, e)
                result = error_tool_result(e.to_error())
            except Exception as e:
                ok = False
                err = typed_error("internal", str(e) or type(e).__name__, details={"tool": name})
                log_args["error"] = err["error"]
                logger.exception("Tool %s raised", name)
                result = error_tool_result(err)

            ms = int((time.perf_counter() - t0) * 1000)
            log_event(
                "tool",
                name,
                log_args,
                ok=ok,
                ms=ms,
                corr_id=corr_id,
                session_id=session.id if session is not None else None,
            )
        return rpc_result(message.id, result)

    async def _run_handler(self, handler, args: dict, name: str) -> Any:
        deadline = self.settings.call_deadline
        if deadline is None:
            return await handler(args)
        try:
            return await asyncio.wait_for(handler(args), timeout=deadline)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                endpoint=f"tool:{name}",
                timeout=deadline,
                message=f"Tool call exceeded its {deadline:g}s deadline",
            ) from e

    async def _deliver(self, response: dict, session: Session | None) -> None:
        if session is None:
            return
        try:
            await session.send_message(response)
        except ChannelClosedError as e:
            # the direct HTTP reply still carries the response
            logger.error("SSE write error for session %s: %s", session.id, e)
