from __future__ import annotations

import contextlib
import logging
from typing import AsyncIterator

import uvicorn
from mcp.types import INTERNAL_ERROR, PARSE_ERROR
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from ads_config.settings import GatewaySettings, init_runtime
from ads_mcp.catalog import ToolCatalog
from ads_mcp.router import MessageRouter
from ads_mcp.sessions import SessionRegistry
from ads_mcp.tools import build_catalog
from ads_sources.connectors.meta.graph_api import MetaGraphClient


logger = logging.getLogger(__name__)

SSE_PATH = "/sse"
MESSAGE_PATH = "/sse/message"


def _cors_headers(settings: GatewaySettings) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Accept",
    }


def _status_for(response: dict) -> int:
    code = (response.get("error") or {}).get("code")
    if code == PARSE_ERROR:
        return 400
    if code == INTERNAL_ERROR:
        return 500
    return 200


def create_app(
    settings: GatewaySettings | None = None,
    *,
    catalog: ToolCatalog | None = None,
    graph: MetaGraphClient | None = None,
    registry: SessionRegistry | None = None,
) -> Starlette:
    """Build the ASGI app. Collaborators can be injected (tests)."""
    settings = settings or GatewaySettings.from_env()
    if catalog is None:
        graph = graph or MetaGraphClient.from_settings(settings)
        catalog = build_catalog(graph)
    registry = registry or SessionRegistry(settings.keep_alive_interval)
    router = MessageRouter(catalog, settings)
    cors = _cors_headers(settings)

    async def health(request: Request) -> Response:
        return JSONResponse(
            {
                "name": settings.server_description,
                "version": settings.server_version,
                "status": "running",
                "endpoints": {"sse": SSE_PATH},
                "sessions": len(registry),
            },
            headers=cors,
        )

    async def open_stream(request: Request) -> Response:
        session = registry.open()
        await session.send_event(f"{MESSAGE_PATH}?sessionId={session.id}", event="endpoint")

        async def frames() -> AsyncIterator[str]:
            try:
                async for frame in session.channel.frames():
                    yield frame
            finally:
                # client went away or the session was closed elsewhere
                registry.close(session.id)

        return StreamingResponse(
            frames(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", **cors},
        )

    async def handle(request: Request, session_id: str | None) -> Response:
        session = registry.lookup(session_id)
        if session_id and session is None:
            logger.info("Unknown or closed session %s; replying directly", session_id)
        body = await request.body()
        response = await router.handle_body(body, session)
        if response is None:
            return Response(status_code=204, headers=cors)
        return JSONResponse(response, status_code=_status_for(response), headers=cors)

    async def direct_message(request: Request) -> Response:
        return await handle(request, None)

    async def session_message(request: Request) -> Response:
        return await handle(request, request.query_params.get("sessionId"))

    async def preflight(request: Request) -> Response:
        return Response(status_code=200, headers=cors)

    async def not_found(request: Request, exc: Exception) -> Response:
        return PlainTextResponse("Not Found", status_code=404, headers=cors)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("%s %s starting (%s tools)", settings.server_name, settings.server_version, len(catalog))
        try:
            yield
        finally:
            await registry.close_all()
            if graph is not None:
                await graph.aclose()

    routes = [
        Route("/", health, methods=["GET"]),
        Route(SSE_PATH, open_stream, methods=["GET"]),
        Route(SSE_PATH, direct_message, methods=["POST"]),
        Route(MESSAGE_PATH, session_message, methods=["POST"]),
        Route("/{path:path}", preflight, methods=["OPTIONS"]),
    ]
    app = Starlette(routes=routes, lifespan=lifespan, exception_handlers={404: not_found, 405: not_found})
    app.state.settings = settings
    app.state.registry = registry
    app.state.router = router
    return app


def main() -> None:
    # Entry points call main() directly, so runtime initialization
    # (dotenv + logging) happens here.
    init_runtime()
    settings = GatewaySettings.from_env()
    if not settings.access_token:
        logger.warning("META_ACCESS_TOKEN is not set; upstream tools will fail until it is configured")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
