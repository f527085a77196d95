"""
HTTP transport for the same JSON-RPC tool surface as the stdio server.

    GET  /health   health probe
    POST /mcp      one JSON-RPC request per call

Listens on PORT (default 8000). There is no authentication; bind it to a
trusted interface.
"""
from __future__ import annotations

import json
import logging

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import mcp_server
from .config import ExtractorConfig, load_config, setup_logging

log = logging.getLogger("mcp-image-extractor.http")

app = FastAPI(title=mcp_server.SERVER_NAME, version=mcp_server.SERVER_VERSION)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> Response:
    log.error("Unhandled error [%s %s]: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content=mcp_server._err(None, -32603, f"Internal error: {exc}"),
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": mcp_server.SERVER_NAME, "version": mcp_server.SERVER_VERSION}


@app.post("/mcp")
async def mcp_endpoint(request: Request) -> Response:
    try:
        req = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(mcp_server._err(None, -32700, "Parse error"))
    if not isinstance(req, dict):
        return JSONResponse(mcp_server._err(None, -32600, "Invalid Request"))
    response = await mcp_server.handle_rpc(req)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)


def main(config: ExtractorConfig | None = None, host: str = "127.0.0.1") -> None:
    config = config or load_config()
    setup_logging(config.log_level)
    mcp_server.configure(config)
    log.info("Serving MCP over HTTP on %s:%d", host, config.port)
    uvicorn.run(app, host=host, port=config.port, log_level=config.log_level.lower())
