"""
MCP (Model Context Protocol) server for mcp-image-extractor.

Exposes five tools that turn images from local files, URLs, base64 payloads
or live page renders into bounded, base64-encoded images an LLM can read:

    extract_image_from_file      extract_image_from_url
    extract_image_from_base64    extract_screenshot_from_url
    save_screenshot

Protocol: JSON-RPC 2.0 over stdio (one JSON object per line). stdout carries
protocol traffic only; logs go to stderr.

Usage
-----
Run directly:
    python -m mcp_image_extractor.mcp_server

Or via the CLI:
    mcp-image-extractor mcp

Claude Desktop / LM Studio mcpServers entry
-------------------------------------------
{
  "mcpServers": {
    "image-extractor": {
      "command": "mcp-image-extractor",
      "args": ["mcp"],
      "env": {"MAX_IMAGE_SIZE": "10485760", "ALLOWED_DOMAINS": ""}
    }
  }
}
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import BaseModel, ValidationError

from .config import ExtractorConfig, load_config, setup_logging
from .models import MAX_DIMENSION
from .results import ToolResult, failure
from .schemas import (
    ExtractFromBase64Args,
    ExtractFromFileArgs,
    ExtractFromUrlArgs,
    ExtractScreenshotArgs,
    SaveScreenshotArgs,
)
from .tools.manager import ImageToolManager

log = logging.getLogger("mcp-image-extractor.mcp")

SERVER_NAME = "mcp-image-extractor"
SERVER_VERSION = "1.0.0"
_PROTOCOL_VERSIONS = {"2024-11-05", "2025-03-26", "2025-06-18"}

_manager: ImageToolManager | None = None


def configure(config: ExtractorConfig) -> ImageToolManager:
    """Install the process-wide manager built from *config*."""
    global _manager
    _manager = ImageToolManager(config)
    return _manager


def _get_manager() -> ImageToolManager:
    global _manager
    if _manager is None:
        _manager = ImageToolManager()
    return _manager


# ---------------------------------------------------------------------------
# Tool schema registry, one entry per exposed tool
# ---------------------------------------------------------------------------

_SIZING_PROPERTIES: dict[str, Any] = {
    "resize": {
        "type": "boolean",
        "default": True,
        "description": "Apply the caller's max_width/max_height. The server always caps both axes at 512px.",
    },
    "max_width": {
        "type": "integer",
        "default": MAX_DIMENSION,
        "minimum": 1,
        "description": "Maximum width of the returned image (capped at 512).",
    },
    "max_height": {
        "type": "integer",
        "default": MAX_DIMENSION,
        "minimum": 1,
        "description": "Maximum height of the returned image (capped at 512).",
    },
}

_TOOL_SCHEMAS: list[dict[str, Any]] = [
    {
        "name": "extract_image_from_file",
        "description": (
            "Read a local image file and return it as an inline image, resized to fit "
            "within 512×512 and compressed, plus JSON metadata (width, height, format, size)."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Path to the local image file."},
                **_SIZING_PROPERTIES,
            },
            "required": ["file_path"],
        },
    },
    {
        "name": "extract_image_from_url",
        "description": (
            "Download an image from an http(s) URL and return it as an inline image, "
            "resized and compressed for LLM analysis. Subject to the server's domain allow-list."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "URL of the image to extract."},
                **_SIZING_PROPERTIES,
            },
            "required": ["url"],
        },
    },
    {
        "name": "extract_image_from_base64",
        "description": (
            "Decode a base64-encoded image and return it as an inline image, "
            "resized and compressed for LLM analysis."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "base64": {"type": "string", "description": "Base64-encoded image data."},
                "mime_type": {
                    "type": "string",
                    "default": "image/png",
                    "description": "MIME type of the image.",
                },
                **_SIZING_PROPERTIES,
            },
            "required": ["base64"],
        },
    },
    {
        "name": "extract_screenshot_from_url",
        "description": (
            "Render a webpage in headless Chromium and return a PNG screenshot as an inline "
            "image. Optionally wait for a CSS selector or click one before capturing."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "URL of the page to capture (http/https)."},
                "viewport_width": {"type": "integer", "default": 1920, "description": "Viewport width in px."},
                "viewport_height": {"type": "integer", "default": 1080, "description": "Viewport height in px."},
                "full_page": {
                    "type": "boolean",
                    "default": True,
                    "description": "Capture the full scrollable page instead of just the viewport.",
                },
                "wait_for_load": {
                    "type": "integer",
                    "default": 2000,
                    "description": "Extra milliseconds to wait after the network is idle.",
                },
                "wait_for_selector": {
                    "type": "string",
                    "description": "Optional CSS selector to wait for (up to 10s) before capturing.",
                },
                "click_selector": {
                    "type": "string",
                    "description": "Optional CSS selector to click before capturing.",
                },
                "click_wait_after": {
                    "type": "integer",
                    "default": 500,
                    "description": "Milliseconds to wait after the click so animations settle.",
                },
                **_SIZING_PROPERTIES,
            },
            "required": ["url"],
        },
    },
    {
        "name": "save_screenshot",
        "description": (
            "Save a base64-encoded image to the server's screenshots/ directory and "
            "return the saved path and size."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "base64": {"type": "string", "description": "Base64-encoded image data."},
                "filename": {
                    "type": "string",
                    "description": "File name without extension (default: screenshot-<timestamp>).",
                },
                "format": {
                    "type": "string",
                    "enum": ["png", "jpg", "jpeg", "webp"],
                    "default": "png",
                    "description": "Output image format.",
                },
            },
            "required": ["base64"],
        },
    },
]

_EXTRACT_ARGS: dict[str, type[BaseModel]] = {
    "extract_image_from_file": ExtractFromFileArgs,
    "extract_image_from_url": ExtractFromUrlArgs,
    "extract_image_from_base64": ExtractFromBase64Args,
    "extract_screenshot_from_url": ExtractScreenshotArgs,
}


# ---------------------------------------------------------------------------
# Tool dispatch
# ---------------------------------------------------------------------------

def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


async def _call_tool(name: str, arguments: dict[str, Any]) -> ToolResult:
    """Validate arguments and run one tool call."""
    mgr = _get_manager()
    try:
        if name in _EXTRACT_ARGS:
            args = _EXTRACT_ARGS[name].model_validate(arguments)
            return await mgr.run(args.to_source())
        if name == "save_screenshot":
            save = SaveScreenshotArgs.model_validate(arguments)
            return await mgr.save_screenshot(save.base64, save.filename, save.format)
    except ValidationError as exc:
        return failure(f"Invalid arguments for {name}: {_validation_message(exc)}")
    return failure(f"Unknown tool: {name}")


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------

def _ok(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _err(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _write(obj: dict) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


# ---------------------------------------------------------------------------
# Request handling (shared with the HTTP transport)
# ---------------------------------------------------------------------------

async def handle_rpc(req: dict[str, Any]) -> dict | None:
    """Answer one JSON-RPC request; notifications return ``None``."""
    req_id = req.get("id")
    method = req.get("method", "")
    params = req.get("params")
    if params is None:
        params = {}
    if not isinstance(method, str):
        return _err(req_id, -32600, "Invalid Request")
    if not isinstance(params, dict):
        if req_id is None:
            return None
        return _err(req_id, -32602, "Invalid params: expected an object")

    if method == "initialize":
        client_ver = params.get("protocolVersion", "2024-11-05")
        agreed_ver = client_ver if client_ver in _PROTOCOL_VERSIONS else "2024-11-05"
        return _ok(req_id, {
            "protocolVersion": agreed_ver,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        })

    if method.startswith("notifications/") or method == "initialized":
        return None

    if method == "tools/list":
        return _ok(req_id, {"tools": _TOOL_SCHEMAS})

    if method == "tools/call":
        tool_name = str(params.get("name", ""))
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return _ok(req_id, failure("Tool arguments must be an object").as_dict())
        result = await _call_tool(tool_name, arguments)
        return _ok(req_id, result.as_dict())

    if method == "ping":
        return _ok(req_id, {})

    if req_id is not None:
        return _err(req_id, -32601, f"Method not found: {method}")
    return None


async def _handle(line: str) -> None:
    try:
        req = json.loads(line)
    except json.JSONDecodeError:
        _write(_err(None, -32700, "Parse error"))
        return
    if not isinstance(req, dict):
        _write(_err(None, -32600, "Invalid Request"))
        return
    try:
        response = await handle_rpc(req)
    except Exception as exc:
        log.exception("Unhandled error for method %r", req.get("method"))
        response = _err(req.get("id"), -32603, f"Internal error: {exc}")
    if response is not None:
        _write(response)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _skip_line(reader: asyncio.StreamReader, consumed: int) -> None:
    """Drop the remainder of an over-limit line, up to and including its newline."""
    while True:
        await reader.read(max(consumed, 1))
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as exc:
            consumed = exc.consumed
        except asyncio.IncompleteReadError:
            return


async def _serve(reader: asyncio.StreamReader) -> None:
    # Each request runs as its own task so slow screenshots don't block the rest.
    pending: set[asyncio.Task] = set()
    while True:
        try:
            line_bytes = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            line_bytes = exc.partial
            if not line_bytes:
                break
        except asyncio.LimitOverrunError as exc:
            log.warning("Dropping request line over the size limit")
            await _skip_line(reader, exc.consumed)
            _write(_err(None, -32600, "Request too large"))
            continue
        except ConnectionError:
            break
        line = line_bytes.decode(errors="replace").strip()
        if line:
            task = asyncio.create_task(_handle(line))
            pending.add(task)
            task.add_done_callback(pending.discard)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def _run(max_line_bytes: int = 64 * 1024 * 1024) -> None:
    loop = asyncio.get_running_loop()
    # Base64 payloads arrive on a single line; the default 64 KiB limit is far too small.
    reader = asyncio.StreamReader(limit=max_line_bytes)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    log.info("%s %s started in stdio mode", SERVER_NAME, SERVER_VERSION)
    await _serve(reader)


def main(config: ExtractorConfig | None = None) -> None:
    config = config or load_config()
    setup_logging(config.log_level)
    configure(config)
    # base64 inflates by 4/3; leave room for the JSON-RPC envelope.
    max_line = config.max_image_size * 2 + 1024 * 1024
    try:
        asyncio.run(_run(max_line))
    except (OSError, ValueError) as exc:
        log.error("Error starting MCP server: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
