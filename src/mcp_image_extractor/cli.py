from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config, setup_logging
from .http_server import main as http_main
from .mcp_server import main as mcp_main
from .models import MAX_DIMENSION, FileSource, SizingHints
from .tools.manager import ImageToolManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-image-extractor",
        description="MCP server that turns files, URLs, base64 and page screenshots into LLM-sized images.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "mcp",
        help="Run the MCP server over stdio (default). Hook this up to any MCP client.",
    )

    http_parser = subparsers.add_parser("http", help="Serve the same tools as JSON-RPC over HTTP on PORT")
    http_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    http_parser.set_defaults(func=http_command)

    extract_parser = subparsers.add_parser(
        "extract", help="Normalize a local image file and print its metadata",
    )
    extract_parser.add_argument("path", help="Image file to process")
    extract_parser.add_argument("--max-width", type=int, default=MAX_DIMENSION)
    extract_parser.add_argument("--max-height", type=int, default=MAX_DIMENSION)
    extract_parser.set_defaults(func=extract_command)

    return parser


def http_command(args: argparse.Namespace) -> int:
    http_main(host=args.host)
    return 0


def extract_command(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(config.log_level)
    manager = ImageToolManager(config)
    source = FileSource(
        path=args.path,
        sizing=SizingHints(max_width=args.max_width, max_height=args.max_height),
    )
    result = asyncio.run(manager.run(source))
    print(result.content[0]["text"])
    return 1 if result.is_error else 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if not args.command or args.command == "mcp":
        mcp_main()
        return
    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
