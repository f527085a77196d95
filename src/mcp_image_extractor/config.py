from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

CONFIG_PATH = Path.home() / ".config" / "mcp-image-extractor" / "config.yml"
CONFIG_PATH_ENV = "MCP_IMAGE_EXTRACTOR_CONFIG"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# Environment variable → config field
_ENV_FIELDS = {
    "MAX_IMAGE_SIZE": "max_image_size",
    "ALLOWED_DOMAINS": "allowed_domains",
    "PORT": "port",
    "SCREENSHOTS_DIR": "screenshots_dir",
    "SCREENSHOT_RESIZE": "screenshot_resize",
    "FETCH_TIMEOUT": "fetch_timeout",
    "LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class ExtractorConfig:
    max_image_size: int = 10 * 1024 * 1024  # bytes
    # Empty tuple = every domain is permitted.
    allowed_domains: tuple[str, ...] = field(default_factory=tuple)
    port: int = 8000                         # HTTP transport only
    screenshots_dir: str = "screenshots"     # relative to the working directory
    screenshot_resize: bool = True           # bound screenshots like every other source
    fetch_timeout: float = 30.0              # seconds, per URL fetch
    selector_timeout_ms: int = 10_000        # wait_for_selector ceiling
    log_level: str = "INFO"


def _parse_domains(raw: object) -> tuple[str, ...]:
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = [str(item) for item in raw]
    else:
        return ()
    domains = []
    for item in items:
        domain = item.strip().lower().lstrip(".")
        if domain and domain not in domains:
            domains.append(domain)
    return tuple(domains)


def _parse_bool(raw: object, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return default


def _validate(cfg: Mapping[str, Any]) -> dict[str, Any]:
    defaults = asdict(ExtractorConfig())
    merged = {**defaults, **{k: v for k, v in cfg.items() if k in defaults}}

    try:
        merged["max_image_size"] = int(merged["max_image_size"])
    except (TypeError, ValueError):
        merged["max_image_size"] = defaults["max_image_size"]
    if merged["max_image_size"] <= 0:
        merged["max_image_size"] = defaults["max_image_size"]

    merged["allowed_domains"] = _parse_domains(merged["allowed_domains"])

    try:
        merged["port"] = int(merged["port"])
    except (TypeError, ValueError):
        merged["port"] = defaults["port"]
    if not 0 < merged["port"] < 65536:
        merged["port"] = defaults["port"]

    if not isinstance(merged["screenshots_dir"], str) or not merged["screenshots_dir"].strip():
        merged["screenshots_dir"] = defaults["screenshots_dir"]
    merged["screenshot_resize"] = _parse_bool(merged["screenshot_resize"], defaults["screenshot_resize"])

    try:
        merged["fetch_timeout"] = float(merged["fetch_timeout"])
    except (TypeError, ValueError):
        merged["fetch_timeout"] = defaults["fetch_timeout"]
    if merged["fetch_timeout"] <= 0:
        merged["fetch_timeout"] = defaults["fetch_timeout"]

    try:
        merged["selector_timeout_ms"] = int(merged["selector_timeout_ms"])
    except (TypeError, ValueError):
        merged["selector_timeout_ms"] = defaults["selector_timeout_ms"]
    if merged["selector_timeout_ms"] <= 0:
        merged["selector_timeout_ms"] = defaults["selector_timeout_ms"]

    level = str(merged["log_level"]).strip().upper()
    merged["log_level"] = level if level in _LOG_LEVELS else defaults["log_level"]
    return merged


def _read_file(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return raw if isinstance(raw, dict) else {}


def load_config(
    environ: Mapping[str, str] | None = None,
    path: Path | None = None,
) -> ExtractorConfig:
    """Build the process-wide configuration.

    Precedence, lowest first: dataclass defaults, the optional YAML file,
    environment variables. Unparseable values fall back to the defaults.
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env[CONFIG_PATH_ENV]).expanduser() if env.get(CONFIG_PATH_ENV) else CONFIG_PATH
    raw = _read_file(path)
    for env_name, field_name in _ENV_FIELDS.items():
        value = env.get(env_name)
        if value is not None and value.strip() != "":
            raw[field_name] = value
    return ExtractorConfig(**_validate(raw))


def setup_logging(level: str = "INFO") -> None:
    """Log to stderr; stdout belongs to the stdio transport."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
