from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _find_repo_root(start: Path) -> Optional[Path]:
    """
    Walk upward until we find pyproject.toml or .git.
    """
    start = start.resolve()
    for p in (start, *start.parents):
        if (p / "pyproject.toml").exists() or (p / ".git").exists():
            return p
    return None


@lru_cache(maxsize=1)
def repo_root() -> Path:
    """Best-effort repository root discovery.

    Order of precedence:
      1) ADS_REPO_ROOT (explicit override)
      2) walk upward from current working directory
      3) walk upward from this module file's directory
    """
    explicit = os.getenv("ADS_REPO_ROOT")
    if explicit:
        p = Path(explicit).expanduser().resolve()
        if not p.exists() or not p.is_dir():
            raise RuntimeError(f"ADS_REPO_ROOT does not exist or is not a directory: {p}")
        return p

    cwd = Path.cwd().resolve()
    root = _find_repo_root(cwd)
    if root:
        return root

    here_dir = Path(__file__).resolve().parent
    root = _find_repo_root(here_dir)
    if root:
        return root

    # Fallback: typical layout (repo/src/ads_config/settings.py)
    if len(here_dir.parents) >= 2:
        return here_dir.parents[1]

    return cwd


@lru_cache(maxsize=1)
def load_env_once() -> Optional[Path]:
    """
    Load dotenv exactly once. Precedence:
      1) ADS_ENV_FILE (explicit path)
      2) repo-root/.env
      3) repo-root/config/.env
      4) repo-root/.dev.vars   (legacy Workers secrets file)
    """
    explicit = os.getenv("ADS_ENV_FILE")
    candidates = []

    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(repo_root() / ".env")
    candidates.append(repo_root() / "config" / ".env")
    candidates.append(repo_root() / ".dev.vars")

    for p in candidates:
        p = p.resolve()
        if p.exists() and p.is_file():
            # Do NOT override already-set environment variables
            load_dotenv(dotenv_path=str(p), override=False)
            return p

    return None


def telemetry_dir() -> Path:
    """
    Default telemetry dir. Override with ADS_TELEMETRY_DIR.
    """
    p = os.getenv("ADS_TELEMETRY_DIR")
    if p:
        return Path(p).expanduser().resolve()
    return (repo_root() / "artifacts" / "telemetry").resolve()


def _env_str(name: str, default: str | None) -> str | None:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_optional_float(name: str) -> float | None:
    raw = _env_str(name, None)
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


@dataclass(frozen=True)
class GatewaySettings:
    server_name: str = "meta-ads-mcp"
    server_version: str = "1.0.0"
    server_description: str = "Meta Ads MCP Server - Read-only access to Meta Ads API"
    protocol_version: str = "2024-11-05"
    keep_alive_interval: float = 30.0

    # Upstream (Meta Graph API)
    access_token: str | None = None
    api_version: str = "v19.0"
    graph_base_url: str = "https://graph.facebook.com"

    # App-level limit (calls/hour per user per app) is the most restrictive one.
    hourly_quota: int = 200
    window_seconds: float = 3600.0
    min_request_interval: float = 0.005

    max_retries: int = 3
    request_timeout: float = 30.0
    max_pages: int = 1000

    # None keeps per-attempt timeouts only.
    call_deadline: float | None = None

    host: str = "0.0.0.0"
    port: int = 8787
    cors_origin: str = "*"

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        d = cls()
        return cls(
            server_name=_env_str("ADS_SERVER_NAME", d.server_name) or d.server_name,
            protocol_version=_env_str("ADS_PROTOCOL_VERSION", d.protocol_version) or d.protocol_version,
            keep_alive_interval=_env_float("ADS_KEEPALIVE_INTERVAL", d.keep_alive_interval),
            access_token=_env_str("META_ACCESS_TOKEN", None),
            api_version=_env_str("META_API_VERSION", d.api_version) or d.api_version,
            graph_base_url=(_env_str("ADS_GRAPH_BASE_URL", d.graph_base_url) or d.graph_base_url).rstrip("/"),
            hourly_quota=_env_int("ADS_HOURLY_QUOTA", d.hourly_quota),
            min_request_interval=_env_float("ADS_MIN_REQUEST_INTERVAL", d.min_request_interval),
            max_retries=_env_int("ADS_MAX_RETRIES", d.max_retries),
            request_timeout=_env_float("ADS_REQUEST_TIMEOUT", d.request_timeout),
            max_pages=_env_int("ADS_MAX_PAGES", d.max_pages),
            call_deadline=_env_optional_float("ADS_CALL_DEADLINE"),
            host=_env_str("ADS_HOST", d.host) or d.host,
            port=_env_int("ADS_PORT", d.port),
            cors_origin=_env_str("ADS_CORS_ORIGIN", d.cors_origin) or d.cors_origin,
        )


def configure_logging() -> None:
    """
    Configure logging explicitly. No import-time side effects.
    Idempotent: if logging is already configured, do nothing.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    level_name = os.getenv("ADS_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv(
        "ADS_LOG_FORMAT",
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logging.basicConfig(level=level, format=fmt)


def init_runtime(*, configure_logs: bool = True, load_env: bool = True) -> None:
    """
    Call this from entrypoints only (servers, scripts).
    """
    if load_env:
        load_env_once()
    if configure_logs:
        configure_logging()
