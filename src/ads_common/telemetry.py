from __future__ import annotations

import datetime as _dt
import json
import os
from typing import Any

from ads_common.context import current_corr_id
from ads_common.errors import REDACT_TOKEN
from ads_config.settings import telemetry_dir

TELEMETRY_FILE = "mcp-telemetry.jsonl"

_SECRET_KEYS = {
    "authorization",
    "access_token",
    "input_token",
    "token",
    "api_key",
    "apikey",
    "client_secret",
}


def _telemetry_disabled() -> bool:
    return os.getenv("ADS_DISABLE_TELEMETRY", "0").strip().lower() in {"1", "true", "yes"}


def redact_secrets(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(k, str) and k.strip().lower() in _SECRET_KEYS:
                if isinstance(v, str) and v.strip().lower().startswith("bearer "):
                    out[k] = "Bearer " + REDACT_TOKEN
                else:
                    out[k] = REDACT_TOKEN
            else:
                out[k] = redact_secrets(v)
        return out
    if isinstance(obj, list):
        return [redact_secrets(x) for x in obj]
    return obj


def log_event(
    kind: str,
    name: str,
    args: dict | None = None,
    ok: bool = True,
    ms: int = 0,
    *,
    corr_id: str | None = None,
    session_id: str | None = None,
    telemetry_file: str = TELEMETRY_FILE,
) -> None:
    """
    Append one JSONL telemetry record for a routed tool call.
    """
    if _telemetry_disabled():
        return

    rec = {
        "ts": _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z"),
        "kind": kind,
        "name": name,
        "corr_id": corr_id or current_corr_id(),
        "session_id": session_id,
        "args": {} if args is None else dict(args),
        "ok": bool(ok),
        "ms": int(ms),
    }

    out_dir = telemetry_dir()
    out_dir.mkdir(parents=True, exist_ok=True)
    with (out_dir / telemetry_file).open("a", encoding="utf-8") as f:
        f.write(json.dumps(redact_secrets(rec), ensure_ascii=False, default=str) + "\n")


def telemetry_recent(n: int = 50, telemetry_file: str = TELEMETRY_FILE) -> dict:
    """
    Return last N telemetry records (bounded) with secrets redacted.
    """
    p = telemetry_dir() / telemetry_file
    if not p.exists():
        return {"records": []}

    try:
        n_int = int(n)
    except (TypeError, ValueError):
        n_int = 50
    n_int = max(1, min(n_int, 200))

    out = []
    for line in p.read_text(encoding="utf-8").splitlines()[-n_int:]:
        try:
            rec = json.loads(line)
        except json.JSONDecodeError:
            continue
        # redact again on read
        out.append(redact_secrets(rec))

    return {"records": out}
