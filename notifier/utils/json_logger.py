import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _ensure_dir(path: str) -> None:
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)


def json_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def safe_json_dump(obj: Any) -> str:
    """Serialize to JSON with sane defaults for non-serializable objects."""
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


def _truncate(text: Optional[str], max_len: int = 280) -> Optional[str]:
    if text is None:
        return None
    s = str(text)
    return s if len(s) <= max_len else s[: max_len - 1] + "…"


def redact_target(target: Optional[str]) -> Optional[str]:
    """Keep only the head of a delivery token/URL for the log."""
    if not target:
        return target
    s = str(target)
    return s if len(s) <= 12 else s[:12] + "***"


def log_delivery_attempt(
    *,
    path: str,
    provider: str,
    target: Optional[str],
    title: str,
    metadata: Optional[Dict[str, Any]],
    ok: bool,
    reason: Optional[str],
    invalid_target: bool,
    latency_ms: float,
) -> None:
    """Append one JSON line describing a push attempt (target redacted)."""
    if not path:
        return
    record = {
        "ts": json_now(),
        "provider": provider,
        "target": redact_target(target),
        "title": _truncate(title, 120),
        "reminder_id": (metadata or {}).get("reminder_id"),
        "type": (metadata or {}).get("type"),
        "ok": bool(ok),
        "reason": _truncate(reason),
        "invalid_target": bool(invalid_target),
        "latency_ms": round(float(latency_ms), 3),
    }
    _ensure_dir(path)
    with open(path, "a", encoding="utf-8") as f:
        f.write(safe_json_dump(record))
        f.write("\n")
