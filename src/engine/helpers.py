import json
import re
from typing import Any, Dict, List
from urllib.parse import unquote

from .constants import _OBJECT_ARTIFACT_PREFIX


def parse_tool_payload(payload: Any) -> Dict[str, Any] | None:
    """Return a dict view of a tool result, decoding JSON strings when needed.

    Tools may return dicts or JSON text. Anything else (plain error strings,
    lists, malformed JSON) yields None.
    """
    if not payload:
        return None
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, (str, bytes)):
        try:
            parsed = json.loads(payload)
        except (TypeError, ValueError):
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def get_basename(path: str) -> str:
    """Best-effort display title from a vault path (drops folders and .md)."""
    normalized = str(path or "").replace("\\", "/")
    tail = normalized.split("/")[-1] or normalized
    stem = re.sub(r"\.md$", "", tail, flags=re.IGNORECASE)
    return stem or str(path or "")


def normalize_path_text(value: str) -> str:
    """Lowercase, forward-slash form of a path for substring filtering."""
    return str(value or "").strip().replace("\\", "/").lower()


def is_object_artifact(value: str) -> bool:
    """True for stringified objects leaked by weak tool-calling models."""
    return str(value or "").strip().startswith(_OBJECT_ARTIFACT_PREFIX)


def parse_exclusion_patterns(raw: str | None) -> List[str]:
    """Split a comma-separated exclusion setting into normalized path fragments.

    Entries may be URL-encoded (``Obsidian%20Files``); undecodable entries are
    used verbatim.
    """
    if not raw:
        return []
    fragments: List[str] = []
    for token in str(raw).split(","):
        trimmed = token.strip()
        if not trimmed:
            continue
        try:
            decoded = unquote(trimmed, errors="strict")
        except UnicodeDecodeError:
            decoded = trimmed
        normalized = normalize_path_text(decoded)
        if normalized:
            fragments.append(normalized)
    return fragments
