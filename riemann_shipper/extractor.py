"""Pull the fixed set of Riemann-relevant fields out of an event's field tree."""

import json
from typing import Any

from riemann_shipper.models import ExtractedFields, IncomingEvent

HOSTNAME_PATH = "host.hostname"
OS_FAMILY_PATH = "host.os.family"
OS_KERNEL_PATH = "host.os.kernel"
MESSAGE_PATH = "message"
USERNAME_PATH = "winlog.user.name"
ACTION_PATH = "event.action"

_MISSING = object()


def get_path(fields: Any, path: str) -> Any:
    """Resolve a dotted *path* against nested mappings.

    Each step first tries the longest literal key that matches, so events
    carrying flattened keys (``{"host.os": {"family": ...}}``) resolve the
    same way as fully nested ones. Returns None when any step is missing or
    lands on something that is not a mapping.
    """
    value = _walk(fields, path.split("."))
    return None if value is _MISSING else value


def _walk(node: Any, parts: list[str]) -> Any:
    if not parts:
        return node
    if not isinstance(node, dict):
        return _MISSING

    for end in range(len(parts), 0, -1):
        key = ".".join(parts[:end])
        if key in node:
            found = _walk(node[key], parts[end:])
            if found is not _MISSING:
                return found
    return _MISSING


def as_text(value: Any) -> str:
    """Render a leaf value as text; None becomes the empty string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def extract(event: IncomingEvent) -> ExtractedFields:
    """Project *event* onto :class:`ExtractedFields`. Never raises for missing paths."""
    fields = event.fields

    def text(path: str) -> str:
        return as_text(get_path(fields, path))

    return ExtractedFields(
        hostname=text(HOSTNAME_PATH),
        os_family=text(OS_FAMILY_PATH),
        os_kernel=text(OS_KERNEL_PATH),
        message=text(MESSAGE_PATH),
        username=text(USERNAME_PATH),
        action=text(ACTION_PATH),
        timestamp=event.timestamp.isoformat() if event.timestamp else "",
    )
