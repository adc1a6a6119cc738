"""Encoders that render an incoming event as a line of text for the echo output."""

import json
import re
from typing import Any

from riemann_shipper.extractor import as_text, get_path
from riemann_shipper.models import IncomingEvent

_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"}
_FORMAT_FIELD = re.compile(r"%\{\[([^\]]+)\]\}")


class CodecError(Exception):
    """Raised when a codec cannot be built from its configuration."""


def _iso_timestamp(event: IncomingEvent) -> str:
    return event.timestamp.isoformat().replace("+00:00", "Z")


class JSONCodec:
    """One JSON document per event, ``@timestamp`` and ``@metadata`` first."""

    name = "json"

    def __init__(
        self,
        beat: str = "riemann-shipper",
        version: str = "",
        escape_html: bool = False,
        pretty: bool = False,
    ):
        self._beat = beat
        self._version = version
        self._escape_html = escape_html
        self._pretty = pretty

    def encode(self, event: IncomingEvent) -> bytes:
        doc: dict[str, Any] = {
            "@timestamp": _iso_timestamp(event),
            "@metadata": {"beat": self._beat, "type": "_doc", "version": self._version},
        }
        doc.update(event.fields)

        if self._pretty:
            text = json.dumps(doc, indent=2, ensure_ascii=False, default=str)
        else:
            text = json.dumps(doc, separators=(",", ":"), ensure_ascii=False, default=str)
        if self._escape_html:
            text = re.sub(r"[<>&]", lambda m: _HTML_ESCAPES[m.group(0)], text)
        return text.encode("utf-8", "backslashreplace")


class FormatCodec:
    """Renders a template such as ``"%{[host.hostname]}: %{[message]}"``."""

    name = "format"

    def __init__(self, template: str):
        if not template:
            raise CodecError("format codec requires a non-empty 'string'")
        self._template = template

    def encode(self, event: IncomingEvent) -> bytes:
        def substitute(match: re.Match) -> str:
            path = match.group(1)
            if path == "@timestamp":
                return _iso_timestamp(event)
            return as_text(get_path(event.fields, path))

        text = _FORMAT_FIELD.sub(substitute, self._template)
        return text.encode("utf-8", "backslashreplace")


def create_codec(settings: dict | None, beat: str = "riemann-shipper", version: str = ""):
    """Build a codec from its config mapping.

    ``None`` or ``{}`` selects JSON with HTML escaping disabled. Otherwise
    the mapping holds exactly one key naming the codec.
    """
    if not settings:
        return JSONCodec(beat=beat, version=version)
    if len(settings) != 1:
        raise CodecError(f"codec must name exactly one encoder, got {sorted(settings)}")

    name, options = next(iter(settings.items()))
    options = options or {}
    if not isinstance(options, dict):
        raise CodecError(f"codec '{name}' options must be a mapping")

    if name == "json":
        return JSONCodec(
            beat=beat,
            version=version,
            escape_html=bool(options.get("escape_html", False)),
            pretty=bool(options.get("pretty", False)),
        )
    if name == "format":
        return FormatCodec(options.get("string", ""))
    raise CodecError(f"unknown codec '{name}'")
