"""Map extracted fields onto a Riemann record."""

import datetime
from dataclasses import dataclass

from riemann_shipper.models import ExtractedFields, RiemannRecord


@dataclass(frozen=True)
class RecordSettings:
    """Constant parts of every record, overridable from config."""

    service: str = "Windows"
    state: str = "ok"
    metric: int | float = 100
    ttl: float | None = None


def _parse_timestamp(value: str) -> datetime.datetime | None:
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(value)
    except ValueError:
        return None


def build(fields: ExtractedFields, settings: RecordSettings | None = None) -> RiemannRecord:
    """Build the record for one event. Total: every input yields a record."""
    settings = settings or RecordSettings()
    return RiemannRecord(
        service=settings.service,
        host=fields.hostname,
        state=settings.state,
        metric=settings.metric,
        description=fields.message,
        tags=frozenset({fields.username}),
        time=_parse_timestamp(fields.timestamp),
        ttl=settings.ttl,
    )
