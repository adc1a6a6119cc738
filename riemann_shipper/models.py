"""Event and record models shared across the shipper."""

import datetime
from dataclasses import dataclass, field


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class HostTarget:
    host: str
    port: int = 5555

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class IncomingEvent:
    """One upstream event: a nested field tree plus its timestamp."""

    fields: dict = field(default_factory=dict)
    timestamp: datetime.datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class ExtractedFields:
    hostname: str = ""
    os_family: str = ""
    os_kernel: str = ""
    message: str = ""
    username: str = ""
    action: str = ""
    timestamp: str = ""


@dataclass(frozen=True)
class RiemannRecord:
    service: str = "Windows"
    host: str = ""
    state: str = "ok"
    metric: int | float = 100
    description: str = ""
    tags: frozenset[str] = frozenset()
    time: datetime.datetime | None = None
    ttl: float | None = None


class Batch:
    """Ordered events handed over by the batch source, acknowledged once."""

    def __init__(self, events: list[IncomingEvent] | None = None):
        self.events: list[IncomingEvent] = list(events or [])
        self.ack_count = 0

    def ack(self):
        self.ack_count += 1

    @property
    def acked(self) -> bool:
        return self.ack_count > 0

    def __len__(self) -> int:
        return len(self.events)


@dataclass
class BatchOutcome:
    acked: int = 0
    dropped: int = 0

    @property
    def total(self) -> int:
        return self.acked + self.dropped
