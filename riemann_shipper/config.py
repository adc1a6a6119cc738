"""Configuration module: frozen dataclass loaded from YAML, env vars and CLI args."""

import argparse
import logging
import math
import os
from dataclasses import dataclass, field

import yaml

from riemann_shipper.builder import RecordSettings
from riemann_shipper.models import HostTarget

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5555
CONNECTION_MODES = ("reconnect", "pooled")
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class ConfigError(Exception):
    """Raised when the configuration is invalid."""


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_number(value) -> int | float:
    """Parse an int if possible, else a float (metrics accept both)."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise ConfigError(f"Not a number: {value!r}") from None


def parse_host(value: str) -> HostTarget:
    """Parse ``host:port`` (or bare ``host``) into a :class:`HostTarget`."""
    text = str(value).strip()
    if not text:
        raise ConfigError("Empty Riemann host")

    if text.startswith("["):
        # [ipv6]:port
        addr, _, rest = text[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif text.count(":") == 1:
        addr, _, port_text = text.partition(":")
    else:
        addr, port_text = text, ""

    if not addr:
        raise ConfigError(f"Missing address in host {value!r}")
    if not port_text:
        return HostTarget(addr, DEFAULT_PORT)
    try:
        port = int(port_text)
    except ValueError:
        raise ConfigError(f"Invalid port in host {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range in host {value!r}")
    return HostTarget(addr, port)


def parse_hosts(value) -> tuple[HostTarget, ...]:
    """Accept a list of host strings or one comma-separated string."""
    if isinstance(value, str):
        items = [part for part in value.split(",") if part.strip()]
    else:
        items = list(value or [])
    return tuple(parse_host(item) for item in items)


@dataclass(frozen=True)
class Config:
    hosts: tuple[HostTarget, ...] = (HostTarget("localhost", DEFAULT_PORT),)
    batch_size: int = 2048
    codec: dict = field(default_factory=dict)
    timeout: float = 5.0
    send_delay: float = 1.0
    connection_mode: str = "reconnect"
    service: str = "Windows"
    state: str = "ok"
    metric: int | float = 100
    ttl: float | None = None
    input: str = "-"
    continuous: bool = False
    flush_interval: float = 1.0
    poll_interval: float = 0.5
    metrics_interval: float = 0
    echo: bool = False

    @property
    def record_settings(self) -> RecordSettings:
        return RecordSettings(
            service=self.service, state=self.state, metric=self.metric, ttl=self.ttl,
        )

    def validate(self) -> "Config":
        if not self.hosts:
            raise ConfigError("At least one Riemann host is required")
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.send_delay < 0:
            raise ConfigError(f"send_delay must not be negative, got {self.send_delay}")
        if self.connection_mode not in CONNECTION_MODES:
            raise ConfigError(
                f"connection_mode must be one of {CONNECTION_MODES}, got {self.connection_mode!r}"
            )
        if isinstance(self.metric, int):
            if not INT64_MIN <= self.metric <= INT64_MAX:
                raise ConfigError(f"metric must fit in a signed 64-bit integer, got {self.metric}")
        elif not math.isfinite(self.metric):
            raise ConfigError(f"metric must be finite, got {self.metric}")
        if self.continuous and self.input == "-":
            raise ConfigError("continuous mode requires a file input, not stdin")
        return self


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file {path} not found") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


# Config field -> (env var, converter)
_ENV_VARS = {
    "hosts": ("RIEMANN_HOSTS", parse_hosts),
    "batch_size": ("BATCH_SIZE", int),
    "timeout": ("RIEMANN_TIMEOUT", float),
    "send_delay": ("SEND_DELAY", float),
    "connection_mode": ("CONNECTION_MODE", str),
    "service": ("RIEMANN_SERVICE", str),
    "state": ("RIEMANN_STATE", str),
    "metric": ("RIEMANN_METRIC", _parse_number),
    "ttl": ("RIEMANN_TTL", float),
    "input": ("INPUT_FILE", str),
    "continuous": ("SHIPPING_MODE", lambda v: v.strip().lower() == "continuous"),
    "flush_interval": ("FLUSH_INTERVAL", float),
    "poll_interval": ("POLL_INTERVAL", float),
    "metrics_interval": ("METRICS_INTERVAL", float),
    "echo": ("ECHO", _parse_bool),
}

_YAML_CONVERTERS = {
    "hosts": parse_hosts,
    "batch_size": int,
    "timeout": float,
    "send_delay": float,
    "connection_mode": str,
    "service": str,
    "state": str,
    "metric": _parse_number,
    "ttl": lambda v: None if v is None else float(v),
    "input": str,
    "continuous": _parse_bool,
    "flush_interval": float,
    "poll_interval": float,
    "metrics_interval": float,
    "echo": _parse_bool,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ship NDJSON events to Riemann")
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    parser.add_argument("--hosts", type=str, default=None, help="comma-separated host:port list")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("--send-delay", type=float, default=None)
    parser.add_argument("--connection-mode", choices=CONNECTION_MODES, default=None)
    parser.add_argument("--service", type=str, default=None)
    parser.add_argument("--state", type=str, default=None)
    parser.add_argument("--metric", type=str, default=None)
    parser.add_argument("--ttl", type=float, default=None)
    parser.add_argument("--input", type=str, default=None, help="NDJSON file, '-' for stdin")
    parser.add_argument("--mode", choices=("batch", "continuous"), default=None)
    parser.add_argument("--flush-interval", type=float, default=None)
    parser.add_argument("--poll-interval", type=float, default=None)
    parser.add_argument("--metrics-interval", type=float, default=None)
    parser.add_argument("--echo", action="store_true", default=None)
    return parser


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args (highest priority).

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = _build_parser().parse_args(argv)
    kwargs: dict = {}

    try:
        yaml_data = load_yaml_config(args.config or os.environ.get("CONFIG_PATH"))
        for key, value in yaml_data.items():
            if key == "codec":
                kwargs["codec"] = dict(value or {})
            elif key in _YAML_CONVERTERS:
                kwargs[key] = _YAML_CONVERTERS[key](value)
            else:
                logger.warning("Ignoring unknown config key %r", key)

        for key, (env_name, convert) in _ENV_VARS.items():
            if env_name in os.environ:
                kwargs[key] = convert(os.environ[env_name])

        if args.hosts is not None:
            kwargs["hosts"] = parse_hosts(args.hosts)
        if args.metric is not None:
            kwargs["metric"] = _parse_number(args.metric)
        if args.mode is not None:
            kwargs["continuous"] = args.mode == "continuous"
        for key in (
            "batch_size", "timeout", "send_delay", "connection_mode", "service",
            "state", "ttl", "input", "flush_interval", "poll_interval",
            "metrics_interval", "echo",
        ):
            value = getattr(args, key)
            if value is not None:
                kwargs[key] = value
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

    return Config(**kwargs).validate()
