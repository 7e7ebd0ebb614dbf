"""
Heartbeat Agent configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/heartbeat-agent/agent.env (system install)
2) ~/.config/heartbeat-agent/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)

Env files never override a variable that is already set, so the earliest file
to define a key wins among files and the process environment wins overall.
"""

from __future__ import annotations

import math
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

from heartbeat_agent.mqtt_topics import TopicSchemaError, validate_node_id, validate_prefix


class ConfigurationError(ValueError):
    """Raised when configuration is missing or invalid."""


DEFAULT_TOPIC_PREFIX = "lan/rpi"
DEFAULT_HEARTBEAT_INTERVAL_S = 15.0
DEFAULT_QOS = 1
DEFAULT_RETAIN_STATUS = True
DEFAULT_CLIENT_ID_PREFIX = "hb"
DEFAULT_KEEPALIVE_S = 30
DEFAULT_SHUTDOWN_GRACE_S = 3.0
DEFAULT_LOG_LEVEL = "info"

LOG_LEVELS = ("debug", "info", "warn", "error")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# scheme -> (default port, tls, transport)
_SCHEMES: dict[str, tuple[int, bool, str]] = {
    "mqtt": (1883, False, "tcp"),
    "tcp": (1883, False, "tcp"),
    "mqtts": (8883, True, "tcp"),
    "ssl": (8883, True, "tcp"),
    "ws": (80, False, "websockets"),
    "wss": (443, True, "websockets"),
}
_DEFAULT_WS_PATH = "/mqtt"


@dataclass(frozen=True, slots=True)
class BrokerAddress:
    url: str
    host: str
    port: int
    tls: bool
    transport: str  # "tcp" | "websockets"
    path: str = ""  # websocket path only


@dataclass(frozen=True, slots=True)
class AgentConfig:
    broker: BrokerAddress
    username: Optional[str]
    password: Optional[str]
    node_id: Optional[str]  # None -> host name
    topic_prefix: str
    heartbeat_interval_s: float
    qos: int
    heartbeat_qos: int
    retain_status: bool
    client_id_prefix: str
    keepalive_s: int
    shutdown_grace_s: float
    log_level: str


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/heartbeat-agent/agent.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "heartbeat-agent" / ".env"

    # 3) project override
    yield Path(".env")


def _opt_env(key: str) -> Optional[str]:
    v = os.getenv(key)
    if v is None or not v.strip():
        return None
    return v.strip()


def _require_env(key: str) -> str:
    v = _opt_env(key)
    if v is None:
        raise ConfigurationError(f"Missing required environment variable: {key}")
    return v


def _parse_positive_number(key: str, raw: str) -> float:
    try:
        n = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid number for {key}: {raw!r}") from exc
    if not math.isfinite(n) or n <= 0:
        raise ConfigurationError(f"Invalid {key}: {raw!r} (must be a finite number > 0)")
    return n


def _parse_bool(key: str, raw: str) -> bool:
    v = raw.lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ConfigurationError(f"Invalid boolean for {key}: {raw!r}")


def _parse_qos(key: str, raw: str) -> int:
    if raw in ("0", "1", "2"):
        return int(raw)
    raise ConfigurationError(f"Invalid {key}: {raw!r} (must be 0|1|2)")


def _parse_log_level(key: str, raw: str) -> str:
    v = raw.lower()
    if v in LOG_LEVELS:
        return v
    raise ConfigurationError(f"Invalid {key}: {raw!r} (must be one of {', '.join(LOG_LEVELS)})")


def parse_broker_url(raw: str, *, key: str = "MQTT_URL") -> BrokerAddress:
    """
    Parse a broker URL such as mqtt://host:1883, mqtts://host or wss://host/mqtt.
    Raises ConfigurationError when the scheme is unsupported, the host is
    missing or the port is out of range.
    """
    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise ConfigurationError(
            f"Invalid {key}: {raw!r} (scheme must be one of {', '.join(_SCHEMES)})"
        )
    try:
        port = parts.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid {key}: {raw!r} (bad port)") from exc
    host = parts.hostname
    if not host:
        raise ConfigurationError(f"Invalid {key}: {raw!r} (missing host)")

    default_port, tls, transport = _SCHEMES[scheme]
    if port is None:
        port = default_port
    elif not (1 <= port <= 65535):
        raise ConfigurationError(f"Invalid {key}: {raw!r} (port out of range)")

    path = ""
    if transport == "websockets":
        path = parts.path or _DEFAULT_WS_PATH

    return BrokerAddress(url=raw, host=host, port=port, tls=tls, transport=transport, path=path)


def _check_topic_level(key: str, raw: str, validate: Callable[[str], str]) -> str:
    try:
        return validate(raw)
    except TopicSchemaError as exc:
        raise ConfigurationError(f"Invalid {key}: {raw!r} ({exc})") from exc


def load_config(*, dotenv_enabled: bool = True) -> AgentConfig:
    """
    Load config by reading env files and then validating environment variables.

    Returns an immutable AgentConfig. Raises ConfigurationError on failure.
    """
    if dotenv_enabled:
        for p in _env_paths():
            if p.is_file():
                # do not override existing env vars; later files can fill missing
                load_dotenv(p, override=False)

    broker = parse_broker_url(_require_env("MQTT_URL"))

    username = _opt_env("MQTT_USERNAME")
    password = _opt_env("MQTT_PASSWORD")
    if password is not None and username is None:
        raise ConfigurationError("MQTT_PASSWORD is set but MQTT_USERNAME is missing")

    node_id = _opt_env("NODE_ID")
    if node_id is not None:
        node_id = _check_topic_level("NODE_ID", node_id, validate_node_id)

    raw = _opt_env("TOPIC_PREFIX")
    topic_prefix = _check_topic_level("TOPIC_PREFIX", raw, validate_prefix) if raw else DEFAULT_TOPIC_PREFIX

    raw = _opt_env("HEARTBEAT_INTERVAL_SEC")
    heartbeat_interval_s = (
        _parse_positive_number("HEARTBEAT_INTERVAL_SEC", raw) if raw else DEFAULT_HEARTBEAT_INTERVAL_S
    )

    raw = _opt_env("QOS")
    qos = _parse_qos("QOS", raw) if raw else DEFAULT_QOS

    raw = _opt_env("HEARTBEAT_QOS")
    heartbeat_qos = _parse_qos("HEARTBEAT_QOS", raw) if raw else qos

    raw = _opt_env("RETAIN_STATUS")
    retain_status = _parse_bool("RETAIN_STATUS", raw) if raw else DEFAULT_RETAIN_STATUS

    client_id_prefix = _opt_env("CLIENT_ID_PREFIX") or DEFAULT_CLIENT_ID_PREFIX

    raw = _opt_env("KEEPALIVE_SEC")
    # paho takes whole seconds
    keepalive_s = math.ceil(_parse_positive_number("KEEPALIVE_SEC", raw)) if raw else DEFAULT_KEEPALIVE_S

    raw = _opt_env("SHUTDOWN_GRACE_SEC")
    shutdown_grace_s = (
        _parse_positive_number("SHUTDOWN_GRACE_SEC", raw) if raw else DEFAULT_SHUTDOWN_GRACE_S
    )

    raw = _opt_env("LOG_LEVEL")
    log_level = _parse_log_level("LOG_LEVEL", raw) if raw else DEFAULT_LOG_LEVEL

    return AgentConfig(
        broker=broker,
        username=username,
        password=password,
        node_id=node_id,
        topic_prefix=topic_prefix,
        heartbeat_interval_s=heartbeat_interval_s,
        qos=qos,
        heartbeat_qos=heartbeat_qos,
        retain_status=retain_status,
        client_id_prefix=client_id_prefix,
        keepalive_s=keepalive_s,
        shutdown_grace_s=shutdown_grace_s,
        log_level=log_level,
    )
