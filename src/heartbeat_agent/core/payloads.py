"""
Payload builders for the heartbeat agent.

Pure functions that build MQTT payloads. No state; every call samples the
clock (and host metrics for heartbeats) at the instant it is invoked.

Wire format:
  status:    {"state": "online"|"offline", "ts": ISO-8601}
  heartbeat: {"ts", "nodeId", "uptimeSec", "loadAvg": [1m, 5m, 15m],
              "mem": {"total", "free"}, "pid", "version"}
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import psutil

from heartbeat_agent.identity import NodeIdentity

ONLINE = "online"
OFFLINE = "offline"
STATUS_STATES = (ONLINE, OFFLINE)


def now_iso8601() -> str:
    """Return current UTC time as ISO8601 string with millisecond precision, Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_json(payload: dict[str, Any]) -> str:
    """Canonical encoding: sorted keys, compact separators."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class StatusPayload:
    state: str
    ts: str

    def to_dict(self) -> dict[str, Any]:
        return {"state": self.state, "ts": self.ts}

    def to_json(self) -> str:
        return to_json(self.to_dict())


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    ts: str
    node_id: str
    uptime_s: int
    load_avg: tuple[float, float, float]
    mem_total: int
    mem_free: int
    pid: int
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.ts,
            "nodeId": self.node_id,
            "uptimeSec": self.uptime_s,
            "loadAvg": list(self.load_avg),
            "mem": {"total": self.mem_total, "free": self.mem_free},
            "pid": self.pid,
            "version": self.version,
        }

    def to_json(self) -> str:
        return to_json(self.to_dict())


def build_status(state: str) -> StatusPayload:
    """
    Build status. Contract: state, ts.
    state: online | offline
    """
    if state not in STATUS_STATES:
        raise ValueError(f"status state must be one of {STATUS_STATES}, got {state!r}")
    return StatusPayload(state=state, ts=now_iso8601())


def _host_uptime_s() -> int:
    return max(0, int(time.time() - psutil.boot_time()))


def _load_avg() -> tuple[float, float, float]:
    one, five, fifteen = psutil.getloadavg()
    return (float(one), float(five), float(fifteen))


def build_heartbeat(identity: NodeIdentity) -> HeartbeatPayload:
    """
    Build heartbeat. Contract: ts, nodeId, uptimeSec (host), loadAvg, mem, pid, version.
    mem.free is the memory available to new processes without swapping.
    """
    vm = psutil.virtual_memory()
    return HeartbeatPayload(
        ts=now_iso8601(),
        node_id=identity.node_id,
        uptime_s=_host_uptime_s(),
        load_avg=_load_avg(),
        mem_total=int(vm.total),
        mem_free=int(vm.available),
        pid=os.getpid(),
        version=identity.version,
    )
