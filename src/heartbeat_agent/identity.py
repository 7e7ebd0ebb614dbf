"""
Node identity: node id, per-process client id and agent version.
"""

from __future__ import annotations

import socket
import uuid
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from typing import Optional


def package_version() -> str:
    try:
        return _pkg_version("heartbeat-agent")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _random_suffix() -> str:
    return uuid.uuid4().hex[:8]


@dataclass(frozen=True, slots=True)
class NodeIdentity:
    """
    Immutable for the process lifetime.

    client_id is computed once at construction: <prefix>-<node_id>-<8 hex>.
    The random suffix keeps a restarted process from taking over (or being
    kicked by) the broker session of its previous instance.
    """

    node_id: str
    client_id_prefix: str
    version: str
    client_id: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "client_id", f"{self.client_id_prefix}-{self.node_id}-{_random_suffix()}"
        )


def build_identity(
    node_id: Optional[str],
    client_id_prefix: str,
    version: Optional[str] = None,
) -> NodeIdentity:
    """Resolve node id (default: host name) and version (default: installed package)."""
    return NodeIdentity(
        node_id=node_id or socket.gethostname(),
        client_id_prefix=client_id_prefix,
        version=version or package_version(),
    )
