"""
MQTT topic schema for the heartbeat agent.

All topics under <prefix>/<node_id>/.
Retained: status.
Stream: heartbeat.
"""

from __future__ import annotations

from dataclasses import dataclass


class TopicSchemaError(ValueError):
    """Raised when an invalid identifier is used to construct topics."""


def validate_prefix(prefix: str) -> str:
    if not isinstance(prefix, str) or not prefix:
        raise TopicSchemaError("topic prefix must be a non-empty string")
    if "+" in prefix or "#" in prefix:
        raise TopicSchemaError(f"topic prefix '{prefix}' must not contain wildcards")
    if any(level == "" for level in prefix.split("/")):
        raise TopicSchemaError(f"topic prefix '{prefix}' has an empty level")
    return prefix


def validate_node_id(node_id: str) -> str:
    if not isinstance(node_id, str) or not node_id:
        raise TopicSchemaError("node_id must be a non-empty string")
    if any(c in node_id for c in "/+#"):
        raise TopicSchemaError(
            f"node_id '{node_id}' is invalid; must not contain '/', '+' or '#'"
        )
    return node_id


@dataclass(frozen=True, slots=True)
class TopicSet:
    """
    MQTT topics for a single node.
    Root: <prefix>/<node_id>
    """

    prefix: str
    node_id: str

    def __post_init__(self) -> None:
        validate_prefix(self.prefix)
        validate_node_id(self.node_id)

    @property
    def base(self) -> str:
        return f"{self.prefix}/{self.node_id}"

    @property
    def status(self) -> str:
        return f"{self.base}/status"

    @property
    def heartbeat(self) -> str:
        return f"{self.base}/heartbeat"
