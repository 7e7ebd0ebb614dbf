"""
MQTT client adapter for the heartbeat agent.

Owns the paho client: socket, TLS, keep-alive ping, last will and automatic
reconnect. Exposes connection changes as LifecycleEvents delivered to a single
listener and a publish call that raises TransportError on failure.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from heartbeat_agent.config import BrokerAddress
from heartbeat_agent.core.events import EventKind, LifecycleEvent

logger = logging.getLogger(__name__)

Listener = Callable[[LifecycleEvent], None]


class TransportError(RuntimeError):
    """Raised when the broker client rejects or cannot confirm a publish."""


@dataclass(frozen=True, slots=True)
class LastWill:
    topic: str
    payload: str
    qos: int
    retain: bool


class BrokerClient:
    """
    MQTT client for a single node. Call set_listener() before connect().

    connect() only schedules the connection: paho's network thread performs the
    first attempt and every reconnect (fixed delay), forever, until disconnect().
    """

    def __init__(
        self,
        address: BrokerAddress,
        *,
        client_id: str,
        will: LastWill,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive_s: int = 30,
        connect_timeout_s: float = 10.0,
        reconnect_delay_s: int = 2,
        publish_timeout_s: float = 10.0,
    ) -> None:
        self.address = address
        self.client_id = client_id
        self.will = will
        self.username = username
        self.password = password
        self.keepalive_s = keepalive_s
        self.connect_timeout_s = connect_timeout_s
        self.reconnect_delay_s = reconnect_delay_s
        self.publish_timeout_s = publish_timeout_s

        self._client: Optional[mqtt.Client] = None
        self._listener: Optional[Listener] = None
        self._attempts = 0
        self._disconnected = threading.Event()

    def set_listener(self, listener: Listener) -> None:
        self._listener = listener

    def _emit(self, kind: EventKind, detail: Any = None) -> None:
        if self._listener is None:
            logger.debug("No listener for MQTT event %s", kind.value)
            return
        self._listener(LifecycleEvent(kind, detail))

    # -------------------------
    # paho callbacks (network thread)
    # -------------------------
    def _on_pre_connect(self, client: mqtt.Client, userdata: Any) -> None:
        self._attempts += 1
        if self._attempts > 1:
            self._emit(EventKind.RECONNECT)

    def _on_connect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.error("MQTT connect refused: %s", reason_code)
            self._emit(EventKind.ERROR, reason_code)
            return
        self._disconnected.clear()
        self._emit(EventKind.CONNECT)

    def _on_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        self._emit(EventKind.OFFLINE)

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.warning("Unexpected disconnect: %s", reason_code)
        self._disconnected.set()
        self._emit(EventKind.CLOSE, reason_code)

    # -------------------------
    # Contract used by the lifecycle controller
    # -------------------------
    def connect(self) -> bool:
        """Build the client and start its network loop. Returns False on setup failure."""
        try:
            addr = self.address
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                clean_session=True,
                protocol=mqtt.MQTTv311,
                transport=addr.transport,
            )
            if self.username:
                client.username_pw_set(self.username, self.password)
            if addr.tls:
                client.tls_set()
            if addr.transport == "websockets":
                client.ws_set_options(path=addr.path)

            # Broker publishes this retained offline status if we vanish without a clean disconnect.
            client.will_set(
                self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )
            client.reconnect_delay_set(
                min_delay=self.reconnect_delay_s, max_delay=self.reconnect_delay_s
            )
            client.connect_timeout = self.connect_timeout_s

            client.on_pre_connect = self._on_pre_connect
            client.on_connect = self._on_connect
            client.on_connect_fail = self._on_connect_fail
            client.on_disconnect = self._on_disconnect

            logger.info(
                "Connecting to MQTT url=%s client_id=%s", addr.url, self.client_id
            )
            client.connect_async(addr.host, addr.port, keepalive=self.keepalive_s)
            client.loop_start()

            self._client = client
            return True
        except Exception:
            logger.exception("Failed to set up MQTT client")
            return False

    @property
    def connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    def publish(
        self,
        topic: str,
        payload: str,
        *,
        qos: int,
        retain: bool,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Publish payload. With wait=True, block until the broker confirms delivery
        (per qos) or timeout (default: publish_timeout_s) expires.
        Raises TransportError on rejection or timeout.
        """
        if not self._client:
            raise TransportError("MQTT client not started")
        try:
            info = self._client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (ValueError, RuntimeError) as exc:
            raise TransportError(f"publish to {topic} rejected: {exc}") from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        if not wait:
            return
        limit = self.publish_timeout_s if timeout is None else timeout
        try:
            info.wait_for_publish(timeout=limit)
        except (ValueError, RuntimeError) as exc:
            raise TransportError(f"publish to {topic} failed: {exc}") from exc
        if not info.is_published():
            raise TransportError(f"publish to {topic} not confirmed within {limit:.1f}s")

    def disconnect(self) -> threading.Event:
        """
        Request a clean disconnect (no last will). Returns an event that is set
        once the disconnect has completed; already set when not connected.
        """
        done = self._disconnected
        if not self.connected:
            done.set()
            return done
        done.clear()
        rc = self._client.disconnect()
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("MQTT disconnect request returned %s", mqtt.error_string(rc))
            done.set()
        return done

    def close(self) -> None:
        """Stop the network loop. The client cannot be reused afterwards."""
        if not self._client:
            return
        try:
            self._client.loop_stop()
        finally:
            self._client = None
