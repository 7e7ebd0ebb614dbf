"""
Lifecycle controller for the heartbeat agent.

Owns the node's connection state and the heartbeat timer, reacts to broker
client events and termination signals, and publishes status and heartbeats.

Transitions:
  Disconnected --connect--> Connected      publish online (retained), start timer
  Connected    --close/offline--> Disconnected   stop timer
  Connected    --reconnect--> Connected    log only
  any          --error--> unchanged        log only
  not ShuttingDown --signal--> ShuttingDown   shutdown sequence
  ShuttingDown --signal--> ShuttingDown    ignored

Every input is posted onto one queue and handled by run() one at a time, so
handlers never run concurrently and no locks guard the state below.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from heartbeat_agent.core.events import EventKind, LifecycleEvent
from heartbeat_agent.core.heartbeat import HeartbeatTimer
from heartbeat_agent.core.payloads import OFFLINE, ONLINE, build_heartbeat, build_status
from heartbeat_agent.identity import NodeIdentity
from heartbeat_agent.mqtt_client import TransportError
from heartbeat_agent.mqtt_topics import TopicSet

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


class ShutdownTimeout(TimeoutError):
    """The clean disconnect did not complete within the shutdown grace deadline."""


@dataclass(frozen=True, slots=True)
class PublishSettings:
    status_qos: int = 1
    heartbeat_qos: int = 1
    retain_status: bool = True


class LifecycleController:
    def __init__(
        self,
        client: Any,
        identity: NodeIdentity,
        topics: TopicSet,
        *,
        heartbeat_interval_s: float,
        publish: PublishSettings = PublishSettings(),
        shutdown_grace_s: float = 3.0,
        timer_factory: TimerFactory = HeartbeatTimer,
        clock: Callable[[], float] = time.monotonic,
        poll_interval_s: float = 0.5,
    ) -> None:
        self.client = client
        self.identity = identity
        self.topics = topics
        self.heartbeat_interval_s = heartbeat_interval_s
        self.publish_settings = publish
        self.shutdown_grace_s = shutdown_grace_s

        self._timer_factory = timer_factory
        self._clock = clock
        self._poll_interval_s = poll_interval_s

        self._events: queue.SimpleQueue[LifecycleEvent] = queue.SimpleQueue()
        self.state = ConnectionState.DISCONNECTED
        self._timer: Optional[Any] = None
        self._timer_generation = 0
        self._exit_code: Optional[int] = None

        self._handlers: dict[EventKind, Callable[[Any], None]] = {
            EventKind.CONNECT: self._on_connect,
            EventKind.RECONNECT: self._on_reconnect,
            EventKind.CLOSE: self._on_close,
            EventKind.OFFLINE: self._on_offline,
            EventKind.ERROR: self._on_error,
            EventKind.TICK: self._on_tick,
            EventKind.SIGNAL: self._on_signal,
        }

    # -------------------------
    # Inputs (any thread, signal handlers included)
    # -------------------------
    def post(self, event: LifecycleEvent) -> None:
        self._events.put(event)

    def request_shutdown(self, reason: str) -> None:
        self.post(LifecycleEvent(EventKind.SIGNAL, reason))

    # -------------------------
    # Dispatcher
    # -------------------------
    @property
    def finished(self) -> bool:
        return self._exit_code is not None

    @property
    def heartbeat_running(self) -> bool:
        return self._timer is not None

    def run(self) -> int:
        """Handle events until shutdown completes. Returns the process exit code."""
        while self._exit_code is None:
            try:
                event = self._events.get(timeout=self._poll_interval_s)
            except queue.Empty:
                continue
            self.handle(event)
        return self._exit_code

    def handle(self, event: LifecycleEvent) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.warning("Unhandled lifecycle event: %s", event.kind)
            return
        handler(event.detail)

    # -------------------------
    # Heartbeat timer
    # -------------------------
    def _start_timer(self) -> None:
        if self._timer is not None:
            return
        self._timer_generation += 1
        generation = self._timer_generation
        self._timer = self._timer_factory(
            self.heartbeat_interval_s,
            lambda: self.post(LifecycleEvent(EventKind.TICK, generation)),
        )
        self._timer.start()
        logger.debug("Heartbeat timer started (every %.1fs)", self.heartbeat_interval_s)

    def _stop_timer(self) -> None:
        if self._timer is None:
            return
        timer, self._timer = self._timer, None
        try:
            timer.cancel()
        except Exception:
            logger.exception("Failed to cancel heartbeat timer")
        logger.debug("Heartbeat timer stopped")

    # -------------------------
    # Publishing
    # -------------------------
    def _publish_status(self, state: str, *, wait: bool = False, timeout: Optional[float] = None) -> bool:
        settings = self.publish_settings
        try:
            self.client.publish(
                self.topics.status,
                build_status(state).to_json(),
                qos=settings.status_qos,
                retain=settings.retain_status,
                wait=wait,
                timeout=timeout,
            )
        except TransportError as exc:
            logger.warning("Status %s publish failed: %s", state, exc)
            return False
        logger.info("Status %s published topic=%s", state, self.topics.status)
        return True

    def _publish_heartbeat(self) -> None:
        try:
            payload = build_heartbeat(self.identity).to_json()
            self.client.publish(
                self.topics.heartbeat,
                payload,
                qos=self.publish_settings.heartbeat_qos,
                retain=False,
            )
        except TransportError as exc:
            logger.warning("Heartbeat publish failed: %s", exc)
            return
        except Exception:
            logger.exception("Heartbeat publish error")
            return
        logger.debug("Heartbeat published topic=%s", self.topics.heartbeat)

    # -------------------------
    # Handlers
    # -------------------------
    def _on_connect(self, _detail: Any) -> None:
        if self.state is ConnectionState.SHUTTING_DOWN:
            logger.debug("Ignoring connect during shutdown")
            return
        logger.info("MQTT connected")
        self.state = ConnectionState.CONNECTED
        # online is issued before the timer exists, so no heartbeat can precede it
        self._publish_status(ONLINE)
        self._start_timer()

    def _on_reconnect(self, _detail: Any) -> None:
        logger.info("MQTT reconnecting...")

    def _on_close(self, _detail: Any) -> None:
        if self.state is ConnectionState.SHUTTING_DOWN:
            return
        logger.warning("MQTT connection closed")
        self._leave_connected()

    def _on_offline(self, _detail: Any) -> None:
        if self.state is ConnectionState.SHUTTING_DOWN:
            return
        logger.warning("MQTT client offline")
        self._leave_connected()

    def _leave_connected(self) -> None:
        self._stop_timer()
        self.state = ConnectionState.DISCONNECTED

    def _on_error(self, detail: Any) -> None:
        logger.error("MQTT error: %s", detail)

    def _on_tick(self, generation: Any) -> None:
        if (
            self.state is not ConnectionState.CONNECTED
            or self._timer is None
            or generation != self._timer_generation
        ):
            logger.debug("Dropping stale heartbeat tick (generation %s)", generation)
            return
        if not self.client.connected:
            logger.debug("Heartbeat skipped: client not connected")
            return
        self._publish_heartbeat()

    def _on_signal(self, reason: Any) -> None:
        if self.state is ConnectionState.SHUTTING_DOWN:
            logger.info("Shutdown already in progress; ignoring %s", reason)
            return
        self.shutdown(str(reason))

    # -------------------------
    # Shutdown
    # -------------------------
    def shutdown(self, reason: str) -> None:
        """
        Ordered, best-effort shutdown:
        1) mark ShuttingDown  2) stop timer  3) publish offline and wait for delivery
        4) request clean disconnect  5) finish on disconnect or grace deadline.
        """
        if self.state is ConnectionState.SHUTTING_DOWN:
            return
        self.state = ConnectionState.SHUTTING_DOWN
        deadline = self._clock() + self.shutdown_grace_s
        logger.info("Shutting down (%s)", reason)

        self._stop_timer()

        try:
            if self.client.connected:
                self._publish_status(OFFLINE, wait=True, timeout=self._remaining(deadline))
        except Exception:
            logger.exception("Error publishing offline status")

        try:
            done = self.client.disconnect()
            self._await_disconnect(done, self._remaining(deadline))
            logger.info("MQTT disconnected")
        except ShutdownTimeout as exc:
            logger.warning("%s", exc)
        except Exception:
            logger.exception("Error disconnecting MQTT")

        self._close_client(self._remaining(deadline))

        self._exit_code = 0

    def _close_client(self, timeout: float) -> None:
        # Stopping the network loop joins its thread, which can sit in a blocking
        # connect attempt; the grace deadline bounds the wait, not the thread.
        closer = threading.Thread(target=self._close_quietly, daemon=True, name="mqtt-close")
        closer.start()
        closer.join(timeout)
        if closer.is_alive():
            logger.warning("MQTT client did not stop within the shutdown grace deadline; exiting anyway")

    def _close_quietly(self) -> None:
        try:
            self.client.close()
        except Exception:
            logger.exception("Error stopping MQTT client")

    def _remaining(self, deadline: float) -> float:
        return max(0.0, deadline - self._clock())

    def _await_disconnect(self, done: Any, timeout: float) -> None:
        if not done.wait(timeout):
            raise ShutdownTimeout(
                f"Disconnect did not complete within {self.shutdown_grace_s:.1f}s; exiting anyway"
            )
