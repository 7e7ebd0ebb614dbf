import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from heartbeat_agent.config import parse_broker_url
from heartbeat_agent.core.events import EventKind
from heartbeat_agent.mqtt_client import BrokerClient, LastWill, TransportError

OK = SimpleNamespace(is_failure=False)
REFUSED = SimpleNamespace(is_failure=True)


@pytest.fixture
def fake_paho_client(monkeypatch):
    """
    Patch paho.mqtt.client.Client to return a controllable fake.
    """
    fake = MagicMock()
    fake.is_connected.return_value = True
    fake.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
    fake.disconnect.return_value = mqtt.MQTT_ERR_SUCCESS
    ctor_calls = []

    def _ctor(*args, **kwargs):
        ctor_calls.append((args, kwargs))
        return fake

    monkeypatch.setattr("paho.mqtt.client.Client", _ctor)
    fake.ctor_calls = ctor_calls
    return fake


def _client(url="mqtt://localhost:1883", **kwargs):
    will = LastWill(
        topic="lan/rpi/node-1/status",
        payload=json.dumps({"state": "offline", "ts": "2024-01-01T00:00:00.000Z"}),
        qos=1,
        retain=True,
    )
    return BrokerClient(
        parse_broker_url(url),
        client_id="hb-node-1-abcd1234",
        will=will,
        keepalive_s=30,
        **kwargs,
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def client(fake_paho_client, events):
    c = _client(username="user", password="pw")
    c.set_listener(events.append)
    return c


def test_connect_sets_lwt_and_starts_loop(client, fake_paho_client):
    assert client.connect() is True

    args, kwargs = fake_paho_client.ctor_calls[0]
    assert args[0] == mqtt.CallbackAPIVersion.VERSION2
    assert kwargs["client_id"] == "hb-node-1-abcd1234"
    assert kwargs["clean_session"] is True
    assert kwargs["transport"] == "tcp"

    fake_paho_client.will_set.assert_called_once()
    args, kwargs = fake_paho_client.will_set.call_args
    assert args[0] == "lan/rpi/node-1/status"
    assert kwargs["retain"] is True
    assert kwargs["qos"] == 1
    assert json.loads(kwargs["payload"])["state"] == "offline"

    fake_paho_client.username_pw_set.assert_called_once_with("user", "pw")
    fake_paho_client.reconnect_delay_set.assert_called_once_with(min_delay=2, max_delay=2)
    assert fake_paho_client.connect_timeout == 10.0
    fake_paho_client.connect_async.assert_called_once_with("localhost", 1883, keepalive=30)
    fake_paho_client.loop_start.assert_called_once()
    fake_paho_client.tls_set.assert_not_called()


def test_connect_without_credentials_skips_username(fake_paho_client):
    c = _client()
    c.connect()
    fake_paho_client.username_pw_set.assert_not_called()


def test_connect_tls_and_websockets_from_url(fake_paho_client):
    c = _client("wss://broker.example:8443/ws")
    c.connect()

    _, kwargs = fake_paho_client.ctor_calls[0]
    assert kwargs["transport"] == "websockets"
    fake_paho_client.tls_set.assert_called_once()
    fake_paho_client.ws_set_options.assert_called_once_with(path="/ws")
    fake_paho_client.connect_async.assert_called_once_with("broker.example", 8443, keepalive=30)


def test_connect_returns_false_on_setup_error(client, fake_paho_client):
    fake_paho_client.connect_async.side_effect = OSError("bad host")

    assert client.connect() is False
    fake_paho_client.loop_start.assert_not_called()


def test_on_connect_emits_connect(client, fake_paho_client, events):
    client.connect()
    client._on_connect(fake_paho_client, None, {}, OK, None)

    assert [e.kind for e in events] == [EventKind.CONNECT]


def test_refused_connack_emits_error(client, fake_paho_client, events):
    client.connect()
    client._on_connect(fake_paho_client, None, {}, REFUSED, None)

    assert [e.kind for e in events] == [EventKind.ERROR]
    assert events[0].detail is REFUSED


def test_disconnect_callback_emits_close(client, fake_paho_client, events):
    client.connect()
    client._on_disconnect(fake_paho_client, None, {}, REFUSED, None)

    assert [e.kind for e in events] == [EventKind.CLOSE]


def test_connect_fail_emits_offline(client, fake_paho_client, events):
    client.connect()
    client._on_connect_fail(fake_paho_client, None)

    assert [e.kind for e in events] == [EventKind.OFFLINE]


def test_reconnect_emitted_only_after_first_attempt(client, fake_paho_client, events):
    client.connect()
    client._on_pre_connect(fake_paho_client, None)
    assert events == []

    client._on_pre_connect(fake_paho_client, None)
    client._on_pre_connect(fake_paho_client, None)
    assert [e.kind for e in events] == [EventKind.RECONNECT, EventKind.RECONNECT]


def test_events_without_listener_are_dropped(fake_paho_client):
    c = _client()
    c.connect()
    c._on_connect(fake_paho_client, None, {}, OK, None)


def test_connected_reflects_paho(client, fake_paho_client):
    assert client.connected is False
    client.connect()
    assert client.connected is True
    fake_paho_client.is_connected.return_value = False
    assert client.connected is False


def test_publish_passes_qos_and_retain(client, fake_paho_client):
    client.connect()
    client.publish("t/status", "{}", qos=2, retain=True)

    fake_paho_client.publish.assert_called_once_with("t/status", payload="{}", qos=2, retain=True)
    fake_paho_client.publish.return_value.wait_for_publish.assert_not_called()


def test_publish_before_connect_raises(client):
    with pytest.raises(TransportError):
        client.publish("t", "{}", qos=0, retain=False)


def test_publish_bad_rc_raises(client, fake_paho_client):
    client.connect()
    fake_paho_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)

    with pytest.raises(TransportError):
        client.publish("t", "{}", qos=1, retain=False)


def test_publish_rejected_by_paho_raises(client, fake_paho_client):
    client.connect()
    fake_paho_client.publish.side_effect = ValueError("Invalid topic.")

    with pytest.raises(TransportError):
        client.publish("t/+", "{}", qos=1, retain=False)


def test_publish_wait_confirms_delivery(client, fake_paho_client):
    client.connect()
    info = fake_paho_client.publish.return_value
    info.is_published.return_value = True

    client.publish("t", "{}", qos=1, retain=True, wait=True, timeout=1.5)

    info.wait_for_publish.assert_called_once_with(timeout=1.5)


def test_publish_wait_uses_default_timeout(fake_paho_client):
    c = _client(publish_timeout_s=4.0)
    c.connect()
    info = fake_paho_client.publish.return_value
    info.is_published.return_value = True

    c.publish("t", "{}", qos=1, retain=True, wait=True)

    info.wait_for_publish.assert_called_once_with(timeout=4.0)


def test_publish_wait_timeout_raises(client, fake_paho_client):
    client.connect()
    info = fake_paho_client.publish.return_value
    info.is_published.return_value = False

    with pytest.raises(TransportError, match="not confirmed"):
        client.publish("t", "{}", qos=1, retain=True, wait=True, timeout=0.1)


def test_disconnect_when_connected_waits_for_callback(client, fake_paho_client):
    client.connect()

    done = client.disconnect()

    fake_paho_client.disconnect.assert_called_once()
    assert not done.is_set()
    client._on_disconnect(fake_paho_client, None, {}, OK, None)
    assert done.is_set()


def test_disconnect_when_not_connected_is_immediate(client, fake_paho_client):
    client.connect()
    fake_paho_client.is_connected.return_value = False

    done = client.disconnect()

    assert done.is_set()
    fake_paho_client.disconnect.assert_not_called()


def test_close_stops_loop(client, fake_paho_client):
    client.connect()
    client.close()

    fake_paho_client.loop_stop.assert_called_once()
    assert client.connected is False
    client.close()
    fake_paho_client.loop_stop.assert_called_once()
