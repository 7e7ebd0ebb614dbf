"""
Pytest configuration and shared fixtures
"""
import os
import sys

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

ENV_KEYS = [
    'MQTT_URL',
    'MQTT_USERNAME',
    'MQTT_PASSWORD',
    'NODE_ID',
    'TOPIC_PREFIX',
    'HEARTBEAT_INTERVAL_SEC',
    'QOS',
    'HEARTBEAT_QOS',
    'RETAIN_STATUS',
    'CLIENT_ID_PREFIX',
    'KEEPALIVE_SEC',
    'SHUTDOWN_GRACE_SEC',
    'LOG_LEVEL',
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every agent variable so host settings cannot leak into tests"""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def mock_env(clean_env):
    """Set up a minimal valid environment"""
    env_vars = {
        'MQTT_URL': 'mqtt://test.mqtt.local:1883',
        'NODE_ID': 'node-1',
    }

    for key, value in env_vars.items():
        clean_env.setenv(key, value)

    return env_vars


@pytest.fixture
def no_env_files(monkeypatch):
    """Keep load_config from reading env files on the test machine"""
    monkeypatch.setattr("heartbeat_agent.config._env_paths", lambda: [])
