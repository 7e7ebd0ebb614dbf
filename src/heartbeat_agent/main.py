"""
Heartbeat Agent entrypoint.

CLI:
  heartbeat-agent run        -> run agent until SIGINT/SIGTERM
  heartbeat-agent --version  -> print version

Exit codes: 0 after signal-driven shutdown, 1 on startup failure
(invalid configuration or MQTT client setup error).
"""

from __future__ import annotations

import argparse
import logging
import signal

from heartbeat_agent.identity import package_version


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


_configure_logging()
logger = logging.getLogger(__name__)


def get_version_string() -> str:
    return package_version()


def _install_signal_handlers(controller) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        name = signal.Signals(signum).name
        logger.info("Received signal %s; requesting shutdown", name)
        controller.request_shutdown(name)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_agent() -> int:
    """
    Runtime mode: resolve config, connect to MQTT, publish presence and
    heartbeats, block until shutdown. Returns process exit code.
    """
    from heartbeat_agent.config import ConfigurationError, load_config
    from heartbeat_agent.core.lifecycle import LifecycleController, PublishSettings
    from heartbeat_agent.core.log_config import apply_log_level_from_config
    from heartbeat_agent.core.payloads import OFFLINE, build_status
    from heartbeat_agent.identity import build_identity
    from heartbeat_agent.mqtt_client import BrokerClient, LastWill
    from heartbeat_agent.mqtt_topics import TopicSchemaError, TopicSet

    try:
        cfg = load_config()
        apply_log_level_from_config(cfg.log_level)
        identity = build_identity(cfg.node_id, cfg.client_id_prefix)
        topics = TopicSet(cfg.topic_prefix, identity.node_id)
    except (ConfigurationError, TopicSchemaError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    logger.info("============================================================")
    logger.info("Heartbeat Agent")
    logger.info("Version: %s", identity.version)
    logger.info("Node id: %s", identity.node_id)
    logger.info("Status topic: %s", topics.status)
    logger.info("Heartbeat topic: %s (every %.1fs)", topics.heartbeat, cfg.heartbeat_interval_s)
    logger.info("============================================================")

    will = LastWill(
        topic=topics.status,
        payload=build_status(OFFLINE).to_json(),
        qos=cfg.qos,
        retain=cfg.retain_status,
    )
    client = BrokerClient(
        cfg.broker,
        client_id=identity.client_id,
        will=will,
        username=cfg.username,
        password=cfg.password,
        keepalive_s=cfg.keepalive_s,
    )
    controller = LifecycleController(
        client,
        identity,
        topics,
        heartbeat_interval_s=cfg.heartbeat_interval_s,
        publish=PublishSettings(
            status_qos=cfg.qos,
            heartbeat_qos=cfg.heartbeat_qos,
            retain_status=cfg.retain_status,
        ),
        shutdown_grace_s=cfg.shutdown_grace_s,
    )
    client.set_listener(controller.post)
    _install_signal_handlers(controller)

    if not client.connect():
        logger.error("MQTT client setup failed")
        return 1

    logger.info("Agent running (shutdown via SIGINT/SIGTERM)")
    return controller.run()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="heartbeat-agent")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="Run agent runtime")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_agent())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
