"""
Heartbeat Agent: MQTT presence agent for a networked node.

Connects to a broker, announces online/offline status on a retained topic
backed by a last-will, and publishes a periodic liveness heartbeat.
"""
