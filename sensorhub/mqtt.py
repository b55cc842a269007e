import json
import logging
from typing import Any, Callable, Dict

from paho.mqtt import client as mqtt

from sensorhub.events import Event, EventPublisher

log = logging.getLogger(__name__)


class MqttEventBus(EventPublisher):
    """Publishes hierarchy notifications to ``<base_topic>/<event>`` and dispatches them to subscribers."""

    def __init__(self, cfg):
        self.cfg = cfg
        self.cli = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=cfg.client_id,
            clean_session=True,
        )
        if cfg.username:
            self.cli.username_pw_set(cfg.username, cfg.password or "")
        self.cli.connect_async(cfg.host, cfg.port, keepalive=30)
        self.cli.loop_start()

    def topic(self, event: Event) -> str:
        return f"{self.cfg.base_topic}/{event.value}"

    def publish(self, event: Event, payload: Dict[str, Any]) -> None:
        topic = self.topic(event)
        p = json.dumps(payload, separators=(",", ":"))
        # Full-state notifications are retained so late subscribers get the current hierarchy
        retain = self.cfg.retain and event is not Event.SENSOR_EVENT
        log.debug("MQTT PUB %s %s", topic, p)
        info = self.cli.publish(topic, p, qos=self.cfg.qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            log.warning(f"MQTT publish to {topic} returned rc={info.rc}")

    def subscribe(self, event: Event, handler: Callable[[Event, Any], None]) -> None:
        """Register ``handler`` for notifications of one kind. JSON payloads are decoded."""
        topic = self.topic(event)

        def on_message(_cli, _ud, msg):
            try:
                data = json.loads(msg.payload.decode())
            except (UnicodeDecodeError, ValueError):
                log.warning(f"Ignoring non-JSON payload on {msg.topic}")
                return
            handler(event, data)

        self.cli.subscribe(topic, qos=self.cfg.qos)
        self.cli.message_callback_add(topic, on_message)

    def close(self) -> None:
        self.cli.loop_stop()
        self.cli.disconnect()
