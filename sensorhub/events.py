"""
Change notification interface.

The hierarchy store publishes through an ``EventPublisher`` after every
successful write. Which channel is used is decided once at startup by
``create_publisher``.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict

log = logging.getLogger(__name__)


class Event(str, Enum):
    """Notification kinds, used as the last topic segment on the channel."""
    SENSOR_REGISTRY_STATUS = "status"
    SENSOR_REGISTRY_CHANGED = "changed"
    SENSOR_EVENT = "sensor-event"


class EventPublisher(ABC):
    """Abstract publisher of hierarchy notifications."""

    @abstractmethod
    def publish(self, event: Event, payload: Dict[str, Any]) -> None:
        """Publish a JSON-serializable payload tagged with ``event``."""
        pass

    def close(self) -> None:
        pass


class NoopPublisher(EventPublisher):
    """Publisher used when event publishing is disabled."""

    def publish(self, event: Event, payload: Dict[str, Any]) -> None:
        log.debug(f"Event publishing disabled, dropping {event.value} notification")


def create_publisher(cfg) -> EventPublisher:
    """
    Build the publisher configured in ``cfg`` (a ``HubConfig``).

    Returns an MQTT publisher when ``cfg.events.enabled`` is set, otherwise a
    no-op publisher.
    """
    if not cfg.events.enabled:
        log.info("Event publishing disabled")
        return NoopPublisher()

    from sensorhub.mqtt import MqttEventBus
    log.info(f"Publishing hierarchy events to MQTT broker {cfg.mqtt.host}:{cfg.mqtt.port}")
    return MqttEventBus(cfg.mqtt)
