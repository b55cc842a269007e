"""
Structural comparison of two versions of a sensor hierarchy.
"""
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sensorhub.hierarchy.model import Sensor, SensorHierarchy


class EventType(str, Enum):
    ADDED = "added"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True)
class SensorEvent:
    """A change of a single sensor between two hierarchy versions.

    ``sensor`` is the state after the change for added and moved sensors and
    the state before the change for deleted sensors.
    """
    event_type: EventType
    sensor: Sensor

    @property
    def identifier(self) -> str:
        return self.sensor.identifier

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.event_type.value, **self.sensor.to_dict()}


def compare_hierarchies(
    old_hierarchy: Optional[SensorHierarchy],
    new_hierarchy: SensorHierarchy
) -> List[SensorEvent]:
    """
    Compare two sensor hierarchies.

    Sensors are matched by identifier only. A sensor present in both versions
    is reported as moved iff its parent identifier changed; a root sensor
    becoming a child (or the reverse) counts as a move. Changes of other
    attributes such as the display name are not reported.

    Args:
        old_hierarchy: The stored version, or None if there is none
        new_hierarchy: The version replacing it

    Returns:
        Deleted events (in old pre-order) followed by added and moved events
        (in new pre-order)
    """
    old_sensors = old_hierarchy.sensors_by_identifier() if old_hierarchy is not None else {}
    new_sensors = new_hierarchy.sensors_by_identifier()

    events: List[SensorEvent] = []

    for identifier, old_sensor in old_sensors.items():
        if identifier not in new_sensors:
            events.append(SensorEvent(EventType.DELETED, old_sensor))

    for identifier, new_sensor in new_sensors.items():
        old_sensor = old_sensors.get(identifier)
        if old_sensor is None:
            events.append(SensorEvent(EventType.ADDED, new_sensor))
        elif old_sensor.parent_id != new_sensor.parent_id:
            events.append(SensorEvent(EventType.MOVED, new_sensor))

    return events


def summarize(events: List[SensorEvent]) -> Dict[str, int]:
    """Count events per type, e.g. for log lines."""
    counts = Counter(event.event_type for event in events)
    return {event_type.value: counts.get(event_type, 0) for event_type in EventType}
