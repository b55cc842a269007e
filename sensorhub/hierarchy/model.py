"""
In-memory representation of a sensor hierarchy.

A hierarchy is stored as an arena of immutable ``Sensor`` records in
pre-order. Children are referenced by arena position and every record carries
the identifier of its parent, so there are no object back-pointers to keep in
sync and a hierarchy can be flattened, compared and serialized without
walking a mutable object graph.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sensorhub.errors import MalformedInputError

IDENTIFIER_FIELD = "identifier"
NAME_FIELD = "name"
CHILDREN_FIELD = "children"


class SensorKind(str, Enum):
    """Tag distinguishing internal (aggregating) nodes from leaf (machine) nodes."""
    AGGREGATED = "aggregated"
    MACHINE = "machine"


@dataclass(frozen=True)
class Sensor:
    """A single node of a sensor hierarchy."""
    identifier: str
    name: str
    kind: SensorKind
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identifier': self.identifier,
            'name': self.name,
            'kind': self.kind.value,
            'parent': self.parent_id,
        }


class SensorHierarchy:
    """A tree of sensors rooted at one aggregated sensor.

    The hierarchy identifier is the identifier of its root sensor.
    """

    def __init__(self, sensors: List[Sensor], children: List[List[int]]):
        if not sensors:
            raise MalformedInputError("A sensor hierarchy needs a root sensor")
        if len(sensors) != len(children):
            raise ValueError("Every sensor needs a (possibly empty) child list")
        if sensors[0].kind is not SensorKind.AGGREGATED or sensors[0].parent_id is not None:
            raise MalformedInputError("The root of a sensor hierarchy must be an aggregated sensor")
        self._sensors = sensors
        self._children = children
        self._by_identifier: Optional[Dict[str, int]] = None

    @classmethod
    def empty(cls, identifier: str, name: str = "") -> 'SensorHierarchy':
        """Build a hierarchy consisting of a single root sensor without children."""
        return cls([Sensor(identifier, name, SensorKind.AGGREGATED)], [[]])

    @classmethod
    def from_json(cls, text: str) -> 'SensorHierarchy':
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise MalformedInputError(f"Sensor hierarchy is not valid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'SensorHierarchy':
        """Parse the wire format.

        A node that has a ``children`` key is an aggregated sensor, a node
        without one is a machine sensor. The root is always aggregated.
        Duplicate identifiers are kept so that they can be reported as
        collisions instead of being silently merged.
        """
        sensors: List[Sensor] = []
        children: List[List[int]] = []

        # (node, parent position, path for error messages)
        stack: List[Tuple[Any, Optional[int], str]] = [(data, None, "$")]
        while stack:
            node, parent_pos, path = stack.pop()
            identifier, name, child_nodes = cls._parse_node(node, path)

            if parent_pos is None:
                kind = SensorKind.AGGREGATED
                parent_id = None
            else:
                kind = SensorKind.MACHINE if child_nodes is None else SensorKind.AGGREGATED
                parent_id = sensors[parent_pos].identifier

            position = len(sensors)
            sensors.append(Sensor(identifier, name, kind, parent_id))
            children.append([])
            if parent_pos is not None:
                children[parent_pos].append(position)

            # Push in reverse so that children are visited in document order
            for index in range(len(child_nodes or []) - 1, -1, -1):
                stack.append((child_nodes[index], position, f"{path}.children[{index}]"))

        return cls(sensors, children)

    @staticmethod
    def _parse_node(node: Any, path: str) -> Tuple[str, str, Optional[List[Any]]]:
        if not isinstance(node, dict):
            raise MalformedInputError(f"{path}: sensor must be a JSON object")

        identifier = node.get(IDENTIFIER_FIELD)
        if not isinstance(identifier, str) or not identifier:
            raise MalformedInputError(f"{path}: sensor identifier must be a non-empty string")

        name = node.get(NAME_FIELD, "")
        if name is None:
            name = ""
        if not isinstance(name, str):
            raise MalformedInputError(f"{path}: sensor name must be a string")

        child_nodes = node.get(CHILDREN_FIELD) if CHILDREN_FIELD in node else None
        if CHILDREN_FIELD in node and not isinstance(child_nodes, list):
            raise MalformedInputError(f"{path}: children must be a list")

        return identifier, name, child_nodes

    @property
    def root(self) -> Sensor:
        return self._sensors[0]

    @property
    def identifier(self) -> str:
        return self._sensors[0].identifier

    @property
    def name(self) -> str:
        return self._sensors[0].name

    def flatten(self) -> List[Sensor]:
        """Return every sensor of the hierarchy in pre-order."""
        return list(self._sensors)

    def __iter__(self) -> Iterator[Sensor]:
        return iter(self._sensors)

    def __len__(self) -> int:
        return len(self._sensors)

    def _positions(self) -> Dict[str, int]:
        if self._by_identifier is None:
            positions: Dict[str, int] = {}
            for position, sensor in enumerate(self._sensors):
                positions.setdefault(sensor.identifier, position)
            self._by_identifier = positions
        return self._by_identifier

    def sensors_by_identifier(self) -> Dict[str, Sensor]:
        """Map identifier to sensor. For duplicated identifiers the first occurrence wins."""
        return {identifier: self._sensors[pos] for identifier, pos in self._positions().items()}

    def get_sensor(self, identifier: str) -> Optional[Sensor]:
        position = self._positions().get(identifier)
        return None if position is None else self._sensors[position]

    def children_of(self, identifier: str) -> List[Sensor]:
        position = self._positions().get(identifier)
        if position is None:
            return []
        return [self._sensors[child] for child in self._children[position]]

    def contains(self, identifier: str) -> bool:
        return identifier in self._positions()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire format."""
        nodes: List[Dict[str, Any]] = []
        for sensor in self._sensors:
            node: Dict[str, Any] = {IDENTIFIER_FIELD: sensor.identifier, NAME_FIELD: sensor.name}
            if sensor.kind is SensorKind.AGGREGATED:
                node[CHILDREN_FIELD] = []
            nodes.append(node)
        for position, child_positions in enumerate(self._children):
            for child in child_positions:
                nodes[position][CHILDREN_FIELD].append(nodes[child])
        return nodes[0]

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def summary(self) -> Dict[str, str]:
        """Identifier and name of the root sensor."""
        return {'identifier': self.identifier, 'name': self.name}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SensorHierarchy):
            return NotImplemented
        return self._sensors == other._sensors and self._children == other._children

    def __repr__(self) -> str:
        return f"SensorHierarchy(id={self.identifier}, name={self.name}, sensors={len(self._sensors)})"
