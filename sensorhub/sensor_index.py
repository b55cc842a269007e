"""
Sensor index: denormalized lookup of which hierarchy owns which sensor.

Aggregated and machine sensors are kept in separate tables, each mapping a
sensor identifier to its owning hierarchy and parent. The primary key on the
identifier makes every identifier unique per sensor kind across all stored
hierarchies, so collisions can be found without loading any hierarchy
document.

All methods that touch the database take the connection of the caller's
transaction; the index never commits on its own.
"""
import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sensorhub.database import AGGREGATED_SENSORS_TABLE, MACHINE_SENSORS_TABLE
from sensorhub.hierarchy.differ import EventType, SensorEvent
from sensorhub.hierarchy.model import Sensor, SensorHierarchy, SensorKind
from sensorhub.hierarchy.validator import find_collisions_within_hierarchy

log = logging.getLogger(__name__)

# Stay well below SQLite's limit on host parameters per statement
_MAX_PARAMS = 500

_TABLES = {
    SensorKind.AGGREGATED: AGGREGATED_SENSORS_TABLE,
    SensorKind.MACHINE: MACHINE_SENSORS_TABLE,
}


@dataclass(frozen=True)
class IndexEntry:
    identifier: str
    hierarchy_id: str
    parent_id: Optional[str]
    kind: SensorKind


def _chunks(values: List[str], size: int = _MAX_PARAMS) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class SensorIndex:
    """Keeps both sensor index tables in step with the stored hierarchies."""

    def find_collisions(
        self,
        con: sqlite3.Connection,
        sensors: Iterable[Sensor],
        exclude_hierarchy: Optional[str] = None
    ) -> List[str]:
        """
        Find candidate sensors whose identifier is already owned by another hierarchy.

        Identifiers are compared per sensor kind.

        Args:
            con: Connection of the running transaction
            sensors: Candidate sensors
            exclude_hierarchy: Hierarchy whose own entries do not count as
                collisions (the hierarchy being updated), None on create

        Returns:
            Sorted list of colliding identifiers
        """
        candidates: Dict[SensorKind, List[str]] = {kind: [] for kind in SensorKind}
        for sensor in sensors:
            candidates[sensor.kind].append(sensor.identifier)

        collisions = set()
        for kind, identifiers in candidates.items():
            table = _TABLES[kind]
            for chunk in _chunks(sorted(set(identifiers))):
                placeholders = ",".join("?" for _ in chunk)
                sql = f"SELECT identifier FROM {table} WHERE identifier IN ({placeholders})"
                params: List[str] = list(chunk)
                if exclude_hierarchy is not None:
                    sql += " AND hierarchy_id != ?"
                    params.append(exclude_hierarchy)
                collisions.update(row[0] for row in con.execute(sql, params))

        return sorted(collisions)

    def find_collisions_within_hierarchy(self, hierarchy: SensorHierarchy) -> List[str]:
        return find_collisions_within_hierarchy(hierarchy)

    def apply_full_insert(self, con: sqlite3.Connection, hierarchy: SensorHierarchy) -> None:
        """Insert one entry per sensor of a newly created hierarchy."""
        for kind, table in _TABLES.items():
            rows = [
                (sensor.identifier, hierarchy.identifier, sensor.parent_id)
                for sensor in hierarchy.flatten()
                if sensor.kind is kind
            ]
            if rows:
                con.executemany(
                    f"INSERT INTO {table} (identifier, hierarchy_id, parent_id) VALUES (?, ?, ?)",
                    rows,
                )
        log.debug(f"Indexed {len(hierarchy)} sensors of hierarchy {hierarchy.identifier}")

    def apply(self, con: sqlite3.Connection, events: Iterable[SensorEvent], hierarchy_id: str) -> None:
        """
        Apply the result of a hierarchy comparison to the index.

        Added sensors are inserted, deleted sensors removed and moved sensors
        get their entry replaced with the new parent (and kind).
        """
        for event in events:
            sensor = event.sensor
            if event.event_type is EventType.ADDED:
                self._insert(con, sensor, hierarchy_id)
            elif event.event_type is EventType.DELETED:
                self._delete(con, sensor.identifier, hierarchy_id)
            elif event.event_type is EventType.MOVED:
                self._delete(con, sensor.identifier, hierarchy_id)
                self._insert(con, sensor, hierarchy_id)
            else:
                raise ValueError(f"Unknown event type: {event.event_type}")

    def sync_kinds(
        self,
        con: sqlite3.Connection,
        old_hierarchy: SensorHierarchy,
        new_hierarchy: SensorHierarchy
    ) -> List[str]:
        """
        Move entries of sensors that changed kind but kept their parent.

        Such sensors produce no comparison event, but their entry has to live
        in the table of the new kind.

        Returns:
            Identifiers of the re-tagged sensors
        """
        old_sensors = old_hierarchy.sensors_by_identifier()
        retagged = []
        for sensor in new_hierarchy.flatten():
            old_sensor = old_sensors.get(sensor.identifier)
            if old_sensor is None or old_sensor.parent_id != sensor.parent_id:
                continue
            if old_sensor.kind is not sensor.kind:
                self._delete(con, sensor.identifier, new_hierarchy.identifier)
                self._insert(con, sensor, new_hierarchy.identifier)
                retagged.append(sensor.identifier)
        if retagged:
            log.debug(f"Re-tagged sensors {retagged} in hierarchy {new_hierarchy.identifier}")
        return retagged

    def remove_hierarchy(self, con: sqlite3.Connection, hierarchy_id: str) -> int:
        """Remove every entry owned by a hierarchy. Returns the number of removed entries."""
        removed = 0
        for table in _TABLES.values():
            cur = con.execute(f"DELETE FROM {table} WHERE hierarchy_id = ?", (hierarchy_id,))
            removed += cur.rowcount
        return removed

    def entries(self, con: sqlite3.Connection, hierarchy_id: Optional[str] = None) -> List[IndexEntry]:
        """Read index entries of both tables, optionally restricted to one hierarchy."""
        result = []
        for kind, table in _TABLES.items():
            if hierarchy_id is None:
                rows = con.execute(f"SELECT identifier, hierarchy_id, parent_id FROM {table} ORDER BY identifier")
            else:
                rows = con.execute(
                    f"SELECT identifier, hierarchy_id, parent_id FROM {table} WHERE hierarchy_id = ? ORDER BY identifier",
                    (hierarchy_id,),
                )
            result.extend(IndexEntry(row[0], row[1], row[2], kind) for row in rows)
        return result

    def _insert(self, con: sqlite3.Connection, sensor: Sensor, hierarchy_id: str) -> None:
        con.execute(
            f"INSERT INTO {_TABLES[sensor.kind]} (identifier, hierarchy_id, parent_id) VALUES (?, ?, ?)",
            (sensor.identifier, hierarchy_id, sensor.parent_id),
        )

    def _delete(self, con: sqlite3.Connection, identifier: str, hierarchy_id: str) -> None:
        for table in _TABLES.values():
            con.execute(
                f"DELETE FROM {table} WHERE identifier = ? AND hierarchy_id = ?",
                (identifier, hierarchy_id),
            )
