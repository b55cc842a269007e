"""
Hierarchy store: transactional owner of the stored sensor hierarchies.

Every write runs in one database transaction that covers the hierarchy
document and both sensor index tables. Collisions are checked before anything
is mutated, and notifications are published only after the transaction has
committed.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sensorhub.database import HIERARCHIES_TABLE, Database, Transaction
from sensorhub.events import Event, EventPublisher, NoopPublisher
from sensorhub.hierarchy.differ import EventType, SensorEvent, compare_hierarchies, summarize
from sensorhub.hierarchy.model import SensorHierarchy
from sensorhub.sensor_index import SensorIndex
from sensorhub.timezone_utils import now_iso, resolve_timezone

log = logging.getLogger(__name__)


class WriteStatus(str, Enum):
    OK = "ok"
    COLLISION = "collision"
    NOT_FOUND = "not_found"


@dataclass
class WriteResult:
    """Outcome of a write. Collisions and missing hierarchies are expected outcomes, not errors."""
    status: WriteStatus
    collisions: List[str] = field(default_factory=list)
    events: List[SensorEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.OK

    @classmethod
    def success(cls, events: List[SensorEvent]) -> 'WriteResult':
        return cls(WriteStatus.OK, events=events)

    @classmethod
    def collision(cls, identifiers: List[str]) -> 'WriteResult':
        return cls(WriteStatus.COLLISION, collisions=identifiers)

    @classmethod
    def not_found(cls) -> 'WriteResult':
        return cls(WriteStatus.NOT_FOUND)


class HierarchyStore:
    """Creates, replaces, reads and deletes sensor hierarchies."""

    def __init__(
        self,
        database: Database,
        index: Optional[SensorIndex] = None,
        publisher: Optional[EventPublisher] = None,
        timezone: str = "UTC",
        publish_sensor_events: bool = False
    ):
        self.database = database
        self.index = index or SensorIndex()
        self.publisher = publisher or NoopPublisher()
        self.tz = resolve_timezone(timezone)
        self.publish_sensor_events = publish_sensor_events

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, hierarchy: SensorHierarchy) -> WriteResult:
        """
        Store a new hierarchy.

        Returns:
            OK with one added event per sensor, or COLLISION with the
            identifiers already in use (inside the hierarchy itself or by
            another stored hierarchy)
        """
        with self.database.transaction() as tx:
            collisions = self._find_collisions(tx, hierarchy, exclude_hierarchy=None)
            if collisions:
                tx.abort()
                log.info(f"Rejected creation of hierarchy {hierarchy.identifier}: colliding identifiers {collisions}")
                return WriteResult.collision(collisions)
            tx.mark_validated()

            self.index.apply_full_insert(tx.con, hierarchy)
            now = now_iso(self.tz)
            tx.execute(
                f"INSERT INTO {HIERARCHIES_TABLE} (identifier, name, document, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (hierarchy.identifier, hierarchy.name, hierarchy.to_json(), now, now),
            )
            tx.mark_applied()
            tx.commit()

        events = compare_hierarchies(None, hierarchy)
        log.info(f"Created hierarchy {hierarchy.identifier} with {len(hierarchy)} sensors")
        self._log_events(hierarchy.identifier, events)
        self._notify(Event.SENSOR_REGISTRY_STATUS, hierarchy.to_dict())
        self._notify_sensor_events(hierarchy.identifier, events)
        return WriteResult.success(events)

    def update(self, hierarchy: SensorHierarchy) -> WriteResult:
        """
        Replace a stored hierarchy with a new version.

        The hierarchy to replace is the one with the same root identifier.
        Sensors that the hierarchy already owns do not count as collisions.

        Returns:
            OK with the comparison events, NOT_FOUND if there is no such
            hierarchy, or COLLISION with the conflicting identifiers
        """
        with self.database.transaction() as tx:
            existing = self._load(tx, hierarchy.identifier)
            if existing is None:
                tx.abort()
                log.info(f"Update of unknown hierarchy {hierarchy.identifier} rejected")
                return WriteResult.not_found()

            collisions = self._find_collisions(tx, hierarchy, exclude_hierarchy=hierarchy.identifier)
            if collisions:
                tx.abort()
                log.info(f"Rejected update of hierarchy {hierarchy.identifier}: colliding identifiers {collisions}")
                return WriteResult.collision(collisions)
            tx.mark_validated()

            events = compare_hierarchies(existing, hierarchy)
            self.index.apply(tx.con, events, hierarchy.identifier)
            self.index.sync_kinds(tx.con, existing, hierarchy)
            tx.execute(
                f"UPDATE {HIERARCHIES_TABLE} SET name = ?, document = ?, updated_at = ? WHERE identifier = ?",
                (hierarchy.name, hierarchy.to_json(), now_iso(self.tz), hierarchy.identifier),
            )
            tx.mark_applied()
            tx.commit()

        log.info(f"Updated hierarchy {hierarchy.identifier}: {summarize(events)}")
        self._log_events(hierarchy.identifier, events)
        self._notify(Event.SENSOR_REGISTRY_CHANGED, hierarchy.to_dict())
        self._notify_sensor_events(hierarchy.identifier, events)
        return WriteResult.success(events)

    def delete(self, identifier: str) -> WriteResult:
        """
        Delete a hierarchy together with its sensor index entries.

        Returns:
            OK with one deleted event per sensor, or NOT_FOUND
        """
        with self.database.transaction() as tx:
            existing = self._load(tx, identifier)
            if existing is None:
                tx.abort()
                log.info(f"Deletion of unknown hierarchy {identifier} rejected")
                return WriteResult.not_found()
            tx.mark_validated()

            tx.execute(f"DELETE FROM {HIERARCHIES_TABLE} WHERE identifier = ?", (identifier,))
            removed = self.index.remove_hierarchy(tx.con, identifier)
            tx.mark_applied()
            tx.commit()

        events = [SensorEvent(EventType.DELETED, sensor) for sensor in existing]
        log.info(f"Deleted hierarchy {identifier} ({removed} index entries removed)")
        self._log_events(identifier, events)
        self._notify_sensor_events(identifier, events)
        return WriteResult.success(events)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, identifier: str) -> Optional[SensorHierarchy]:
        """Return the hierarchy with the given root identifier, or None."""
        with self.database.read() as con:
            row = con.execute(
                f"SELECT document FROM {HIERARCHIES_TABLE} WHERE identifier = ?", (identifier,)
            ).fetchone()
        return None if row is None else SensorHierarchy.from_json(row['document'])

    def get_all(self) -> List[SensorHierarchy]:
        """Return every stored hierarchy, oldest first."""
        with self.database.read() as con:
            rows = con.execute(
                f"SELECT document FROM {HIERARCHIES_TABLE} ORDER BY created_at, identifier"
            ).fetchall()
        return [SensorHierarchy.from_json(row['document']) for row in rows]

    def summaries(self) -> List[Dict[str, str]]:
        """Identifier and name of every stored hierarchy, oldest first."""
        with self.database.read() as con:
            rows = con.execute(
                f"SELECT identifier, name FROM {HIERARCHIES_TABLE} ORDER BY created_at, identifier"
            ).fetchall()
        return [{'identifier': row['identifier'], 'name': row['name']} for row in rows]

    def verify_consistency(self) -> List[str]:
        """
        Compare the sensor index with the stored documents by full scan.

        Returns:
            Human-readable problems; empty if every stored sensor has exactly
            one matching index entry and there are no other entries
        """
        with self.database.snapshot() as con:
            rows = con.execute(f"SELECT identifier, document FROM {HIERARCHIES_TABLE}").fetchall()
            entries = self.index.entries(con)

        expected = {}
        problems = []
        for row in rows:
            hierarchy = SensorHierarchy.from_json(row['document'])
            if hierarchy.identifier != row['identifier']:
                problems.append(f"Document {row['identifier']} has root sensor {hierarchy.identifier}")
            for sensor in hierarchy.flatten():
                key = (sensor.identifier, sensor.kind)
                if key in expected:
                    problems.append(f"Sensor {sensor.identifier} is stored more than once")
                expected[key] = (row['identifier'], sensor.parent_id)

        actual = {}
        for entry in entries:
            actual[(entry.identifier, entry.kind)] = (entry.hierarchy_id, entry.parent_id)

        for key, value in expected.items():
            if key not in actual:
                problems.append(f"Sensor {key[0]} ({key[1].value}) of hierarchy {value[0]} has no index entry")
            elif actual[key] != value:
                problems.append(
                    f"Index entry of sensor {key[0]} ({key[1].value}) is {actual[key]}, expected {value}"
                )
        for key, value in actual.items():
            if key not in expected:
                problems.append(f"Index entry {key[0]} ({key[1].value}) of hierarchy {value[0]} has no sensor")

        if problems:
            log.warning(f"Sensor index is inconsistent: {len(problems)} problem(s)")
        return problems

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def publish_status(self, hierarchy: SensorHierarchy) -> None:
        """Publish the full state of a hierarchy without a preceding write."""
        self._notify(Event.SENSOR_REGISTRY_STATUS, hierarchy.to_dict())

    def close(self) -> None:
        self.publisher.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_collisions(
        self,
        tx: Transaction,
        hierarchy: SensorHierarchy,
        exclude_hierarchy: Optional[str]
    ) -> List[str]:
        within = self.index.find_collisions_within_hierarchy(hierarchy)
        across = self.index.find_collisions(tx.con, hierarchy.flatten(), exclude_hierarchy)
        return sorted(set(within) | set(across))

    def _load(self, tx: Transaction, identifier: str) -> Optional[SensorHierarchy]:
        row = tx.execute(
            f"SELECT document FROM {HIERARCHIES_TABLE} WHERE identifier = ?", (identifier,)
        ).fetchone()
        return None if row is None else SensorHierarchy.from_json(row['document'])

    def _log_events(self, hierarchy_id: str, events: List[SensorEvent]) -> None:
        for event in events:
            log.info(
                f"Hierarchy {hierarchy_id}: sensor {event.identifier} {event.event_type.value} "
                f"(parent: {event.sensor.parent_id})"
            )

    def _notify(self, event: Event, payload: Dict[str, Any]) -> None:
        # The write is already committed; a failed publish must not turn it into an error
        try:
            self.publisher.publish(event, payload)
        except Exception as e:
            log.error(f"Failed to publish {event.value} notification: {e}", exc_info=True)

    def _notify_sensor_events(self, hierarchy_id: str, events: List[SensorEvent]) -> None:
        if not self.publish_sensor_events:
            return
        for event in events:
            self._notify(Event.SENSOR_EVENT, {'hierarchy': hierarchy_id, **event.to_dict()})
