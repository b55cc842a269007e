"""
Default hierarchy seeding on first start.
"""
import logging
from pathlib import Path
from typing import Optional

from sensorhub.hierarchy.model import SensorHierarchy
from sensorhub.hierarchy_store import HierarchyStore, WriteStatus

log = logging.getLogger(__name__)

DEMO_HIERARCHY_PATH = Path(__file__).resolve().parent / "data" / "demo_sensor_hierarchy.json"


def load_demo_hierarchy() -> SensorHierarchy:
    return SensorHierarchy.from_json(DEMO_HIERARCHY_PATH.read_text(encoding="utf-8"))


def load_initial_hierarchy(value: str) -> SensorHierarchy:
    """Parse a configured initial hierarchy given as JSON text or as a path to a JSON file."""
    text = value.strip()
    if not text.startswith("{"):
        path = Path(text).expanduser()
        log.info(f"Loading initial sensor hierarchy from {path}")
        text = path.read_text(encoding="utf-8")
    return SensorHierarchy.from_json(text)


def select_default_hierarchy(cfg) -> SensorHierarchy:
    """
    Pick the hierarchy to seed an empty store with.

    Priority: the demo hierarchy in demo mode, then the configured initial
    hierarchy, then an empty hierarchy with only a root sensor.
    """
    if cfg.demo:
        log.info("Demo mode: using demo sensor hierarchy")
        return load_demo_hierarchy()
    if cfg.initial_sensor_hierarchy:
        return load_initial_hierarchy(cfg.initial_sensor_hierarchy)
    return SensorHierarchy.empty(cfg.default_hierarchy_id, cfg.default_hierarchy_name)


def ensure_default_hierarchy(store: HierarchyStore, cfg) -> Optional[SensorHierarchy]:
    """
    Create the default hierarchy if none is stored under the well-known identifier.

    Creation goes through ``HierarchyStore.create`` so the usual collision
    checks and index maintenance apply. The stored state is then published as
    a status notification.

    Returns:
        The stored default hierarchy, or None if the seed was rejected and
        nothing is stored under its identifier
    """
    log.info("Set default sensor hierarchy")
    existing = store.get(cfg.default_hierarchy_id)
    if existing is not None:
        store.publish_status(existing)
        log.info("Initial hierarchy published.")
        return existing

    log.info("Initial sensor hierarchy does not exist. Creating hierarchy...")
    hierarchy = select_default_hierarchy(cfg)
    result = store.create(hierarchy)
    if result.status is WriteStatus.OK:
        # create() has already published the new hierarchy
        log.info("Initial hierarchy created.")
        return hierarchy

    log.info(f"Initial hierarchy already exists (colliding identifiers: {result.collisions})")
    stored = store.get(hierarchy.identifier)
    if stored is None:
        # Only committed hierarchies are published
        log.info(f"Initial hierarchy {hierarchy.identifier} was not stored, nothing to publish")
        return None
    store.publish_status(stored)
    log.info("Initial hierarchy published.")
    return stored
