"""
Hierarchy validation.

Checks a candidate hierarchy on its own, before it is compared against the
stored hierarchies.
"""
import logging
from collections import Counter
from typing import List

from sensorhub.errors import IdentifierMismatchError
from sensorhub.hierarchy.model import SensorHierarchy

log = logging.getLogger(__name__)


def find_collisions_within_hierarchy(hierarchy: SensorHierarchy) -> List[str]:
    """
    Find identifiers that are used by more than one sensor of the hierarchy.

    Args:
        hierarchy: The candidate hierarchy

    Returns:
        Sorted list of duplicated identifiers, each listed once
    """
    counts = Counter(sensor.identifier for sensor in hierarchy.flatten())
    duplicates = sorted(identifier for identifier, count in counts.items() if count > 1)
    if duplicates:
        log.debug(f"Hierarchy {hierarchy.identifier} reuses identifiers: {duplicates}")
    return duplicates


def validate_update_target(identifier: str, hierarchy: SensorHierarchy) -> None:
    """
    Ensure a hierarchy replaces the resource it is addressed to.

    Raises:
        IdentifierMismatchError: If the root identifier differs from ``identifier``
    """
    if hierarchy.identifier != identifier:
        raise IdentifierMismatchError(identifier, hierarchy.identifier)
