"""
Hierarchy module for representing sensor hierarchies.

This module provides:
- Sensor, SensorKind, SensorHierarchy (tree model)
- compare_hierarchies, SensorEvent, EventType (structural diff)
- find_collisions_within_hierarchy (self-collision check)
"""

from sensorhub.hierarchy.model import Sensor, SensorKind, SensorHierarchy
from sensorhub.hierarchy.differ import EventType, SensorEvent, compare_hierarchies, summarize
from sensorhub.hierarchy.validator import find_collisions_within_hierarchy, validate_update_target

__all__ = [
    'Sensor',
    'SensorKind',
    'SensorHierarchy',
    'EventType',
    'SensorEvent',
    'compare_hierarchies',
    'summarize',
    'find_collisions_within_hierarchy',
    'validate_update_target',
]
