"""
Unit tests for seeding the default hierarchy
"""

import json

import pytest

from sensorhub.bootstrap import ensure_default_hierarchy, load_demo_hierarchy, select_default_hierarchy
from sensorhub.config import HubConfig
from sensorhub.events import Event
from sensorhub.hierarchy import SensorHierarchy


INITIAL = {
    "identifier": "default-hierarchy",
    "name": "Plant",
    "children": [{"identifier": "line", "children": [{"identifier": "robot"}]}],
}


class TestSelectDefaultHierarchy:
    """Test which hierarchy an empty store is seeded with"""

    def test_empty_default(self):
        hierarchy = select_default_hierarchy(HubConfig())

        assert hierarchy == SensorHierarchy.empty("default-hierarchy", "My Company")

    def test_demo_mode_uses_demo_hierarchy(self):
        hierarchy = select_default_hierarchy(HubConfig(demo=True, initial_sensor_hierarchy=json.dumps(INITIAL)))

        assert hierarchy == load_demo_hierarchy()
        assert hierarchy.identifier == "default-hierarchy"
        assert len(hierarchy) > 1

    def test_initial_hierarchy_as_json_text(self):
        hierarchy = select_default_hierarchy(HubConfig(initial_sensor_hierarchy=json.dumps(INITIAL)))

        assert hierarchy == SensorHierarchy.from_dict(INITIAL)

    def test_initial_hierarchy_from_file(self, tmp_path):
        path = tmp_path / "initial.json"
        path.write_text(json.dumps(INITIAL))

        hierarchy = select_default_hierarchy(HubConfig(initial_sensor_hierarchy=str(path)))

        assert hierarchy.get_sensor("robot").parent_id == "line"

    def test_demo_hierarchy_has_unique_identifiers(self):
        hierarchy = load_demo_hierarchy()

        assert len(hierarchy.sensors_by_identifier()) == len(hierarchy)


class TestEnsureDefaultHierarchy:
    """Test bootstrap against the store"""

    def test_creates_and_publishes_once(self, store, publisher):
        hierarchy = ensure_default_hierarchy(store, HubConfig())

        assert store.get("default-hierarchy") == hierarchy
        publisher.publish.assert_called_once_with(Event.SENSOR_REGISTRY_STATUS, hierarchy.to_dict())

    def test_existing_hierarchy_is_kept(self, store, publisher):
        stored = SensorHierarchy.from_dict(INITIAL)
        store.create(stored)
        publisher.reset_mock()

        result = ensure_default_hierarchy(store, HubConfig(demo=True))

        assert result == stored
        assert store.get_all() == [stored]
        publisher.publish.assert_called_once_with(Event.SENSOR_REGISTRY_STATUS, stored.to_dict())

    def test_second_start_is_a_no_op(self, store):
        cfg = HubConfig(demo=True)
        first = ensure_default_hierarchy(store, cfg)

        second = ensure_default_hierarchy(store, cfg)

        assert first == second
        assert len(store.get_all()) == 1

    def test_colliding_seed_is_not_stored_or_published(self, store, publisher):
        store.create(SensorHierarchy.from_dict({"identifier": "elsewhere", "children": [{"identifier": "robot"}]}))
        publisher.reset_mock()

        result = ensure_default_hierarchy(store, HubConfig(initial_sensor_hierarchy=json.dumps(INITIAL)))

        assert result is None
        assert store.get("default-hierarchy") is None
        publisher.publish.assert_not_called()

    def test_seed_with_other_root_publishes_stored_version(self, store, publisher):
        stored = SensorHierarchy.from_dict({"identifier": "plant", "name": "Stored", "children": []})
        store.create(stored)
        publisher.reset_mock()
        seed = {"identifier": "plant", "name": "Seed", "children": [{"identifier": "m"}]}

        result = ensure_default_hierarchy(store, HubConfig(initial_sensor_hierarchy=json.dumps(seed)))

        assert result == stored
        publisher.publish.assert_called_once_with(Event.SENSOR_REGISTRY_STATUS, stored.to_dict())

    @pytest.mark.parametrize("identifier", ["plant-a", "default-hierarchy"])
    def test_configured_identifier(self, store, identifier):
        ensure_default_hierarchy(store, HubConfig(default_hierarchy_id=identifier))

        assert store.get(identifier) is not None
