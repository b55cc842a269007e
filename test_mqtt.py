"""
Unit tests for the notification publishers
"""

import json
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from sensorhub.config import HubConfig, MqttConfig
from sensorhub.events import Event, NoopPublisher, create_publisher
from sensorhub.mqtt import MqttEventBus


@pytest.fixture
def mock_client():
    with patch("sensorhub.mqtt.mqtt.Client") as client_class:
        client = client_class.return_value
        client.publish.return_value = SimpleNamespace(rc=0)
        yield client


class TestMqttEventBus:
    """Test MQTT publishing and subscription"""

    def test_connects_on_start(self, mock_client):
        MqttEventBus(MqttConfig(host="broker", port=1884, username="user", password="secret"))

        mock_client.username_pw_set.assert_called_once_with("user", "secret")
        mock_client.connect_async.assert_called_once_with("broker", 1884, keepalive=30)
        mock_client.loop_start.assert_called_once()

    def test_no_credentials(self, mock_client):
        MqttEventBus(MqttConfig())

        mock_client.username_pw_set.assert_not_called()

    def test_status_is_retained(self, mock_client):
        bus = MqttEventBus(MqttConfig(base_topic="plant/sensor-registry", qos=1))

        bus.publish(Event.SENSOR_REGISTRY_STATUS, {"identifier": "root", "name": "Root", "children": []})

        mock_client.publish.assert_called_once_with(
            "plant/sensor-registry/status",
            '{"identifier":"root","name":"Root","children":[]}',
            qos=1,
            retain=True,
        )

    def test_sensor_events_are_not_retained(self, mock_client):
        bus = MqttEventBus(MqttConfig())

        bus.publish(Event.SENSOR_EVENT, {"type": "added", "identifier": "m"})

        args, kwargs = mock_client.publish.call_args
        assert args[0] == "sensorhub/sensor-registry/sensor-event"
        assert kwargs["retain"] is False

    def test_retain_can_be_disabled(self, mock_client):
        bus = MqttEventBus(MqttConfig(retain=False, qos=0))

        bus.publish(Event.SENSOR_REGISTRY_CHANGED, {"identifier": "root"})

        mock_client.publish.assert_called_once_with(
            "sensorhub/sensor-registry/changed", '{"identifier":"root"}', qos=0, retain=False
        )

    def test_subscribe_decodes_json(self, mock_client):
        bus = MqttEventBus(MqttConfig())
        handler = Mock()

        bus.subscribe(Event.SENSOR_REGISTRY_CHANGED, handler)

        mock_client.subscribe.assert_called_once_with("sensorhub/sensor-registry/changed", qos=1)
        topic, on_message = mock_client.message_callback_add.call_args.args
        assert topic == "sensorhub/sensor-registry/changed"

        on_message(None, None, SimpleNamespace(topic=topic, payload=json.dumps({"identifier": "root"}).encode()))
        on_message(None, None, SimpleNamespace(topic=topic, payload=b"not json"))

        handler.assert_called_once_with(Event.SENSOR_REGISTRY_CHANGED, {"identifier": "root"})

    def test_close(self, mock_client):
        MqttEventBus(MqttConfig()).close()

        mock_client.loop_stop.assert_called_once()
        mock_client.disconnect.assert_called_once()


class TestCreatePublisher:
    """Test publisher selection"""

    def test_disabled_by_default(self):
        assert isinstance(create_publisher(HubConfig()), NoopPublisher)

    def test_mqtt_when_enabled(self, mock_client):
        publisher = create_publisher(HubConfig(events={"enabled": True}))

        assert isinstance(publisher, MqttEventBus)

    def test_noop_publisher_accepts_everything(self):
        publisher = NoopPublisher()

        publisher.publish(Event.SENSOR_REGISTRY_STATUS, {"identifier": "root"})
        publisher.close()
