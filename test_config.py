"""
Unit tests for configuration classes
Tests the Pydantic models and validation
"""

import pytest
from pydantic import ValidationError

from sensorhub.config import (
    ApiConfig, DatabaseConfig, EventsConfig, HubConfig, LoggingConfig, MqttConfig
)


class TestMqttConfig:
    """Test MQTT configuration"""

    def test_default_values(self):
        """Test default MQTT configuration values"""
        config = MqttConfig()

        assert config.host == "localhost"
        assert config.port == 1883
        assert config.username is None
        assert config.password is None
        assert config.base_topic == "sensorhub/sensor-registry"
        assert config.client_id == "sensor-management"
        assert config.qos == 1
        assert config.retain is True

    def test_custom_values(self):
        """Test custom MQTT configuration values"""
        config = MqttConfig(
            host="192.168.1.100",
            port=8883,
            username="user",
            password="pass",
            base_topic="plant/registry",
            client_id="registry-1",
            qos=2,
            retain=False
        )

        assert config.host == "192.168.1.100"
        assert config.port == 8883
        assert config.username == "user"
        assert config.password == "pass"
        assert config.base_topic == "plant/registry"
        assert config.client_id == "registry-1"
        assert config.qos == 2
        assert config.retain is False

    def test_invalid_qos(self):
        """Test validation of QoS level"""
        with pytest.raises(ValidationError):
            MqttConfig(qos=3)


class TestDatabaseConfig:
    """Test database configuration"""

    def test_default_values(self):
        config = DatabaseConfig()

        assert config.path is None
        assert config.retry_delay_ms == 1000
        assert config.max_retries == 10
        assert config.busy_timeout_secs == 5.0

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(max_retries=-1)

    def test_zero_busy_timeout_rejected(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(busy_timeout_secs=0)


class TestApiConfig:
    """Test API configuration"""

    def test_default_values(self):
        config = ApiConfig()

        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.cors is False

    def test_port_range(self):
        with pytest.raises(ValidationError):
            ApiConfig(port=70000)


class TestHubConfig:
    """Test main hub configuration"""

    def test_default_values(self):
        """Test default hub configuration"""
        config = HubConfig()

        assert config.timezone == "UTC"
        assert config.demo is False
        assert config.default_hierarchy_id == "default-hierarchy"
        assert config.default_hierarchy_name == "My Company"
        assert config.initial_sensor_hierarchy is None
        assert config.events == EventsConfig()
        assert config.logging == LoggingConfig()

    def test_nested_sections_from_dict(self):
        """Test nested configuration built from plain mappings"""
        config = HubConfig(
            demo=True,
            database={"path": "/tmp/hub.db", "max_retries": 2},
            events={"enabled": True, "publish_sensor_events": True},
            mqtt={"host": "broker"}
        )

        assert config.demo is True
        assert config.database.path == "/tmp/hub.db"
        assert config.database.max_retries == 2
        assert config.events.enabled is True
        assert config.events.publish_sensor_events is True
        assert config.mqtt.host == "broker"
        assert config.mqtt.port == 1883

    def test_invalid_nested_value(self):
        with pytest.raises(ValidationError):
            HubConfig(database={"retry_delay_ms": "soon"})
