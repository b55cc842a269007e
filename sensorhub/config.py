from typing import Optional

from pydantic import BaseModel, Field


class DatabaseConfig(BaseModel):
    path: Optional[str] = None  # None = ~/.sensorhub/sensorhub.db
    retry_delay_ms: int = Field(default=1000, ge=0, description="Fixed delay between connection attempts")
    max_retries: int = Field(default=10, ge=0, description="Connection retries before giving up")
    busy_timeout_secs: float = Field(default=5.0, gt=0, description="How long a write waits for the database lock")


class MqttConfig(BaseModel):
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    base_topic: str = "sensorhub/sensor-registry"
    client_id: str = "sensor-management"
    qos: int = Field(default=1, ge=0, le=2)
    retain: bool = True


class EventsConfig(BaseModel):
    enabled: bool = False  # publish notifications over MQTT
    publish_sensor_events: bool = False  # also publish one message per added/deleted/moved sensor


class ApiConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)
    cors: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class HubConfig(BaseModel):
    timezone: str = "UTC"  # Timezone of stored timestamps
    # Read-only demo mode: seeds the demo hierarchy and rejects all writes over HTTP
    demo: bool = False
    default_hierarchy_id: str = "default-hierarchy"
    default_hierarchy_name: str = "My Company"
    # Hierarchy created on first start, as JSON text or a path to a JSON file
    initial_sensor_hierarchy: Optional[str] = None
    database: DatabaseConfig = DatabaseConfig()
    mqtt: MqttConfig = MqttConfig()
    events: EventsConfig = EventsConfig()
    api: ApiConfig = ApiConfig()
    logging: LoggingConfig = LoggingConfig()
