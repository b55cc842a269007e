import logging
import sys

from sensorhub.api_server import create_api, run_api
from sensorhub.bootstrap import ensure_default_hierarchy
from sensorhub.config import HubConfig, LoggingConfig
from sensorhub.database import Database
from sensorhub.events import create_publisher
from sensorhub.hierarchy_store import HierarchyStore
from sensorhub.sensor_index import SensorIndex

log = logging.getLogger(__name__)


def configure_logging(log_config: LoggingConfig) -> None:
    """Configure logging based on config settings."""
    # Set root logger level
    root_logger = logging.getLogger()
    log_level = getattr(logging, log_config.level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    # Configure console handler if not already configured
    if not root_logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(log_config.format))
        root_logger.addHandler(console_handler)

    logging.getLogger("sensorhub").setLevel(log_level)

    # uvicorn runs with log_config=None, so route its loggers through ours
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True

    # paho logs every packet at DEBUG
    logging.getLogger("paho").setLevel(logging.WARNING)


def build_store(cfg: HubConfig) -> HierarchyStore:
    """Wire database, sensor index and publisher into a hierarchy store."""
    database = Database(
        path=cfg.database.path,
        retry_delay_ms=cfg.database.retry_delay_ms,
        max_retries=cfg.database.max_retries,
        busy_timeout_secs=cfg.database.busy_timeout_secs,
    )
    return HierarchyStore(
        database,
        index=SensorIndex(),
        publisher=create_publisher(cfg),
        timezone=cfg.timezone,
        publish_sensor_events=cfg.events.publish_sensor_events,
    )


class SensorManagementApp:
    def __init__(self, cfg: HubConfig):
        self.cfg = cfg
        configure_logging(cfg.logging)
        self.store = build_store(cfg)
        self.api = None

    def init(self) -> None:
        """
        Prepare the store for serving.

        Waits for the database (raising ConnectivityError once the retries are
        used up), creates the schema and seeds the default hierarchy.
        """
        log.info("Connecting to sensor database")
        self.store.database.ping()
        self.store.database.init_schema()
        ensure_default_hierarchy(self.store, self.cfg)
        self.api = create_api(self.store, self.cfg)
        if self.cfg.demo:
            log.info("Running in demo mode: write requests will be rejected")

    def run(self) -> None:
        if self.api is None:
            self.init()
        run_api(self.api, self.cfg.api.host, self.cfg.api.port)

    def stop(self) -> None:
        log.info("Shutting down sensor management")
        self.store.close()
