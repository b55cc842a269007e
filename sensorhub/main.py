import os
import argparse
import logging
import sys
from pathlib import Path

from sensorhub.app import SensorManagementApp
from sensorhub.config import HubConfig
from sensorhub.config_manager import ConfigurationManager
from sensorhub.errors import ConnectivityError


def _resolve_config_path(cli_path: str | None) -> Path:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: SENSORHUB_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml  (parent of the 'sensorhub' package dir)
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("SENSORHUB_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    # project root = parent of this package directory
    return Path(__file__).resolve().parents[1] / "config.yaml"


def load_config(path: str | Path) -> HubConfig:
    """Load configuration from config.yaml with environment overrides."""
    config_manager = ConfigurationManager(str(Path(path).expanduser().resolve()))
    return config_manager.load_config()


def run(cfg_path: str | None, demo: bool = False) -> None:
    log = logging.getLogger(__name__)
    cfg = load_config(_resolve_config_path(cfg_path))
    if demo:
        cfg.demo = True
    app = SensorManagementApp(cfg)
    try:
        log.info("Starting application initialization...")
        app.init()
        log.info("Application initialization completed, starting API server...")
        app.run()
    except ConnectivityError as e:
        log.critical(f"Sensor database unreachable, giving up: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        log.info("Application interrupted by user")
    except Exception as e:
        log.error(f"Fatal error in application: {e}", exc_info=True)
        raise
    finally:
        app.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="SensorHub sensor management")
    parser.add_argument(
        "--config",
        help="Path to config.yaml (overrides SENSORHUB_CONFIG and default).",
        required=False,
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Run in read-only demo mode with the demo hierarchy.",
    )
    args = parser.parse_args()

    run(args.config, demo=args.demo)


if __name__ == "__main__":
    main()
