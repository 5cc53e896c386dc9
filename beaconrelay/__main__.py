"""Entry point for beaconrelay: python -m beaconrelay."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .app import BeaconRelayApp
from .ble.tracker import TrackerError
from .config import ConfigError


def setup_logging(verbose: bool, log_time: bool = True) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    if log_time:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    else:
        format_str = "%(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from libraries
    for name in ("bleak", "dbus_fast", "paho", "aiohttp"):
        logging.getLogger(name).setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="beaconrelay",
        description="Relay RuuviTag BLE measurements to MQTT, HTTP and the console",
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to the YAML configuration file (default: stdout sink on hci0)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    parser.add_argument(
        "--no-logtime",
        dest="log_time",
        action="store_false",
        help="Don't prefix log messages with date and time",
    )

    return parser.parse_args()


def main() -> int:
    """Main entry point."""
    args = parse_args()
    setup_logging(args.verbose, log_time=args.log_time)

    logger = logging.getLogger(__name__)

    config_path = args.config.resolve() if args.config else None
    if config_path and not config_path.exists():
        logger.error("Configuration file not found: %s", config_path)
        return 1

    try:
        app = BeaconRelayApp(config_path)
        asyncio.run(app.run())
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except ConfigError as e:
        logger.error("Failed to load config: %s", e)
        return 1
    except TrackerError as e:
        logger.error("%s", e)
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
