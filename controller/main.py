#!/usr/bin/env python3
"""
Wattline Controller - Acquisition Entry Point

Polls Modbus RTU power analyzers on their serial ports, keeps a rolling
history per device and publishes live readings.

Usage:
    python main.py                              # Default settings and devices
    python main.py --config settings.yaml       # Custom settings file
    python main.py --devices devices.yaml       # Custom device list
    python main.py --dry-run                    # Print config and exit
    python main.py --verbose                    # Enable debug logging
"""

import argparse
import asyncio
import logging
import signal
import sys

from common.config import AcquisitionSettings, ConfigLoadResult, load_device_config, load_settings
from common.exceptions import ConfigError
from common.logging_setup import setup_logging
from services import __version__
from services.acquisition import AcquisitionService

# Default configuration path
DEFAULT_CONFIG_PATH = "config.yaml"


def print_startup_banner(settings: AcquisitionSettings, result: ConfigLoadResult):
    """Print startup information."""
    enabled = [d for d in result.devices if d.enabled]
    ports = sorted({d.port for d in enabled})

    print()
    print("=" * 60)
    print("  WATTLINE CONTROLLER - POWER ANALYZER ACQUISITION")
    print("=" * 60)
    print()
    print(f"  Devices: {len(result.devices)} ({len(enabled)} enabled)")
    if result.used_default:
        print(f"  Using built-in default device ({result.error})")
    print(f"  Ports: {', '.join(ports) or 'none'}")
    print(f"  Poll interval: {settings.poll_interval_ms} ms "
          f"(+{settings.inter_device_delay_ms} ms between devices)")
    print(f"  History: {settings.data_dir} ({settings.history_retention_hours:g} h retention)")
    if settings.health_port:
        print(f"  Health: http://127.0.0.1:{settings.health_port}/health")
    print()
    print("=" * 60)
    print()


async def main_async(
    settings: AcquisitionSettings,
    result: ConfigLoadResult,
    verbose: bool = False,
) -> None:
    """
    Run the acquisition service until SIGINT/SIGTERM.

    Args:
        settings: Runtime settings
        result: Loaded device configuration
        verbose: Enable verbose logging
    """
    log_level = "DEBUG" if verbose else "INFO"
    # Plain text in verbose/debug mode
    setup_logging("main", log_level=log_level, json_format=not verbose)
    logger = logging.getLogger("wattline.main")

    service = AcquisitionService(result.devices, settings)
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda s, f: shutdown_event.set())

    try:
        await service.start()
        await shutdown_event.wait()
        logger.info("Received shutdown signal")
    finally:
        await service.stop()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Wattline Controller - Modbus RTU power analyzer acquisition",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py                          # Start with default config
    python main.py --config settings.yaml   # Use custom settings file
    python main.py --devices devices.json   # Use custom device list
    python main.py --dry-run                # Validate config and exit
    python main.py -v                       # Enable debug logging
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to settings file (default: {DEFAULT_CONFIG_PATH})"
    )

    parser.add_argument(
        "--devices", "-d",
        type=str,
        default=None,
        help="Path to device list (overrides device_config_file)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Wattline Controller v{__version__}"
    )

    args = parser.parse_args()

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Error loading settings: {e}")
        sys.exit(1)

    if args.devices:
        settings.device_config_file = args.devices

    result = load_device_config(settings.device_config_file)

    print_startup_banner(settings, result)

    if args.dry_run:
        print("Dry run mode - configuration valid")
        sys.exit(0)

    print("Starting acquisition...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(settings, result, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nStopped by user")
    except Exception as e:
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
