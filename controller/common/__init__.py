"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and loaders
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Interval scheduler with overlap protection
"""

from .config import (
    DeviceConfig,
    RegisterSpec,
    RegisterFunction,
    AcquisitionSettings,
    ConfigLoadResult,
    DEFAULT_DEVICES,
    DEFAULT_UNITS,
    load_devices,
    load_device_config,
    load_settings,
    default_devices,
    validate_devices,
)
from .exceptions import (
    WattlineError,
    ConfigError,
    RegisterDecodeError,
    DeviceError,
    CommunicationError,
    PersistenceError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_device_read,
    log_poll_cycle,
)
from .scheduler import ScheduledLoop

__all__ = [
    # Config
    "DeviceConfig",
    "RegisterSpec",
    "RegisterFunction",
    "AcquisitionSettings",
    "ConfigLoadResult",
    "DEFAULT_DEVICES",
    "DEFAULT_UNITS",
    "load_devices",
    "load_device_config",
    "load_settings",
    "default_devices",
    "validate_devices",
    # Exceptions
    "WattlineError",
    "ConfigError",
    "RegisterDecodeError",
    "DeviceError",
    "CommunicationError",
    "PersistenceError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_device_read",
    "log_poll_cycle",
    # Scheduling
    "ScheduledLoop",
]
