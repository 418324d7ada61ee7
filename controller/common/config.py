"""
Configuration Dataclasses

Type-safe configuration structures for the acquisition controller.
Device lists come from a YAML/JSON file (or a config-update call) and are
always replaced wholesale, never patched in place.
"""

import copy
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from common.exceptions import ConfigError
from common.logging_setup import get_service_logger

logger = get_service_logger("config")


class RegisterFunction(str, Enum):
    """Modbus read function used for a register"""
    INPUT = "input"      # FC 04
    HOLDING = "holding"  # FC 03


# Unit shown for a parameter when its register spec does not name one
DEFAULT_UNITS: dict[str, str] = {
    "voltage": "V",
    "current": "A",
    "power": "kW",
    "frequency": "Hz",
    "powerFactor": "",
}

PARITY_ALIASES: dict[str, str] = {
    "n": "N",
    "none": "N",
    "e": "E",
    "even": "E",
    "o": "O",
    "odd": "O",
}

SUPPORTED_LENGTHS = (1, 2)
MIN_SLAVE_ID = 1
MAX_SLAVE_ID = 247


@dataclass(frozen=True)
class RegisterSpec:
    """Register definition for one measured parameter"""
    address: int
    length: int = 1
    multiplier: float = 1.0
    unit: str | None = None
    description: str = ""
    function: RegisterFunction = RegisterFunction.INPUT


@dataclass(frozen=True)
class DeviceConfig:
    """Power analyzer configuration"""
    id: int | str
    name: str
    port: str                     # e.g., "/dev/ttyUSB0"
    slave_id: int = 1
    baudrate: int = 9600          # 9600, 19200, 38400, 115200
    bytesize: int = 8             # data bits
    stopbits: int = 1             # 1 or 2
    parity: str = "N"             # N=None, E=Even, O=Odd
    enabled: bool = True
    location: str = ""
    description: str = ""
    registers: dict[str, RegisterSpec] = field(default_factory=dict)

    @property
    def serial_params(self) -> tuple[int, int, str, int]:
        """Settings that must match for all devices sharing a port"""
        return (self.baudrate, self.bytesize, self.parity, self.stopbits)

    def unit_for(self, parameter: str) -> str:
        """Unit of a parameter, falling back to the default unit table"""
        spec = self.registers.get(parameter)
        if spec is not None and spec.unit is not None:
            return spec.unit
        return DEFAULT_UNITS.get(parameter, "")


@dataclass
class AcquisitionSettings:
    """Runtime settings of the acquisition service"""
    poll_interval_ms: int = 2000
    inter_device_delay_ms: int = 100
    response_timeout_ms: int = 1000
    history_retention_hours: float = 24.0
    data_dir: str = "data"
    device_config_file: str = "config/devices.yaml"
    concurrent_ports: bool = False
    health_port: int = 8083  # 0 disables the health server


@dataclass
class ConfigLoadResult:
    """Outcome of loading the device configuration file"""
    devices: list[DeviceConfig]
    used_default: bool = False
    error: str | None = None


# Built-in configuration used when the device file is missing or invalid
DEFAULT_DEVICES: list[dict[str, Any]] = [
    {
        "id": 1,
        "name": "Power Analyzer 1",
        "slave_id": 1,
        "port": "/dev/ttyUSB0",
        "baudrate": 9600,
        "bytesize": 8,
        "stopbits": 1,
        "parity": "none",
        "registers": {
            "voltage": {"address": 0, "length": 2, "multiplier": 0.1},
            "current": {"address": 2, "length": 2, "multiplier": 0.01},
            "power": {"address": 4, "length": 2, "multiplier": 0.1},
            "frequency": {"address": 6, "length": 1, "multiplier": 0.01},
            "powerFactor": {"address": 7, "length": 1, "multiplier": 0.001},
        },
        "enabled": True,
    }
]


def _pick(data: dict, *keys: str, default: Any = None) -> Any:
    """First present key wins (snake_case and camelCase both accepted)"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _normalize_parity(value: Any) -> str:
    parity = PARITY_ALIASES.get(str(value).strip().lower())
    if parity is None:
        raise ConfigError(f"Invalid parity '{value}' (expected N/E/O or none/even/odd)")
    return parity


def _parse_register(name: str, data: dict) -> RegisterSpec:
    if not isinstance(data, dict):
        raise ConfigError(f"Register '{name}' must be a mapping")
    if "address" not in data:
        raise ConfigError(f"Register '{name}' is missing an address")

    try:
        function = RegisterFunction(data.get("function", data.get("type", "input")))
    except ValueError:
        raise ConfigError(
            f"Register '{name}' has unsupported function '{data.get('function', data.get('type'))}'"
        )

    try:
        return RegisterSpec(
            address=int(data["address"]),
            length=int(data.get("length", 1)),
            multiplier=float(data.get("multiplier", data.get("scale", 1.0))),
            unit=data.get("unit"),
            description=data.get("description", ""),
            function=function,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Register '{name}' has an invalid value: {e}")


def _parse_registers(data: Any) -> dict[str, RegisterSpec]:
    """Registers come as {name: spec} or as a list of specs with a 'name' key"""
    if data is None:
        return {}

    if isinstance(data, list):
        registers = {}
        for reg_data in data:
            if not isinstance(reg_data, dict) or not reg_data.get("name"):
                raise ConfigError("Register list entries need a 'name'")
            registers[reg_data["name"]] = _parse_register(reg_data["name"], reg_data)
        return registers

    if isinstance(data, dict):
        return {name: _parse_register(name, spec) for name, spec in data.items()}

    raise ConfigError("'registers' must be a mapping or a list")


def parse_device(data: dict) -> DeviceConfig:
    """Build a DeviceConfig from one device dict"""
    if not isinstance(data, dict):
        raise ConfigError("Device entry must be a mapping")

    device_id = data.get("id")
    if device_id is None or device_id == "":
        raise ConfigError(f"Device {data.get('name', 'unknown')} is missing an id")

    port = _pick(data, "port", "serial_port", "port_path")
    if not port:
        raise ConfigError(f"Device {device_id} is missing a serial port")

    try:
        return DeviceConfig(
            id=device_id,
            name=data.get("name") or f"Device {device_id}",
            port=str(port),
            slave_id=int(_pick(data, "slave_id", "slaveId", default=1)),
            baudrate=int(_pick(data, "baudrate", "baudRate", default=9600)),
            bytesize=int(_pick(data, "bytesize", "data_bits", "dataBits", default=8)),
            stopbits=int(_pick(data, "stopbits", "stop_bits", "stopBits", default=1)),
            parity=_normalize_parity(_pick(data, "parity", default="N")),
            enabled=bool(data.get("enabled", True)),
            location=data.get("location", ""),
            description=data.get("description", ""),
            registers=_parse_registers(data.get("registers")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Device {device_id} has an invalid value: {e}")


def validate_devices(devices: list[DeviceConfig]) -> list[str]:
    """
    Validate a device list.

    Checks:
    - Unique device ids, usable as history file names
    - Bus address in the Modbus unicast range
    - Register lengths and addresses
    - Devices sharing a port agree on serial parameters

    Returns:
        List of error messages (empty when valid)
    """
    errors: list[str] = []
    seen_ids: set[str] = set()
    port_owner: dict[str, DeviceConfig] = {}

    for device in devices:
        key = str(device.id)
        if key in seen_ids:
            errors.append(f"Duplicate device id: {device.id}")
        seen_ids.add(key)

        if "/" in key or "\\" in key:
            errors.append(f"Device id {device.id!r} must not contain path separators")

        if not MIN_SLAVE_ID <= device.slave_id <= MAX_SLAVE_ID:
            errors.append(
                f"Device {device.id}: slave_id {device.slave_id} outside "
                f"{MIN_SLAVE_ID}-{MAX_SLAVE_ID}"
            )

        for name, spec in device.registers.items():
            if spec.length not in SUPPORTED_LENGTHS:
                errors.append(
                    f"Device {device.id}: register '{name}' length {spec.length} "
                    f"not supported (use 1 or 2)"
                )
            if not 0 <= spec.address <= 0xFFFF:
                errors.append(
                    f"Device {device.id}: register '{name}' address {spec.address} out of range"
                )

        if not device.enabled:
            continue

        first = port_owner.setdefault(device.port, device)
        if first is not device and first.serial_params != device.serial_params:
            errors.append(
                f"Device {device.id} on {device.port} uses serial settings "
                f"{device.serial_params}, but device {first.id} on the same port "
                f"uses {first.serial_params}"
            )

    return errors


def load_devices(data: Any) -> list[DeviceConfig]:
    """
    Parse and validate a device list.

    Accepts a list of device dicts or a mapping with a "devices" key.

    Raises:
        ConfigError: on malformed entries or failed validation
    """
    if isinstance(data, dict):
        data = data.get("devices")
    if not isinstance(data, list):
        raise ConfigError("Device configuration must be a list of devices")

    devices = [parse_device(d) for d in data]

    errors = validate_devices(devices)
    if errors:
        logger.warning(
            f"Device config validation failed: {len(errors)} errors",
            extra={"errors": errors},
        )
        raise ConfigError("; ".join(errors))

    return devices


def default_devices() -> list[DeviceConfig]:
    """The built-in single analyzer configuration"""
    return load_devices(copy.deepcopy(DEFAULT_DEVICES))


def load_device_config(path: str | Path) -> ConfigLoadResult:
    """
    Load devices from a YAML or JSON file.

    A missing, unreadable or invalid file is not fatal: the built-in default
    configuration is returned with used_default set.
    """
    path = Path(path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        devices = load_devices(data)
    except FileNotFoundError:
        logger.info(f"No device config found at {path}, using default")
        return ConfigLoadResult(devices=default_devices(), used_default=True, error="not found")
    except (OSError, yaml.YAMLError, ConfigError) as e:
        logger.warning(f"Invalid device config {path}: {e}, using default")
        return ConfigLoadResult(devices=default_devices(), used_default=True, error=str(e))

    logger.info(f"Loaded {len(devices)} device configurations from {path}")
    return ConfigLoadResult(devices=devices)


def load_settings(path: str | Path | None = None) -> AcquisitionSettings:
    """
    Load AcquisitionSettings from a YAML file.

    Unknown keys are ignored. WATTLINE_DATA_DIR and WATTLINE_DEVICE_CONFIG
    override the file values.
    """
    data: dict[str, Any] = {}

    if path is not None and Path(path).exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read settings file {path}: {e}")
        if not isinstance(loaded, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")
        data = loaded.get("acquisition", loaded)

    defaults = AcquisitionSettings()
    settings = AcquisitionSettings(
        poll_interval_ms=int(data.get("poll_interval_ms", defaults.poll_interval_ms)),
        inter_device_delay_ms=int(data.get("inter_device_delay_ms", defaults.inter_device_delay_ms)),
        response_timeout_ms=int(data.get("response_timeout_ms", defaults.response_timeout_ms)),
        history_retention_hours=float(
            data.get("history_retention_hours", defaults.history_retention_hours)
        ),
        data_dir=str(data.get("data_dir", defaults.data_dir)),
        device_config_file=str(data.get("device_config_file", defaults.device_config_file)),
        concurrent_ports=bool(data.get("concurrent_ports", defaults.concurrent_ports)),
        health_port=int(data.get("health_port", defaults.health_port)),
    )

    settings.data_dir = os.environ.get("WATTLINE_DATA_DIR", settings.data_dir)
    settings.device_config_file = os.environ.get(
        "WATTLINE_DEVICE_CONFIG", settings.device_config_file
    )

    if settings.poll_interval_ms <= 0:
        raise ConfigError("poll_interval_ms must be positive")
    if settings.inter_device_delay_ms < 0:
        raise ConfigError("inter_device_delay_ms cannot be negative")
    if settings.response_timeout_ms <= 0:
        raise ConfigError("response_timeout_ms must be positive")
    if settings.history_retention_hours <= 0:
        raise ConfigError("history_retention_hours must be positive")

    return settings
