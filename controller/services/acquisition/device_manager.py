"""
Device Manager

Tracks device status and the latest Reading per device.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from common.config import DeviceConfig
from common.logging_setup import get_service_logger
from .models import Reading

logger = get_service_logger("acquisition.manager")


@dataclass
class DeviceStatus:
    """Current status of a device"""
    device_id: int | str
    device_name: str
    port: str
    is_online: bool = False
    last_seen: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    latest: Reading | None = None


class DeviceManager:
    """
    Manages device status and the latest-value map.

    The latest Reading of a device is overwritten on every poll attempt,
    successful or not.
    """

    # Number of failed polls before marking device offline
    OFFLINE_THRESHOLD = 3

    def __init__(self):
        self._devices: dict[str, DeviceStatus] = {}

    @staticmethod
    def _key(device_id: int | str) -> str:
        return str(device_id)

    def register_devices(self, devices: list[DeviceConfig]) -> None:
        """Replace tracked devices with a new device set"""
        self._devices = {}
        for device in devices:
            self._devices[self._key(device.id)] = DeviceStatus(
                device_id=device.id,
                device_name=device.name,
                port=device.port,
            )
            logger.debug(f"Registered device: {device.name} ({device.id})")

    def record(self, reading: Reading) -> None:
        """Store a reading as the device's latest and update its status"""
        status = self._devices.get(self._key(reading.device_id))
        if status is None:
            # Device removed by a config update while its poll was in flight
            return

        status.latest = reading
        now = datetime.now(timezone.utc)

        if reading.is_error:
            status.consecutive_failures += 1
            status.last_error = reading.error
            if status.is_online and status.consecutive_failures >= self.OFFLINE_THRESHOLD:
                status.is_online = False
                logger.info(f"Device {status.device_name} offline: {reading.error}")
        else:
            if not status.is_online:
                logger.info(f"Device {status.device_name} online")
            status.is_online = True
            status.last_seen = now
            status.consecutive_failures = 0
            status.last_error = None

    def get_status(self, device_id: int | str) -> DeviceStatus | None:
        return self._devices.get(self._key(device_id))

    def get_latest(self, device_id: int | str) -> Reading | None:
        status = self._devices.get(self._key(device_id))
        return status.latest if status else None

    def get_all_latest(self) -> dict[str, dict[str, Any]]:
        """Latest readings of all devices, serialized"""
        return {
            key: status.latest.to_dict()
            for key, status in self._devices.items()
            if status.latest is not None
        }

    def get_device_count(self) -> dict:
        """Get device count statistics"""
        total = len(self._devices)
        online = sum(1 for s in self._devices.values() if s.is_online)
        return {
            "total": total,
            "online": online,
            "offline": total - online,
        }

    def status_dict(self, device_id: int | str) -> dict | None:
        status = self.get_status(device_id)
        if status is None:
            return None
        return {
            "device_id": status.device_id,
            "device_name": status.device_name,
            "port": status.port,
            "is_online": status.is_online,
            "last_seen": status.last_seen.isoformat() if status.last_seen else None,
            "last_error": status.last_error,
            "consecutive_failures": status.consecutive_failures,
        }
