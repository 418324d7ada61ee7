"""
Port Connection Pool

Owns one live Modbus serial connection per physical port. Devices sharing a
port share its connection; the first enabled device on a port sets the line
settings. Any configuration change rebuilds the whole pool.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from common.config import DeviceConfig
from common.logging_setup import get_service_logger
from .modbus_client import ModbusSerialClient

logger = get_service_logger("acquisition.pool")


@dataclass
class PooledSerialConnection:
    """A pooled Modbus serial connection with bus mutex"""
    client: ModbusSerialClient
    lock: asyncio.Lock  # Per-port mutex for bus access serialization
    device_ids: list[int | str] = field(default_factory=list)
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    use_count: int = 0


ClientFactory = Callable[..., ModbusSerialClient]


class PortConnectionPool:
    """
    Serial connection pool keyed by port.

    - One connection per distinct port among enabled devices
    - Ports that fail to open are left out (their devices fail to poll)
    - Per-port lock that callers hold for a device's whole read sequence
    - Full teardown/rebuild on reinitialize
    """

    def __init__(
        self,
        response_timeout: float = 1.0,
        client_factory: ClientFactory = ModbusSerialClient,
    ):
        self._connections: dict[str, PooledSerialConnection] = {}
        self._failed_ports: dict[str, list[int | str]] = {}
        self._lock = asyncio.Lock()
        self._response_timeout = response_timeout
        self._client_factory = client_factory

    @property
    def ports(self) -> list[str]:
        """Ports with a live pooled connection"""
        return list(self._connections)

    @property
    def failed_ports(self) -> list[str]:
        """Ports that failed to open on the last (re)initialize"""
        return list(self._failed_ports)

    @staticmethod
    def group_by_port(devices: list[DeviceConfig]) -> dict[str, list[DeviceConfig]]:
        """Group enabled devices by port, keeping configuration order"""
        groups: dict[str, list[DeviceConfig]] = {}
        for device in devices:
            if not device.enabled:
                continue
            groups.setdefault(device.port, []).append(device)
        return groups

    async def initialize(self, devices: list[DeviceConfig]) -> None:
        """
        Open one connection per port used by enabled devices.

        Args:
            devices: Full device list (disabled devices are ignored)
        """
        async with self._lock:
            await self._open_all(devices)

    async def reinitialize(self, devices: list[DeviceConfig]) -> None:
        """Close every connection and rebuild the pool for a new device set"""
        async with self._lock:
            await self._close_all()
            await self._open_all(devices)

        logger.info(
            f"Connection pool reinitialized: {len(self._connections)} ports open, "
            f"{len(self._failed_ports)} failed"
        )

    async def shutdown(self) -> None:
        """Close all connections"""
        async with self._lock:
            await self._close_all()
        logger.info("Connection pool stopped")

    def get_connection(self, port: str) -> ModbusSerialClient | None:
        """Client for a port, or None when the port is not in the pool"""
        pooled = self._connections.get(port)
        if pooled is None:
            return None
        pooled.use_count += 1
        return pooled.client

    def get_bus_lock(self, port: str) -> asyncio.Lock | None:
        """Bus mutex of a pooled port"""
        pooled = self._connections.get(port)
        return pooled.lock if pooled else None

    async def _open_all(self, devices: list[DeviceConfig]) -> None:
        for port, port_devices in self.group_by_port(devices).items():
            first = port_devices[0]
            device_ids = [d.id for d in port_devices]

            client = None
            try:
                client = self._client_factory(
                    port=port,
                    baudrate=first.baudrate,
                    bytesize=first.bytesize,
                    parity=first.parity,
                    stopbits=first.stopbits,
                    timeout=self._response_timeout,
                )
                connected = await client.connect()
            except Exception as e:
                logger.error(f"Failed to connect to port {port}: {e}")
                connected = False

            if not connected:
                if client is not None:
                    await self._discard(port, client)
                logger.error(
                    f"Port {port} unavailable, {len(device_ids)} device(s) will not be polled",
                    extra={"port": port, "device_ids": device_ids},
                )
                self._failed_ports[port] = device_ids
                continue

            self._connections[port] = PooledSerialConnection(
                client=client,
                lock=asyncio.Lock(),
                device_ids=device_ids,
            )
            logger.info(
                f"Connected to port: {port} "
                f"(baud={first.baudrate}, parity={first.parity}, devices={len(device_ids)})"
            )

    async def _discard(self, port: str, client: ModbusSerialClient) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning(f"Error closing port {port}: {e}")

    async def _close_all(self) -> None:
        for port, pooled in self._connections.items():
            await self._discard(port, pooled.client)
        self._connections.clear()
        self._failed_ports.clear()

    def get_stats(self) -> dict:
        """Get connection pool statistics"""
        return {
            "total_connections": len(self._connections),
            "serial_connections": {
                port: {
                    "use_count": pooled.use_count,
                    "connected": pooled.client.is_connected,
                    "opened_at": pooled.opened_at.isoformat(),
                    "baudrate": pooled.client.baudrate,
                    "devices": pooled.device_ids,
                }
                for port, pooled in self._connections.items()
            },
            "failed_ports": dict(self._failed_ports),
        }
