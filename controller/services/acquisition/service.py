"""
Acquisition Service - Power Analyzer Polling

Responsible for:
- Owning the port connection pool
- Running polling cycles on a fixed interval
- Recording readings (latest-value map, history, live updates)
- Applying wholesale device configuration updates
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from aiohttp import web

from common.config import AcquisitionSettings, DeviceConfig, load_devices
from common.logging_setup import get_service_logger, log_poll_cycle
from common.scheduler import ScheduledLoop

from .connection_pool import ClientFactory, PortConnectionPool
from .device_manager import DeviceManager
from .device_poller import DevicePoller
from .history_store import HistoryStore
from .modbus_client import ModbusSerialClient
from .models import Reading
from .publisher import LiveUpdatePublisher, SubscriberHub

logger = get_service_logger("acquisition")


class AcquisitionService:
    """
    Polling scheduler and owner of all acquisition components.

    State machine: stopped -> running -> stopped. A cycle polls enabled
    devices in configuration order with a fixed delay between devices. A
    timer firing while a cycle is still running is skipped.
    """

    def __init__(
        self,
        devices: list[DeviceConfig],
        settings: AcquisitionSettings | None = None,
        publisher: LiveUpdatePublisher | None = None,
        client_factory: ClientFactory = ModbusSerialClient,
    ):
        self.settings = settings or AcquisitionSettings()
        self._devices: list[DeviceConfig] = list(devices)

        self.connection_pool = PortConnectionPool(
            response_timeout=self.settings.response_timeout_ms / 1000,
            client_factory=client_factory,
        )
        self.device_manager = DeviceManager()
        self.history = HistoryStore(
            data_dir=self.settings.data_dir,
            retention=timedelta(hours=self.settings.history_retention_hours),
        )
        self.publisher = publisher if publisher is not None else SubscriberHub()
        self.poller = DevicePoller(
            connection_pool=self.connection_pool,
            device_manager=self.device_manager,
            history=self.history,
            publisher=self.publisher,
        )
        self.device_manager.register_devices(self._devices)

        self._scheduler: ScheduledLoop | None = None
        self._running = False
        self._stop_requested = False
        self._cycle_lock = asyncio.Lock()
        self._last_poll: datetime | None = None
        self._cycle_count = 0
        self._start_time: datetime | None = None

        # Health server
        self._health_runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def devices(self) -> list[DeviceConfig]:
        return list(self._devices)

    def enabled_devices(self) -> list[DeviceConfig]:
        return [d for d in self._devices if d.enabled]

    async def start(self) -> None:
        """Open connections and start the polling timer (no-op if running)"""
        if self._running:
            return

        logger.info("Starting Acquisition Service")
        self._running = True
        self._stop_requested = False
        self._start_time = datetime.now(timezone.utc)

        await self.connection_pool.initialize(self._devices)

        self._scheduler = ScheduledLoop(
            self.settings.poll_interval_ms / 1000,
            self.poll_cycle,
            name="poll",
        )
        await self._scheduler.start()

        if self.settings.health_port:
            await self._start_health_server()

        logger.info(
            f"Acquisition Service started ({len(self.enabled_devices())} enabled devices)",
            extra={"device_count": len(self.enabled_devices())},
        )

    async def stop(self) -> None:
        """
        Stop polling and release the serial ports.

        An in-flight device poll finishes (or times out) first; no device
        is polled after it.
        """
        if not self._running:
            return

        logger.info("Stopping Acquisition Service")
        self._running = False
        self._stop_requested = True

        if self._scheduler:
            await self._scheduler.stop()

        # A cycle started outside the timer may still hold the ports
        async with self._cycle_lock:
            await self.connection_pool.shutdown()
        await self._stop_health_server()

        logger.info("Acquisition Service stopped")

    async def poll_cycle(self) -> list[Reading]:
        """Poll every enabled device once"""
        async with self._cycle_lock:
            start = time.monotonic()
            devices = self.enabled_devices()

            if self.settings.concurrent_ports:
                groups = PortConnectionPool.group_by_port(devices)
                results = await asyncio.gather(
                    *(self._poll_sequence(group) for group in groups.values())
                )
                readings = [r for group_readings in results for r in group_readings]
            else:
                readings = await self._poll_sequence(devices)

            self._cycle_count += 1
            log_poll_cycle(
                logger.logger,
                device_count=len(readings),
                failed_count=sum(1 for r in readings if r.is_error),
                execution_time_ms=(time.monotonic() - start) * 1000,
            )
            return readings

    async def _poll_sequence(self, devices: list[DeviceConfig]) -> list[Reading]:
        """Poll devices one at a time with the inter-device delay between them"""
        readings: list[Reading] = []
        delay = self.settings.inter_device_delay_ms / 1000

        for index, device in enumerate(devices):
            if self._stop_requested:
                break

            if index > 0 and delay > 0:
                await asyncio.sleep(delay)
                if self._stop_requested:
                    break

            try:
                reading = await self.poller.poll_device(device)
            except Exception as e:
                logger.error(f"Unexpected error polling device {device.id}: {e}", exc_info=True)
                continue

            readings.append(reading)
            self._last_poll = datetime.now(timezone.utc)

        return readings

    async def update_devices(self, devices_data: Any) -> list[DeviceConfig]:
        """
        Replace the device configuration and rebuild all connections.

        Waits for an in-flight cycle to finish before swapping.

        Raises:
            ConfigError: the new configuration is invalid (current one kept)
        """
        devices = load_devices(devices_data)
        await self.apply_devices(devices)
        return devices

    async def apply_devices(self, devices: list[DeviceConfig]) -> None:
        """Swap in an already validated device list"""
        async with self._cycle_lock:
            self._devices = list(devices)
            self.device_manager.register_devices(self._devices)
            if self._running:
                await self.connection_pool.reinitialize(self._devices)

        logger.info(
            f"Device config updated: {len(devices)} devices",
            extra={"device_count": len(devices)},
        )

    def enabled_device_count(self) -> int:
        return len(self.enabled_devices())

    def last_poll_timestamp(self) -> str | None:
        """Completion time of the most recent device poll"""
        return self._last_poll.isoformat() if self._last_poll else None

    def get_latest_reading(self, device_id: int | str) -> Reading | None:
        return self.device_manager.get_latest(device_id)

    def get_status(self) -> dict:
        """Status snapshot for external reporting"""
        return {
            "status": "running" if self._running else "stopped",
            "enabled_devices": self.enabled_device_count(),
            "last_poll": self.last_poll_timestamp(),
            "cycles": self._cycle_count,
            "devices": self.device_manager.get_device_count(),
            "device_status": [self.device_manager.status_dict(d.id) for d in self._devices],
            "connections": self.connection_pool.get_stats(),
            "scheduler": self._scheduler.get_stats() if self._scheduler else None,
        }

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/readings", self._readings_handler)

        self._health_runner = web.AppRunner(app)
        await self._health_runner.setup()

        site = web.TCPSite(self._health_runner, "127.0.0.1", self.settings.health_port)
        await site.start()

        logger.info(f"Health server started on port {self.settings.health_port}")

    async def _stop_health_server(self) -> None:
        """Stop the health check HTTP server"""
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = 0
        if self._start_time:
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()

        return web.json_response({
            **self.get_status(),
            "service": "acquisition",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _readings_handler(self, request: web.Request) -> web.Response:
        """Return the latest reading of every device"""
        return web.json_response(self.device_manager.get_all_latest())
