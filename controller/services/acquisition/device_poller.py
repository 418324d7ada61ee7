"""
Device Poller

Reads every register of one device through its port's pooled connection
and turns the result into a Reading.
"""

from typing import Any

from common.config import DeviceConfig
from common.exceptions import CommunicationError, DeviceError, RegisterDecodeError
from common.logging_setup import get_service_logger, log_device_read
from .connection_pool import PortConnectionPool
from .decoder import decode_registers
from .device_manager import DeviceManager
from .history_store import HistoryStore
from .models import Reading, utc_now_iso
from .modbus_client import ModbusSerialClient
from .publisher import LiveUpdatePublisher, NullPublisher

logger = get_service_logger("acquisition.poller")


class DevicePoller:
    """
    Produces exactly one Reading per poll_device() call.

    Failure scopes:
    - Register: timeout, exception response, short response or decode
      error. Recorded for that parameter; remaining registers still read.
    - Device: no pooled connection, invalid bus address or link dropped.
      Reading carries a top-level error and no values.

    Every Reading is stored as the device's latest, appended to history and
    published, in that order.
    """

    def __init__(
        self,
        connection_pool: PortConnectionPool,
        device_manager: DeviceManager,
        history: HistoryStore,
        publisher: LiveUpdatePublisher | None = None,
    ):
        self._pool = connection_pool
        self._manager = device_manager
        self._history = history
        self._publisher = publisher or NullPublisher()

    async def poll_device(self, device: DeviceConfig) -> Reading:
        """
        Poll one device and record the resulting Reading.

        Holds the port's bus lock for the whole read sequence so no other
        exchange can interleave on the same bus.
        """
        client = self._pool.get_connection(device.port)

        if client is None:
            logger.error(f"No client for port {device.port}")
            reading = Reading.failure(device.id, f"No connection for port {device.port}")
        else:
            bus_lock = self._pool.get_bus_lock(device.port)
            async with bus_lock:
                reading = await self._read_device(client, device)

        await self._record(reading)
        return reading

    async def _read_device(self, client: ModbusSerialClient, device: DeviceConfig) -> Reading:
        timestamp = utc_now_iso()

        try:
            client.check_slave(device.slave_id)

            values: dict[str, dict[str, Any]] = {}
            for parameter in device.registers:
                values[parameter] = await self._read_parameter(client, device, parameter)

        except (CommunicationError, DeviceError) as e:
            logger.error(f"Error polling device {device.id}: {e.message}")
            return Reading.failure(device.id, e.message, timestamp=timestamp)

        failed = [name for name, entry in values.items() if "error" in entry]
        if failed:
            logger.info(
                f"Device {device.name}: {len(failed)} register(s) failed "
                f"(register-specific errors, device still reachable)"
            )

        return Reading.success(device.id, values, timestamp=timestamp)

    async def _read_parameter(
        self,
        client: ModbusSerialClient,
        device: DeviceConfig,
        parameter: str,
    ) -> dict[str, Any]:
        """
        Read and decode one register.

        CommunicationError propagates (device-level); anything else becomes
        a per-parameter error entry.
        """
        spec = device.registers[parameter]
        unit = device.unit_for(parameter)

        try:
            result = await client.read_registers(
                address=spec.address,
                count=spec.length,
                slave_id=device.slave_id,
                function=spec.function,
            )

            if not result.success:
                error = result.error or "Read failed"
            else:
                decoded = decode_registers(result.raw_registers, spec)
                log_device_read(logger.logger, device.name, parameter, decoded.numeric)
                return {"value": decoded.value, "unit": unit, "raw": decoded.raw}

        except CommunicationError:
            raise
        except RegisterDecodeError as e:
            error = e.message
        except Exception as e:
            error = str(e) or type(e).__name__

        log_device_read(logger.logger, device.name, parameter, None, success=False, error=error)
        return {"value": None, "error": error, "unit": unit}

    async def _record(self, reading: Reading) -> None:
        self._manager.record(reading)

        # HistoryStore.append logs and swallows persistence errors
        await self._history.append(reading.device_id, reading)

        try:
            self._publisher.publish(reading)
        except Exception as e:
            logger.warning(f"Live update publish failed for device {reading.device_id}: {e}")
