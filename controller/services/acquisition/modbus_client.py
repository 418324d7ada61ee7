"""
Async Modbus RTU Serial Client

Wrapper around pymodbus for direct RS485/RS232 serial communication with
power analyzers. One client owns one physical port; several slaves may share
it. The slave id is an argument of every read, never client state.
"""

import asyncio
from dataclasses import dataclass

from pymodbus.client import AsyncModbusSerialClient
from pymodbus.exceptions import ConnectionException, ModbusException

from common.config import RegisterFunction, MIN_SLAVE_ID, MAX_SLAVE_ID
from common.exceptions import CommunicationError, DeviceError
from common.logging_setup import get_service_logger

logger = get_service_logger("acquisition.modbus")


@dataclass
class ReadResult:
    """Result of a register read operation"""
    success: bool
    raw_registers: list[int] | None = None
    error: str | None = None


class ModbusSerialClient:
    """
    Async Modbus RTU serial client.

    Handles:
    - Opening/closing one serial port with fixed line settings
    - Input (FC 04) and holding (FC 03) register reads
    - Converting timeouts, exception responses and short responses
      into ReadResult errors

    A dropped link raises CommunicationError instead; reconnecting is the
    connection pool's job.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 9600,
        bytesize: int = 8,
        parity: str = "N",
        stopbits: int = 1,
        timeout: float = 1.0,
        retries: int = 0,
    ):
        self.port = port
        self.baudrate = baudrate
        self.bytesize = bytesize
        self.parity = parity
        self.stopbits = stopbits
        self.timeout = timeout
        # Each attempt waits up to timeout; retries multiply the bus hold time
        self.retries = retries

        self._client: AsyncModbusSerialClient | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None and self._client.connected

    async def connect(self) -> bool:
        """Open the serial port"""
        if self._connected:
            return True

        try:
            self._client = AsyncModbusSerialClient(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=self.timeout,
                retries=self.retries,
            )

            await self._client.connect()
            self._connected = self._client.connected

            if self._connected:
                logger.debug(
                    f"Connected to serial port {self.port} "
                    f"(baud={self.baudrate}, bits={self.bytesize}, "
                    f"parity={self.parity}, stop={self.stopbits})"
                )
            else:
                logger.warning(f"Failed to connect to serial port {self.port}")

            return self._connected

        except Exception as e:
            logger.error(f"Serial connection error on {self.port}: {e}")
            self._connected = False
            return False

    async def disconnect(self) -> None:
        """Close serial connection"""
        if self._client:
            self._client.close()
            self._client = None
        self._connected = False
        logger.debug(f"Disconnected from serial port {self.port}")

    def check_slave(self, slave_id: int) -> None:
        """
        Assert that a request sequence for slave_id can start.

        Raises:
            DeviceError: slave_id outside the unicast range
            CommunicationError: the port is no longer open
        """
        if not isinstance(slave_id, int) or not MIN_SLAVE_ID <= slave_id <= MAX_SLAVE_ID:
            raise DeviceError(f"Invalid bus address {slave_id!r}")

        if not self.is_connected:
            raise CommunicationError(
                f"Serial port {self.port} is not connected",
                port=self.port,
            )

    async def read_registers(
        self,
        address: int,
        count: int,
        slave_id: int,
        function: RegisterFunction = RegisterFunction.INPUT,
    ) -> ReadResult:
        """
        Read raw register words from one slave.

        Args:
            address: Starting register address
            count: Number of registers to read
            slave_id: Modbus slave ID addressed by this request
            function: Input or holding registers

        Returns:
            ReadResult with the raw words

        Raises:
            CommunicationError: the link dropped before or during the request
        """
        if not self.is_connected:
            raise CommunicationError(
                f"Serial port {self.port} is not connected",
                port=self.port,
            )

        try:
            if function == RegisterFunction.HOLDING:
                response = await self._client.read_holding_registers(
                    address=address,
                    count=count,
                    device_id=slave_id,
                )
            else:
                response = await self._client.read_input_registers(
                    address=address,
                    count=count,
                    device_id=slave_id,
                )

            if response.isError():
                return ReadResult(
                    success=False,
                    error=f"Modbus error: {response}",
                )

            registers = list(getattr(response, "registers", None) or [])
            if len(registers) != count:
                return ReadResult(
                    success=False,
                    raw_registers=registers,
                    error=f"Malformed response: expected {count} registers, got {len(registers)}",
                )

            return ReadResult(success=True, raw_registers=registers)

        except ConnectionException as e:
            self._connected = False
            raise CommunicationError(f"Connection lost: {e}", port=self.port)
        except ModbusException as e:
            return ReadResult(success=False, error=f"Modbus exception: {e}")
        except asyncio.TimeoutError:
            return ReadResult(success=False, error="Read timeout")
        except OSError as e:
            # serial.SerialException is an OSError (adapter unplugged, port gone)
            self._connected = False
            raise CommunicationError(f"Serial port error: {e}", port=self.port)
