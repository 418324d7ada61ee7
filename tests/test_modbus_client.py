import pytest
from pymodbus.exceptions import ConnectionException, ModbusIOException

from common.config import RegisterFunction
from common.exceptions import CommunicationError, DeviceError
from services.acquisition import modbus_client
from services.acquisition.connection_pool import PortConnectionPool
from services.acquisition.device_manager import DeviceManager
from services.acquisition.device_poller import DevicePoller
from services.acquisition.history_store import HistoryStore
from services.acquisition.modbus_client import ModbusSerialClient

from conftest import build_devices, make_device


class StubResponse:
    def __init__(self, registers=None, error=False):
        self.registers = registers or []
        self._error = error

    def isError(self):
        return self._error

    def __str__(self):
        return "ExceptionResponse(dev_id=1, function_code=132, exception_code=2)"


class StubPymodbusClient:
    """Stands in for AsyncModbusSerialClient"""

    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.connected = False
        self.requests = []
        self.next = StubResponse([0, 0])
        StubPymodbusClient.instances.append(self)

    async def connect(self):
        self.connected = self.kwargs["port"] != "/dev/missing"
        return self.connected

    def close(self):
        self.connected = False

    async def _respond(self, kind, address, count, device_id):
        self.requests.append((kind, address, count, device_id))
        if isinstance(self.next, Exception):
            raise self.next
        return self.next

    async def read_input_registers(self, address, count, device_id):
        return await self._respond("input", address, count, device_id)

    async def read_holding_registers(self, address, count, device_id):
        return await self._respond("holding", address, count, device_id)


@pytest.fixture(autouse=True)
def stub_pymodbus(monkeypatch):
    StubPymodbusClient.instances = []
    monkeypatch.setattr(modbus_client, "AsyncModbusSerialClient", StubPymodbusClient)


async def connected_client(**kwargs) -> tuple[ModbusSerialClient, StubPymodbusClient]:
    client = ModbusSerialClient(port="/dev/ttyUSB0", **kwargs)
    assert await client.connect()
    return client, StubPymodbusClient.instances[-1]


async def test_connect_passes_line_settings():
    client, stub = await connected_client(baudrate=19200, bytesize=7, parity="E", stopbits=2, timeout=1.0)
    assert stub.kwargs == {
        "port": "/dev/ttyUSB0",
        "baudrate": 19200,
        "bytesize": 7,
        "parity": "E",
        "stopbits": 2,
        "timeout": 1.0,
        "retries": 0,
    }
    assert client.is_connected


async def test_connect_failure_returns_false():
    client = ModbusSerialClient(port="/dev/missing")
    assert await client.connect() is False
    assert not client.is_connected


async def test_read_sends_slave_id_and_function():
    client, stub = await connected_client()
    stub.next = StubResponse([1, 2])

    result = await client.read_registers(4, 2, slave_id=7, function=RegisterFunction.HOLDING)
    assert result.success and result.raw_registers == [1, 2]

    await client.read_registers(0, 2, slave_id=8)
    assert stub.requests == [("holding", 4, 2, 7), ("input", 0, 2, 8)]


async def test_exception_response_is_read_error():
    client, stub = await connected_client()
    stub.next = StubResponse(error=True)

    result = await client.read_registers(0, 1, slave_id=1)
    assert not result.success
    assert "ExceptionResponse" in result.error


async def test_short_response_is_malformed():
    client, stub = await connected_client()
    stub.next = StubResponse([1])

    result = await client.read_registers(0, 2, slave_id=1)
    assert not result.success
    assert result.error.startswith("Malformed response")


async def test_timeout_is_read_error():
    client, stub = await connected_client()
    stub.next = ModbusIOException("No response received")

    result = await client.read_registers(0, 1, slave_id=1)
    assert not result.success
    assert "Modbus exception" in result.error


async def test_connection_loss_raises():
    client, stub = await connected_client()
    stub.next = ConnectionException("port closed")

    with pytest.raises(CommunicationError):
        await client.read_registers(0, 1, slave_id=1)
    assert not client.is_connected


async def test_check_slave_validates_address_and_link():
    client, stub = await connected_client()
    client.check_slave(1)

    with pytest.raises(DeviceError):
        client.check_slave(0)

    await client.disconnect()
    with pytest.raises(CommunicationError):
        client.check_slave(1)
    with pytest.raises(CommunicationError):
        await client.read_registers(0, 1, slave_id=1)


async def test_retries_can_be_enabled_explicitly():
    _, stub = await connected_client(retries=2)
    assert stub.kwargs["retries"] == 2


async def test_serial_port_error_is_link_loss():
    client, stub = await connected_client()
    stub.next = OSError(5, "Input/output error")

    with pytest.raises(CommunicationError):
        await client.read_registers(0, 1, slave_id=1)
    assert not client.is_connected


async def test_unplugged_adapter_gives_device_level_error(tmp_path):
    devices = build_devices(make_device(1, port="/dev/ttyUSB0", registers={
        "voltage": {"address": 0, "length": 2, "multiplier": 0.1},
        "current": {"address": 2, "length": 2, "multiplier": 0.01},
    }))
    pool = PortConnectionPool(response_timeout=0.1)
    manager = DeviceManager()
    manager.register_devices(devices)
    await pool.initialize(devices)
    poller = DevicePoller(pool, manager, HistoryStore(tmp_path / "data"))

    stub = StubPymodbusClient.instances[-1]
    stub.next = OSError(19, "No such device")

    reading = await poller.poll_device(devices[0])
    await pool.shutdown()

    assert reading.values is None
    assert "Serial port error" in reading.error
    assert len(stub.requests) == 1
