"""Shared fixtures: an in-memory serial bus standing in for pymodbus."""

import asyncio
from typing import Any

import pytest

from common.config import AcquisitionSettings, RegisterFunction, load_devices
from common.exceptions import CommunicationError
from services.acquisition.modbus_client import ModbusSerialClient, ReadResult


class FakeBus:
    """
    Simulated serial ports.

    - responses[(port, slave_id, address)]: list of words, an exception
      instance to raise, or a ReadResult to return
    - unavailable: ports whose connect() fails
    - calls: every read as (port, slave_id, address, count)
    """

    def __init__(self):
        self.responses: dict[tuple[str, int, int], Any] = {}
        self.unavailable: set[str] = set()
        self.calls: list[tuple[str, int, int, int]] = []
        self.clients: list["FakeSerialClient"] = []
        self.read_delay: float = 0.0

    def set_words(self, port: str, slave_id: int, address: int, words: Any) -> None:
        self.responses[(port, slave_id, address)] = words

    def factory(self, **kwargs) -> "FakeSerialClient":
        client = FakeSerialClient(bus=self, **kwargs)
        self.clients.append(client)
        return client

    def open_clients(self) -> list["FakeSerialClient"]:
        return [c for c in self.clients if c.is_connected]


class FakeSerialClient(ModbusSerialClient):
    def __init__(self, bus: FakeBus, **kwargs):
        super().__init__(**kwargs)
        self.bus = bus
        self.closed = False
        self._open = False

    @property
    def is_connected(self) -> bool:
        return self._open

    async def connect(self) -> bool:
        self._open = self.port not in self.bus.unavailable
        return self._open

    async def disconnect(self) -> None:
        self._open = False
        self.closed = True

    def drop(self) -> None:
        self._open = False

    async def read_registers(
        self,
        address: int,
        count: int,
        slave_id: int,
        function: RegisterFunction = RegisterFunction.INPUT,
    ) -> ReadResult:
        if not self._open:
            raise CommunicationError(f"Serial port {self.port} is not connected", port=self.port)

        self.bus.calls.append((self.port, slave_id, address, count))
        if self.bus.read_delay:
            await asyncio.sleep(self.bus.read_delay)

        response = self.bus.responses.get((self.port, slave_id, address))
        if response is None:
            return ReadResult(success=False, error="Read timeout")
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, ReadResult):
            return response
        return ReadResult(success=True, raw_registers=list(response))


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def settings(tmp_path) -> AcquisitionSettings:
    return AcquisitionSettings(
        poll_interval_ms=60000,
        inter_device_delay_ms=0,
        response_timeout_ms=100,
        data_dir=str(tmp_path / "data"),
        health_port=0,
    )


def make_device(
    device_id: Any = 1,
    port: str = "P1",
    slave_id: int = 1,
    registers: dict | None = None,
    **extra,
) -> dict:
    data = {
        "id": device_id,
        "name": f"Analyzer {device_id}",
        "port": port,
        "slave_id": slave_id,
        "registers": registers if registers is not None else {
            "voltage": {"address": 0, "length": 2, "multiplier": 0.1},
        },
    }
    data.update(extra)
    return data


def build_devices(*device_dicts: dict):
    return load_devices(list(device_dicts))
