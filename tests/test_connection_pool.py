from services.acquisition.connection_pool import PortConnectionPool

from conftest import build_devices, make_device


def make_pool(bus) -> PortConnectionPool:
    return PortConnectionPool(response_timeout=1.0, client_factory=bus.factory)


async def test_one_connection_per_port(bus):
    devices = build_devices(
        make_device(1, port="P1", slave_id=1),
        make_device(2, port="P1", slave_id=2),
        make_device(3, port="P2", slave_id=1),
    )
    pool = make_pool(bus)
    await pool.initialize(devices)

    assert sorted(pool.ports) == ["P1", "P2"]
    assert len(bus.clients) == 2
    assert pool.get_connection("P1") is not pool.get_connection("P2")


async def test_first_device_settings_and_timeout_are_used(bus):
    devices = build_devices(make_device(1, port="P1", baudrate=19200, parity="even"))
    pool = make_pool(bus)
    await pool.initialize(devices)

    client = pool.get_connection("P1")
    assert client.baudrate == 19200
    assert client.parity == "E"
    assert client.timeout == 1.0


async def test_disabled_devices_get_no_connection(bus):
    devices = build_devices(
        make_device(1, port="P1"),
        make_device(2, port="P2", enabled=False),
    )
    pool = make_pool(bus)
    await pool.initialize(devices)

    assert pool.ports == ["P1"]
    assert pool.get_connection("P2") is None


async def test_failed_port_is_absent(bus):
    bus.unavailable.add("P2")
    devices = build_devices(make_device(1, port="P1"), make_device(2, port="P2"))
    pool = make_pool(bus)
    await pool.initialize(devices)

    assert pool.get_connection("P1") is not None
    assert pool.get_connection("P2") is None
    assert pool.failed_ports == ["P2"]


async def test_factory_exception_is_treated_as_failed_port():
    def broken_factory(**kwargs):
        raise OSError("no such device")

    pool = PortConnectionPool(client_factory=broken_factory)
    await pool.initialize(build_devices(make_device(1, port="P1")))
    assert pool.ports == []
    assert pool.failed_ports == ["P1"]


async def test_reinitialize_twice_leaves_one_connection_per_port(bus):
    devices = build_devices(
        make_device(1, port="P1", slave_id=1),
        make_device(2, port="P1", slave_id=2),
        make_device(3, port="P2"),
    )
    pool = make_pool(bus)
    await pool.initialize(devices)
    first_generation = list(bus.clients)

    await pool.reinitialize(devices)
    await pool.reinitialize(devices)

    assert sorted(pool.ports) == ["P1", "P2"]
    assert all(c.closed for c in first_generation)
    assert len(bus.open_clients()) == 2


async def test_reinitialize_recovers_failed_port(bus):
    bus.unavailable.add("P1")
    devices = build_devices(make_device(1, port="P1"))
    pool = make_pool(bus)
    await pool.initialize(devices)
    assert pool.get_connection("P1") is None

    bus.unavailable.clear()
    await pool.reinitialize(devices)
    assert pool.get_connection("P1") is not None
    assert pool.failed_ports == []


async def test_close_failures_are_tolerated(bus):
    devices = build_devices(make_device(1, port="P1"))
    pool = make_pool(bus)
    await pool.initialize(devices)

    async def failing_disconnect():
        raise OSError("device vanished")

    bus.clients[0].disconnect = failing_disconnect
    await pool.reinitialize(devices)

    assert pool.get_connection("P1") is bus.clients[1]


async def test_shutdown_closes_everything(bus):
    devices = build_devices(make_device(1, port="P1"), make_device(2, port="P2"))
    pool = make_pool(bus)
    await pool.initialize(devices)
    await pool.shutdown()

    assert pool.ports == []
    assert bus.open_clients() == []


async def test_stats_list_devices_per_port(bus):
    devices = build_devices(make_device(1, port="P1"), make_device(2, port="P1", slave_id=2))
    pool = make_pool(bus)
    await pool.initialize(devices)

    stats = pool.get_stats()
    assert stats["total_connections"] == 1
    assert stats["serial_connections"]["P1"]["devices"] == [1, 2]


async def test_client_of_failed_port_is_closed(bus):
    bus.unavailable.add("P1")
    pool = make_pool(bus)
    await pool.initialize(build_devices(make_device(1, port="P1")))

    assert pool.failed_ports == ["P1"]
    assert bus.clients[0].closed
