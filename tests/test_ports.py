"""Tests for balena_qemu.ports module."""

from __future__ import annotations

import socket

import pytest

from balena_qemu.exceptions import NoFreePortError
from balena_qemu.ports import PortAllocator, port_in_use


@pytest.fixture
def listener():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock
    sock.close()


class TestPortInUse:
    def test_bound_port_is_in_use(self, listener):
        port = listener.getsockname()[1]
        assert port_in_use(port, host="127.0.0.1") is True

    def test_closed_port_is_free(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()
        assert port_in_use(port, host="127.0.0.1") is False


class TestAllocate:
    def test_returns_first_free_port(self):
        busy = {22400, 22401, 22403}
        allocator = PortAllocator(probe=lambda port: port in busy)
        assert allocator.allocate(22400, 22500) == 22402

    def test_scans_low_to_high_and_stops_early(self):
        probed = []

        def probe(port):
            probed.append(port)
            return port < 22405

        assert PortAllocator(probe=probe).allocate(22400, 22500) == 22405
        assert probed == [22400, 22401, 22402, 22403, 22404, 22405]

    def test_range_is_inclusive(self):
        allocator = PortAllocator(probe=lambda port: port != 22500)
        assert allocator.allocate(22400, 22500) == 22500

    def test_fully_occupied_range_raises(self):
        allocator = PortAllocator(probe=lambda port: True)
        with pytest.raises(NoFreePortError, match="22400-22500"):
            allocator.allocate(22400, 22500)

    def test_never_returns_listening_port(self, listener):
        port = listener.getsockname()[1]
        allocator = PortAllocator(probe=lambda p: port_in_use(p, host="127.0.0.1"))
        with pytest.raises(NoFreePortError):
            allocator.allocate(port, port)
