"""Host port allocation for the guest SSH forward."""

from __future__ import annotations

import socket
from typing import Callable

from balena_qemu.constants import SSH_HOST
from balena_qemu.exceptions import NoFreePortError
from balena_qemu.utils import log


def port_in_use(port: int, host: str = SSH_HOST, timeout: float = 0.5) -> bool:
    """Return True if something accepts TCP connections on *host*:*port*."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class PortAllocator:
    """Linear scan for the first port nobody is listening on.

    This is a check, not a reservation: QEMU binds the port later, so a
    concurrent process can still grab it in between.
    """

    def __init__(self, probe: Callable[[int], bool] = port_in_use) -> None:
        self.probe = probe

    def allocate(self, range_start: int, range_end: int) -> int:
        log("WARN", f"Searching free port in range {range_start} to {range_end}")
        for port in range(range_start, range_end + 1):
            if not self.probe(port):
                log("INFO", f"Free port found: {port}")
                return port
        raise NoFreePortError(f"No free port found in range {range_start}-{range_end}")
