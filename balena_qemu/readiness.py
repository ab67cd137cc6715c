"""Blocking wait until the guest accepts SSH sessions."""

from __future__ import annotations

import time
from typing import Callable

from balena_qemu.constants import READY_INTERVAL, READY_TIMEOUT
from balena_qemu.exceptions import ReadinessTimeout
from balena_qemu.ssh import RemoteShell
from balena_qemu.utils import log


class ReadinessWatcher:
    """Probe the forwarded port every ``poll_interval`` seconds until ``timeout``.

    Elapsed time is counted in whole poll intervals rather than read from a
    clock, so a test can pass a no-op ``sleep`` and still hit the deadline.
    """

    def __init__(self, shell: RemoteShell, sleep: Callable[[float], None] = time.sleep) -> None:
        self.shell = shell
        self.sleep = sleep

    def wait_ready(self, port: int, timeout: int = READY_TIMEOUT, poll_interval: int = READY_INTERVAL) -> bool:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.shell.forget_host(port)
        elapsed = 0
        while elapsed < timeout:
            if self.shell.probe(port):
                log("INFO", "SSH connection successful")
                return True
            log("DEBUG", f"Guest on port {port} not reachable yet ({elapsed}s/{timeout}s)")
            self.sleep(poll_interval)
            elapsed += poll_interval
        raise ReadinessTimeout(f"Timed out waiting for SSH connection to the qemu device on port {port}")
