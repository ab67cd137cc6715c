"""SSH access to the guest through the forwarded loopback port."""

from __future__ import annotations

import subprocess
from typing import Callable, List, Optional

from balena_qemu.constants import SSH_CONNECT_TIMEOUT, SSH_HOST, SSH_USER
from balena_qemu.utils import log, run

# The forwarded port is reused by every new instance, so host keys are never trusted.
DEFAULT_SSH_OPTS: List[str] = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]


class RemoteShell:
    def __init__(
        self,
        user: str = SSH_USER,
        host: str = SSH_HOST,
        connect_timeout: int = SSH_CONNECT_TIMEOUT,
        runner: Callable = run,
    ) -> None:
        self.user = user
        self.host = host
        self.connect_timeout = connect_timeout
        self.runner = runner

    def build_command(self, port: int, command: List[str]) -> List[str]:
        cmd: List[str] = ["ssh", "-q"] + list(DEFAULT_SSH_OPTS)
        cmd.extend(["-o", f"ConnectTimeout={self.connect_timeout}"])
        cmd.extend(["-p", str(port), f"{self.user}@{self.host}"])
        cmd.extend(command)
        return cmd

    def execute(self, port: int, command: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        return self.runner(
            self.build_command(port, command),
            check=False,
            capture_output=True,
            timeout=timeout,
        )

    def output(self, port: int, command: List[str]) -> Optional[str]:
        """Run *command* in the guest and return stdout, or None on any failure."""
        try:
            result = self.execute(port, command, timeout=30)
        except (subprocess.TimeoutExpired, OSError) as exc:
            log("DEBUG", f"ssh {' '.join(command)} failed: {exc}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def probe(self, port: int) -> bool:
        """Connect and exit immediately; True when the guest accepted the session."""
        try:
            result = self.execute(port, ["exit"], timeout=self.connect_timeout * 2)
        except (subprocess.TimeoutExpired, OSError):
            return False
        return result.returncode == 0

    def forget_host(self, port: int) -> None:
        """Drop a cached host key for [host]:port left by an earlier instance."""
        try:
            self.runner(
                ["ssh-keygen", "-R", f"[{self.host}]:{port}"],
                check=False,
                capture_output=True,
            )
        except OSError as exc:
            log("DEBUG", f"ssh-keygen unavailable: {exc}")

    def shutdown(self, port: int) -> subprocess.CompletedProcess:
        return self.execute(port, ["shutdown", "-h", "0"], timeout=30)
