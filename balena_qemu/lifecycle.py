"""Start/stop orchestration for a single QEMU instance."""

from __future__ import annotations

import subprocess
from typing import Optional

from balena_qemu.bridge import BridgeProvisioner
from balena_qemu.constants import SSH_HOST, SSH_USER
from balena_qemu.exceptions import ConfigError, ManagerError, ShutdownError, UnresolvedError
from balena_qemu.host import SystemHostTools
from balena_qemu.identity import GuestIdentityResolver
from balena_qemu.launcher import InstanceLauncher
from balena_qemu.models import InstanceConfig, InstanceHandle, LifecycleState, StartResult
from balena_qemu.ports import PortAllocator
from balena_qemu.readiness import ReadinessWatcher
from balena_qemu.ssh import RemoteShell
from balena_qemu.utils import log


class LifecycleController:
    """Drive one instance UNINITIALIZED -> RUNNING, or stop one by its SSH port.

    A failing stage leaves the handle in FAILED with ``failed_stage`` set and
    re-raises; completed stages are not rolled back (a provisioned bridge is
    meant to be reused by the next run). Stopping only needs ``shell``, so
    ``config`` may be omitted for a stop-only controller.
    """

    def __init__(
        self,
        config: Optional[InstanceConfig] = None,
        allocator: Optional[PortAllocator] = None,
        provisioner: Optional[BridgeProvisioner] = None,
        launcher: Optional[InstanceLauncher] = None,
        watcher: Optional[ReadinessWatcher] = None,
        resolver: Optional[GuestIdentityResolver] = None,
        shell: Optional[RemoteShell] = None,
    ) -> None:
        self.config = config
        if shell is None:
            shell = RemoteShell(
                user=config.ssh_user if config else SSH_USER,
                host=config.ssh_host if config else SSH_HOST,
            )
        self.shell = shell
        self.allocator = allocator or PortAllocator()
        if provisioner is None and config is not None:
            provisioner = BridgeProvisioner(
                SystemHostTools(),
                bridge_name=config.bridge_name,
                network_name=config.bridge_network,
            )
        self.provisioner = provisioner
        self.launcher = launcher or InstanceLauncher()
        self.watcher = watcher or ReadinessWatcher(self.shell)
        self.resolver = resolver or GuestIdentityResolver(self.shell)
        self.handle = InstanceHandle()

    @property
    def state(self) -> LifecycleState:
        return self.handle.state

    def start(self) -> StartResult:
        try:
            return self._start()
        except ManagerError as exc:
            self.handle.state = LifecycleState.FAILED
            self.handle.failed_stage = exc.stage
            raise

    def _start(self) -> StartResult:
        cfg = self.config
        if cfg is None:
            raise ConfigError("An instance configuration is required to start a device")
        self.handle = InstanceHandle()

        port = self.allocator.allocate(*cfg.port_range)
        self.handle.port = port
        self.handle.state = LifecycleState.PORT_ALLOCATED

        if cfg.bridge_enabled:
            self.handle.bridge = self.provisioner.ensure_bridge(port)
            self.handle.state = LifecycleState.BRIDGE_READY

        launched = self.launcher.launch(cfg, port, self.handle.bridge)
        self.handle.state = launched.state

        self.watcher.wait_ready(port, timeout=cfg.ready_timeout, poll_interval=cfg.ready_interval)
        self.handle.state = LifecycleState.RUNNING
        log("SUCCESS", "QEMU device is up")

        if self.handle.bridge is not None:
            try:
                self.handle.guest_ip = self.resolver.resolve_ip(port, self.handle.bridge.host_ip)
            except UnresolvedError as exc:
                log("WARN", f"Can't find device IP address: {exc}")
            else:
                log("SUCCESS", f"Device IP is: {self.handle.guest_ip}")

        return StartResult(
            port=port,
            state=self.handle.state,
            guest_ip=self.handle.guest_ip,
            bridge_ip=self.handle.bridge.host_ip if self.handle.bridge else None,
        )

    def stop(self, port: int) -> None:
        """Ask the guest on *port* to power off; only the command's exit status is checked."""
        self.handle = InstanceHandle(port=port, state=LifecycleState.STOPPING)
        log("INFO", f"Sending shutdown to QEMU device on port {port}")
        try:
            result = self.shell.shutdown(port)
        except (subprocess.TimeoutExpired, OSError) as exc:
            self._fail_stop()
            raise ShutdownError(f"Shutdown command failed to send: {exc}") from exc
        if result.returncode != 0:
            self._fail_stop()
            raise ShutdownError(f"Shutdown command failed to send (exit status {result.returncode})")
        self.handle.state = LifecycleState.STOPPED
        log("SUCCESS", f"QEMU device on port {port} is shutting down")

    def _fail_stop(self) -> None:
        self.handle.state = LifecycleState.FAILED
        self.handle.failed_stage = ShutdownError.stage
