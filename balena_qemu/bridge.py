"""Idempotent host bridge provisioning for bridged guests."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable

try:
    import libvirt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit(f"libvirt python bindings not available: {exc}")

from balena_qemu.constants import (
    BRIDGE_HELPER_PATH,
    BRIDGE_NAME,
    BRIDGE_NETWORK,
    LIBVIRTD_SERVICE,
)
from balena_qemu.exceptions import BridgeSetupError
from balena_qemu.host import HostTools
from balena_qemu.models import BridgeDescriptor
from balena_qemu.network import bridge_netdev_args, render_network_xml
from balena_qemu.utils import log, mac_for_port


class BridgeProvisioner:
    """Make sure the libvirt bridge exists and QEMU's bridge helper may use it.

    Every step inspects host state first, so calling ``ensure_bridge`` again
    after a partial failure simply resumes where the previous call stopped.
    """

    def __init__(
        self,
        host: HostTools,
        bridge_name: str = BRIDGE_NAME,
        network_name: str = BRIDGE_NETWORK,
        helper_path: Path = BRIDGE_HELPER_PATH,
    ) -> None:
        self.host = host
        self.bridge_name = bridge_name
        self.network_name = network_name
        self.helper_path = helper_path

    @property
    def allow_rule(self) -> str:
        return f"allow {self.bridge_name}"

    def ensure_bridge(self, port: int) -> BridgeDescriptor:
        if self._step("query bridge address", self.host.bridge_ip, self.bridge_name):
            log("DEBUG", f"Bridge {self.bridge_name} already has an address; skipping network setup")
        else:
            log("WARN", "Setting up virtual bridge")
            self._provision_network()
        self._ensure_helper()

        bridge_ip = self._step("query bridge address", self.host.bridge_ip, self.bridge_name)
        if not bridge_ip:
            raise BridgeSetupError(f"Bridge {self.bridge_name} has no IPv4 address after setup")
        log("INFO", f"Bridge IP is: {bridge_ip}")

        mac = mac_for_port(port)
        return BridgeDescriptor(
            name=self.bridge_name,
            host_ip=bridge_ip,
            mac_address=mac,
            netdev_args=bridge_netdev_args(self.bridge_name, mac),
        )

    def _provision_network(self) -> None:
        self._step("enable IP forwarding", self.host.enable_ip_forwarding)
        self._step(f"enable {LIBVIRTD_SERVICE}", self.host.enable_service, LIBVIRTD_SERVICE)
        self._step(f"start {LIBVIRTD_SERVICE}", self.host.start_service, LIBVIRTD_SERVICE)

        info = self._step("query network", self.host.network_info, self.network_name)
        if info is None:
            xml = render_network_xml(self.network_name, self.bridge_name)
            self._step(f"define network {self.network_name}", self.host.define_network, xml)
            log("INFO", f"Defined libvirt network '{self.network_name}'")
            info = {}
        if not info.get("autostart"):
            self._step(f"autostart network {self.network_name}", self.host.autostart_network, self.network_name)
        if not info.get("active"):
            self._step(f"start network {self.network_name}", self.host.start_network, self.network_name)

    def _ensure_helper(self) -> None:
        current = self._step("read bridge helper config", self.host.read_helper_conf)
        if (current or "").strip() != self.allow_rule:
            log("WARN", "Setting up qemu bridge helper")
            self._step("write bridge helper config", self.host.write_helper_conf, self.allow_rule)
        if not self.host.is_setuid(self.helper_path):
            self._step("mark bridge helper setuid", self.host.set_setuid, self.helper_path)

    def _step(self, name: str, func: Callable, *args):
        try:
            return func(*args)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
            raise BridgeSetupError(f"Bridge setup step '{name}' failed: {detail}") from exc
        except OSError as exc:
            raise BridgeSetupError(f"Bridge setup step '{name}' failed: {exc}") from exc
        except libvirt.libvirtError as exc:
            raise BridgeSetupError(f"Bridge setup step '{name}' failed: {exc}") from exc
