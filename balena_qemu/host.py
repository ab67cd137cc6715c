"""Host-side network tooling used for bridging.

Libvirt networks are managed through the libvirt bindings; ``ip``, ``sysctl``,
``systemctl`` and the bridge helper files go through subprocess.
"""

from __future__ import annotations

import os
import stat
import subprocess
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

try:
    import libvirt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit(f"libvirt python bindings not available: {exc}")

from balena_qemu.constants import (
    BRIDGE_CONF_MODE,
    BRIDGE_CONF_PATH,
    INET_ADDR_RE,
    IP_FORWARD_SYSCTL,
    LIBVIRT_URI,
)
from balena_qemu.utils import privileged, run


def parse_inet_address(output: str) -> Optional[str]:
    match = INET_ADDR_RE.search(output or "")
    return match.group(1) if match else None


@runtime_checkable
class HostTools(Protocol):
    """Host operations the bridge provisioner relies on."""

    def bridge_ip(self, bridge: str) -> Optional[str]: ...

    def enable_ip_forwarding(self) -> None: ...

    def enable_service(self, name: str) -> None: ...

    def start_service(self, name: str) -> None: ...

    def network_info(self, name: str) -> Optional[Dict[str, bool]]: ...

    def define_network(self, xml: str) -> None: ...

    def autostart_network(self, name: str) -> None: ...

    def start_network(self, name: str) -> None: ...

    def read_helper_conf(self) -> Optional[str]: ...

    def write_helper_conf(self, rule: str) -> None: ...

    def is_setuid(self, path: Path) -> bool: ...

    def set_setuid(self, path: Path) -> None: ...


class SystemHostTools:
    """Real host implementation; every mutating command goes through sudo when not root.

    Methods raise ``subprocess.CalledProcessError``, ``OSError`` or
    ``libvirt.libvirtError`` on failure.
    """

    def __init__(self, libvirt_uri: str = LIBVIRT_URI, conf_path: Path = BRIDGE_CONF_PATH) -> None:
        self.libvirt_uri = libvirt_uri
        self.conf_path = conf_path

    def _open(self) -> "libvirt.virConnect":
        conn = libvirt.open(self.libvirt_uri)
        if conn is None:
            raise libvirt.libvirtError(f"Failed to open libvirt connection at {self.libvirt_uri}")
        return conn

    @staticmethod
    def _lookup(conn: "libvirt.virConnect", name: str) -> Optional["libvirt.virNetwork"]:
        try:
            return conn.networkLookupByName(name)
        except libvirt.libvirtError:
            return None

    def bridge_ip(self, bridge: str) -> Optional[str]:
        result = run(["ip", "-f", "inet", "addr", "show", bridge], check=False, capture_output=True)
        if result.returncode != 0:
            return None
        return parse_inet_address(result.stdout)

    def enable_ip_forwarding(self) -> None:
        run(privileged(["sysctl", f"{IP_FORWARD_SYSCTL}=1"]), capture_output=True)

    def enable_service(self, name: str) -> None:
        run(privileged(["systemctl", "enable", name]), capture_output=True)

    def start_service(self, name: str) -> None:
        run(privileged(["systemctl", "start", name]), capture_output=True)

    def network_info(self, name: str) -> Optional[Dict[str, bool]]:
        """Return ``{"active": ..., "autostart": ...}`` or None if the network is not defined."""
        conn = self._open()
        try:
            net = self._lookup(conn, name)
            if net is None:
                return None
            return {"active": net.isActive() == 1, "autostart": net.autostart() == 1}
        finally:
            conn.close()

    def define_network(self, xml: str) -> None:
        conn = self._open()
        try:
            conn.networkDefineXML(xml)
        finally:
            conn.close()

    def autostart_network(self, name: str) -> None:
        conn = self._open()
        try:
            net = conn.networkLookupByName(name)
            if net.autostart() == 0:
                net.setAutostart(True)
        finally:
            conn.close()

    def start_network(self, name: str) -> None:
        conn = self._open()
        try:
            net = conn.networkLookupByName(name)
            if net.isActive() == 0:
                net.create()
        finally:
            conn.close()

    def read_helper_conf(self) -> Optional[str]:
        result = run(privileged(["cat", str(self.conf_path)]), check=False, capture_output=True)
        if result.returncode != 0:
            return None
        return result.stdout

    def write_helper_conf(self, rule: str) -> None:
        run(privileged(["mkdir", "-p", str(self.conf_path.parent)]))
        run(privileged(["tee", str(self.conf_path)]), input=rule + "\n", stdout=subprocess.DEVNULL)
        run(privileged(["chown", "root:root", str(self.conf_path)]))
        run(privileged(["chmod", f"{BRIDGE_CONF_MODE:04o}", str(self.conf_path)]))

    def is_setuid(self, path: Path) -> bool:
        try:
            return bool(os.stat(path).st_mode & stat.S_ISUID)
        except OSError:
            return False

    def set_setuid(self, path: Path) -> None:
        run(privileged(["chmod", "u+s", str(path)]))
