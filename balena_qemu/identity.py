"""Discover the guest's address on the bridge network."""

from __future__ import annotations

from typing import Optional

from balena_qemu.exceptions import UnresolvedError
from balena_qemu.host import parse_inet_address
from balena_qemu.ssh import RemoteShell


def interface_for_gateway(route_table: str, gateway: str) -> Optional[str]:
    """Return the ``dev`` of the first route whose gateway (third field) is *gateway*.

    >>> interface_for_gateway("default via 192.168.122.1 dev eth1 proto dhcp", "192.168.122.1")
    'eth1'
    """
    for line in route_table.splitlines():
        fields = line.split()
        if len(fields) < 3 or fields[2] != gateway:
            continue
        if "dev" in fields:
            idx = fields.index("dev")
            if idx + 1 < len(fields):
                return fields[idx + 1]
    return None


class GuestIdentityResolver:
    def __init__(self, shell: RemoteShell) -> None:
        self.shell = shell

    def resolve_ip(self, port: int, bridge_host_ip: str) -> str:
        routes = self.shell.output(port, ["ip", "route"])
        if routes is None:
            raise UnresolvedError("Could not read the guest routing table")
        interface = interface_for_gateway(routes, bridge_host_ip)
        if interface is None:
            raise UnresolvedError(f"No guest route uses the bridge gateway {bridge_host_ip}")

        addresses = self.shell.output(port, ["ip", "-4", "address", "show", "dev", interface])
        guest_ip = parse_inet_address(addresses or "")
        if guest_ip is None:
            raise UnresolvedError(f"Guest interface {interface} has no IPv4 address")
        return guest_ip
