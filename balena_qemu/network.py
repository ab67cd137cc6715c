"""Network definitions and QEMU network arguments for balena-qemu-runner."""

from __future__ import annotations

from typing import Iterable, List, Optional
from xml.etree.ElementTree import Element, SubElement, tostring

from balena_qemu.constants import (
    BRIDGE_DHCP_END,
    BRIDGE_DHCP_START,
    BRIDGE_NETWORK_ADDRESS,
    BRIDGE_NETWORK_NETMASK,
    GUEST_SSH_PORT,
    MAC_ADDRESS_RE,
)
from balena_qemu.exceptions import ConfigError
from balena_qemu.models import PortForward


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def render_network_xml(
    name: str,
    bridge_name: str,
    address: str = BRIDGE_NETWORK_ADDRESS,
    netmask: str = BRIDGE_NETWORK_NETMASK,
    dhcp_start: Optional[str] = BRIDGE_DHCP_START,
    dhcp_end: Optional[str] = BRIDGE_DHCP_END,
) -> str:
    """Render the libvirt NAT network the guest bridge attaches to."""
    network = Element("network")
    SubElement(network, "name").text = name
    forward = SubElement(network, "forward", mode="nat")
    nat = SubElement(forward, "nat")
    SubElement(nat, "port", start="1024", end="65535")
    SubElement(network, "bridge", name=bridge_name, stp="on", delay="0")
    ip_el = SubElement(network, "ip", address=address, netmask=netmask)
    if dhcp_start and dhcp_end:
        dhcp = SubElement(ip_el, "dhcp")
        SubElement(dhcp, "range", start=dhcp_start, end=dhcp_end)
    return _element_to_str(network)


def bridge_netdev_args(bridge_name: str, mac_address: str) -> List[str]:
    """QEMU arguments attaching a virtio NIC to *bridge_name* through the bridge helper."""
    mac = mac_address.lower()
    if not MAC_ADDRESS_RE.match(mac):
        raise ConfigError(f"Invalid MAC address '{mac_address}'")
    return [
        "-netdev",
        f"bridge,id=hn0,br={bridge_name}",
        "-device",
        f"virtio-net-pci,netdev=hn0,id=nic1,mac={mac}",
    ]


def user_netdev_args(ssh_port: int, port_forwards: Iterable[PortForward] = ()) -> List[str]:
    """User-mode NIC with the SSH forward and any extra host->guest forwards."""
    rules = [f"hostfwd=tcp::{ssh_port}-:{GUEST_SSH_PORT}"]
    rules.extend(f"hostfwd=tcp::{pf.host_port}-:{pf.guest_port}" for pf in port_forwards)
    return ["-net", "nic,model=virtio", "-net", "user," + ",".join(rules)]
