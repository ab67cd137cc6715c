"""Global constants and host paths for balena-qemu-runner."""

from __future__ import annotations

import os
import re
from pathlib import Path

CONFIG_ENV_VAR = "QEMU_RUNNER_CONFIG"
DEFAULT_CONFIG_PATH = Path("/etc/balena-qemu/config.yaml")
TRUTHY = {"1", "true", "yes", "on"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

QEMU_BINARY = "qemu-system-x86_64"
REQUIRED_PACKAGES = ("qemu-kvm", "libvirt-daemon-system")

# Host-side SSH forward range and guest-side SSH port (balenaOS dev images).
START_SSH_PORT = 22400
END_SSH_PORT = 22500
GUEST_SSH_PORT = 22222
SSH_HOST = "localhost"
SSH_USER = "root"
SSH_CONNECT_TIMEOUT = 5

READY_TIMEOUT = 60
READY_INTERVAL = 5

INIT_RAM_MB = 512
NUM_OF_CPUS = 4

# Software-emulated profile, upgraded to KVM when the host supports it.
MACHINE_OPT = "type=pc"
CPU_OPT = "qemu64"
KVM_MACHINE_OPT = "type=pc,accel=kvm"
KVM_CPU_OPT = "host"
KVM_DEVICE = Path("/dev/kvm")
CPUINFO_PATH = Path("/proc/cpuinfo")
VIRT_CPU_FLAGS = {"vmx", "svm"}

BRIDGE_NAME = "virbr0"
BRIDGE_NETWORK = "default"
BRIDGE_NETWORK_ADDRESS = "192.168.122.1"
BRIDGE_NETWORK_NETMASK = "255.255.255.0"
BRIDGE_DHCP_START = "192.168.122.2"
BRIDGE_DHCP_END = "192.168.122.254"
LIBVIRTD_SERVICE = "libvirtd.service"
LIBVIRT_URI = os.environ.get("LIBVIRT_URI", "qemu:///system")
IP_FORWARD_SYSCTL = "net.ipv4.ip_forward"

QEMU_CONF_DIR = Path("/etc/qemu")
BRIDGE_CONF_PATH = QEMU_CONF_DIR / "bridge.conf"
BRIDGE_HELPER_PATH = Path("/usr/lib/qemu/qemu-bridge-helper")
BRIDGE_CONF_MODE = 0o644

MAC_ADDRESS_PREFIX = "52:54:00:12:34"
MAC_ADDRESS_RE = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$")
INET_ADDR_RE = re.compile(r"\binet\s+([0-9.]+)")
