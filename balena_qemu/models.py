"""Data models for balena-qemu-runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from balena_qemu.constants import (
    BRIDGE_NAME,
    BRIDGE_NETWORK,
    END_SSH_PORT,
    READY_INTERVAL,
    READY_TIMEOUT,
    SSH_HOST,
    SSH_USER,
    START_SSH_PORT,
)


class PortForward(NamedTuple):
    host_port: int
    guest_port: int


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    PORT_ALLOCATED = "port_allocated"
    BRIDGE_READY = "bridge_ready"
    LAUNCHED = "launched"
    RUNNING = "running"
    FAILED = "failed"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class InstanceConfig:
    image_path: Optional[Path]
    memory_mb: int
    cpus: int
    machine_opt: str
    cpu_model: str
    bridge_enabled: bool = False
    max_memory_mb: Optional[int] = None
    port_range: Tuple[int, int] = (START_SSH_PORT, END_SSH_PORT)
    port_forwards: Tuple[PortForward, ...] = ()
    bridge_name: str = BRIDGE_NAME
    bridge_network: str = BRIDGE_NETWORK
    ssh_user: str = SSH_USER
    ssh_host: str = SSH_HOST
    ready_timeout: int = READY_TIMEOUT
    ready_interval: int = READY_INTERVAL


@dataclass
class BridgeDescriptor:
    name: str
    host_ip: str
    mac_address: str
    netdev_args: List[str] = field(default_factory=list)


@dataclass
class InstanceHandle:
    port: Optional[int] = None
    bridge: Optional[BridgeDescriptor] = None
    state: LifecycleState = LifecycleState.UNINITIALIZED
    guest_ip: Optional[str] = None
    failed_stage: Optional[str] = None


@dataclass
class StartResult:
    port: int
    state: LifecycleState
    guest_ip: Optional[str] = None
    bridge_ip: Optional[str] = None
