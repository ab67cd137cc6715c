"""Shared test fixtures: instance config and fake host/SSH collaborators."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from balena_qemu.models import InstanceConfig


class FakeHostTools:
    """In-memory stand-in for SystemHostTools that records every mutating call."""

    def __init__(self, bridge_ip: Optional[str] = None, network: Optional[Dict[str, bool]] = None) -> None:
        self._bridge_ip = bridge_ip
        self.network = network
        self.helper_conf: Optional[str] = None
        self.setuid_paths: set = set()
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None

    def _mutate(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise subprocess.CalledProcessError(1, [name], stderr=f"{name} exploded")

    def bridge_ip(self, bridge: str) -> Optional[str]:
        return self._bridge_ip

    def enable_ip_forwarding(self) -> None:
        self._mutate("enable_ip_forwarding")

    def enable_service(self, name: str) -> None:
        self._mutate("enable_service")

    def start_service(self, name: str) -> None:
        self._mutate("start_service")

    def network_info(self, name: str) -> Optional[Dict[str, bool]]:
        return dict(self.network) if self.network is not None else None

    def define_network(self, xml: str) -> None:
        self._mutate("define_network")
        self.network = {"active": False, "autostart": False}
        self.defined_xml = xml

    def autostart_network(self, name: str) -> None:
        self._mutate("autostart_network")
        self.network["autostart"] = True

    def start_network(self, name: str) -> None:
        self._mutate("start_network")
        self.network["active"] = True
        self._bridge_ip = "192.168.122.1"

    def read_helper_conf(self) -> Optional[str]:
        return self.helper_conf

    def write_helper_conf(self, rule: str) -> None:
        self._mutate("write_helper_conf")
        self.helper_conf = rule + "\n"

    def is_setuid(self, path: Path) -> bool:
        return path in self.setuid_paths

    def set_setuid(self, path: Path) -> None:
        self._mutate("set_setuid")
        self.setuid_paths.add(path)


@pytest.fixture
def fake_host() -> FakeHostTools:
    return FakeHostTools()


@pytest.fixture
def qemu_image(tmp_path) -> Path:
    image = tmp_path / "balena.img"
    image.write_bytes(b"\0" * 512)
    return image


@pytest.fixture
def instance_config(qemu_image) -> InstanceConfig:
    """Return a minimal InstanceConfig with the software-emulated profile."""
    return InstanceConfig(
        image_path=qemu_image,
        memory_mb=512,
        cpus=4,
        machine_opt="type=pc",
        cpu_model="qemu64",
    )


_CONFIG_ENV_VARS = [
    "QEMU_RUNNER_CONFIG",
    "QEMU_IMAGE",
    "QEMU_RAM",
    "QEMU_MAX_RAM",
    "QEMU_CPUS",
    "QEMU_BRIDGE",
    "SSH_PORT_START",
    "SSH_PORT_END",
    "BRIDGE_NAME",
    "BRIDGE_NETWORK",
    "READY_TIMEOUT",
    "READY_INTERVAL",
    "SKIP_PACKAGE_CHECK",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable parse_config() reads and point the default config file at nothing."""
    for key in _CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("balena_qemu.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    monkeypatch.setattr("balena_qemu.config.kvm_available", lambda: False)
    monkeypatch.setattr("balena_qemu.config.get_cpu_flags", lambda: set())
