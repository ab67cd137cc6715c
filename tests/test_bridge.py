"""Tests for balena_qemu.bridge module."""

from __future__ import annotations

from pathlib import Path

import libvirt
import pytest

from balena_qemu.bridge import BridgeProvisioner
from balena_qemu.exceptions import BridgeSetupError

HELPER = Path("/usr/lib/qemu/qemu-bridge-helper")


@pytest.fixture
def provisioner(fake_host):
    return BridgeProvisioner(fake_host, bridge_name="virbr0", network_name="default", helper_path=HELPER)


class TestFreshHost:
    def test_provisions_everything_in_order(self, provisioner, fake_host):
        bridge = provisioner.ensure_bridge(22405)
        assert fake_host.calls == [
            "enable_ip_forwarding",
            "enable_service",
            "start_service",
            "define_network",
            "autostart_network",
            "start_network",
            "write_helper_conf",
            "set_setuid",
        ]
        assert fake_host.helper_conf == "allow virbr0\n"
        assert "<name>default</name>" in fake_host.defined_xml
        assert bridge.name == "virbr0"
        assert bridge.host_ip == "192.168.122.1"

    def test_descriptor_carries_port_derived_mac(self, provisioner):
        bridge = provisioner.ensure_bridge(22405)
        assert bridge.mac_address == "52:54:00:12:34:05"
        assert bridge.netdev_args == [
            "-netdev",
            "bridge,id=hn0,br=virbr0",
            "-device",
            "virtio-net-pci,netdev=hn0,id=nic1,mac=52:54:00:12:34:05",
        ]

    def test_second_call_performs_no_mutation(self, provisioner, fake_host):
        provisioner.ensure_bridge(22400)
        fake_host.calls.clear()
        provisioner.ensure_bridge(22401)
        assert fake_host.calls == []


class TestPartiallyProvisionedHost:
    def test_existing_bridge_skips_network_setup(self, provisioner, fake_host):
        fake_host._bridge_ip = "192.168.122.1"
        provisioner.ensure_bridge(22400)
        assert fake_host.calls == ["write_helper_conf", "set_setuid"]

    def test_defined_but_inactive_network_is_only_started(self, provisioner, fake_host):
        fake_host.network = {"active": False, "autostart": True}
        provisioner.ensure_bridge(22400)
        assert "define_network" not in fake_host.calls
        assert "autostart_network" not in fake_host.calls
        assert "start_network" in fake_host.calls

    def test_correct_helper_conf_is_left_alone(self, provisioner, fake_host):
        fake_host._bridge_ip = "192.168.122.1"
        fake_host.helper_conf = "allow virbr0\n"
        fake_host.setuid_paths.add(HELPER)
        provisioner.ensure_bridge(22400)
        assert fake_host.calls == []

    def test_wrong_helper_rule_is_rewritten(self, provisioner, fake_host):
        fake_host._bridge_ip = "192.168.122.1"
        fake_host.helper_conf = "allow br0\n"
        fake_host.setuid_paths.add(HELPER)
        provisioner.ensure_bridge(22400)
        assert fake_host.calls == ["write_helper_conf"]
        assert fake_host.helper_conf == "allow virbr0\n"


class TestFailures:
    def test_failed_step_aborts_with_step_name(self, provisioner, fake_host):
        fake_host.fail_on = "start_service"
        with pytest.raises(BridgeSetupError, match="start libvirtd.service.*start_service exploded"):
            provisioner.ensure_bridge(22400)
        assert "define_network" not in fake_host.calls

    def test_retry_after_failure_resumes(self, provisioner, fake_host):
        fake_host.fail_on = "start_network"
        with pytest.raises(BridgeSetupError):
            provisioner.ensure_bridge(22400)
        fake_host.fail_on = None
        fake_host.calls.clear()
        provisioner.ensure_bridge(22400)
        assert "define_network" not in fake_host.calls
        assert "start_network" in fake_host.calls

    def test_bridge_without_address_after_setup_raises(self, provisioner, fake_host, monkeypatch):
        monkeypatch.setattr(fake_host, "bridge_ip", lambda bridge: None)
        with pytest.raises(BridgeSetupError, match="no IPv4 address"):
            provisioner.ensure_bridge(22400)

    def test_os_error_is_wrapped(self, provisioner, fake_host, monkeypatch):
        def boom(path):
            raise PermissionError("denied")

        fake_host._bridge_ip = "192.168.122.1"
        monkeypatch.setattr(fake_host, "set_setuid", boom)
        with pytest.raises(BridgeSetupError, match="mark bridge helper setuid"):
            provisioner.ensure_bridge(22400)

    def test_libvirt_error_is_wrapped(self, provisioner, fake_host, monkeypatch):
        def refuse(name):
            raise libvirt.libvirtError("Failed to connect socket to '/var/run/libvirt/libvirt-sock'")

        monkeypatch.setattr(fake_host, "network_info", refuse)
        with pytest.raises(BridgeSetupError, match="query network.*libvirt-sock"):
            provisioner.ensure_bridge(22400)
        assert "define_network" not in fake_host.calls
