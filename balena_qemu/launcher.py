"""QEMU command construction and daemonized launch."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, List, Optional

from balena_qemu.constants import QEMU_BINARY
from balena_qemu.exceptions import LaunchError
from balena_qemu.models import BridgeDescriptor, InstanceConfig, InstanceHandle, LifecycleState
from balena_qemu.network import user_netdev_args
from balena_qemu.utils import log, run


def validate_image(image_path: Optional[Path]) -> Path:
    if image_path is None or not str(image_path).strip():
        raise LaunchError(
            "Providing a QEMU image is mandatory, use the --image flag "
            "(images can be downloaded from your balenaCloud dashboard)"
        )
    path = Path(image_path)
    if not path.is_file():
        raise LaunchError(f"QEMU image not found: {path}")
    if not os.access(path, os.R_OK):
        raise LaunchError(f"QEMU image is not readable: {path}")
    return path


def build_qemu_command(
    config: InstanceConfig,
    port: int,
    bridge: Optional[BridgeDescriptor] = None,
) -> List[str]:
    memory = str(config.memory_mb)
    if config.max_memory_mb:
        memory += f",maxmem={config.max_memory_mb}"

    cmd = [
        QEMU_BINARY,
        "-device",
        "ahci,id=ahci",
        "-drive",
        f"file={config.image_path},media=disk,cache=none,format=raw,if=none,id=disk",
        "-device",
        "ide-hd,drive=disk,bus=ahci.0",
    ]
    cmd.extend(user_netdev_args(port, config.port_forwards))
    if bridge is not None:
        cmd.extend(bridge.netdev_args)
    cmd.extend(
        [
            "-m",
            memory,
            "-display",
            "none",
            "-daemonize",
            "-machine",
            config.machine_opt,
            "-smp",
            str(config.cpus),
            "-cpu",
            config.cpu_model,
        ]
    )
    return cmd


class InstanceLauncher:
    def __init__(self, runner: Callable = run) -> None:
        self.runner = runner

    def launch(
        self,
        config: InstanceConfig,
        port: int,
        bridge: Optional[BridgeDescriptor] = None,
    ) -> InstanceHandle:
        """Start QEMU in the background; returns once the daemonized process was accepted."""
        validate_image(config.image_path)
        cmd = build_qemu_command(config, port, bridge)
        log("WARN", "Trying to start QEMU device")
        try:
            result = self.runner(cmd, check=False, capture_output=True)
        except OSError as exc:
            raise LaunchError(f"Failed to execute {QEMU_BINARY}: {exc}") from exc
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            message = f"Failed to start qemu device (exit status {result.returncode})"
            if stderr:
                message += f": {stderr}"
            raise LaunchError(message)
        log("INFO", "Starting QEMU device in background, please wait... (around one minute)")
        return InstanceHandle(port=port, bridge=bridge, state=LifecycleState.LAUNCHED)
