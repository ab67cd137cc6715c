"""Utility functions for balena-qemu-runner."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import List, Optional

from balena_qemu.constants import (
    _LOG_VERBOSE,
    CPUINFO_PATH,
    KVM_DEVICE,
    MAC_ADDRESS_PREFIX,
    TRUTHY,
)
from balena_qemu.exceptions import ConfigError


def log(level: str, message: str) -> None:
    """Lightweight structured logging with one colour per level."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int(name: str, raw: object, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(str(raw))
    except ValueError:
        raise ConfigError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ConfigError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ConfigError(f"{name} must be <= {max_val} (got {value})")
    return value


def kvm_available(kvm_path: Path = KVM_DEVICE) -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def get_cpu_flags(cpuinfo: Path = CPUINFO_PATH) -> set:
    """Return the feature flags of the first CPU listed in /proc/cpuinfo."""
    try:
        with open(cpuinfo) as f:
            for line in f:
                if line.startswith("flags"):
                    return set(line.split(":", 1)[1].split())
    except OSError:
        pass
    return set()


def mac_for_port(port: int) -> str:
    """Derive a stable MAC from the last two decimal digits of the SSH port."""
    return f"{MAC_ADDRESS_PREFIX}:{port % 100:02d}"


def is_root() -> bool:
    return os.geteuid() == 0


def privileged(cmd: List[str]) -> List[str]:
    """Prefix *cmd* with sudo unless already running as root."""
    if is_root():
        return list(cmd)
    return ["sudo", *cmd]


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
