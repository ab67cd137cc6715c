"""Host package bootstrap (Debian/Ubuntu hosts)."""

from __future__ import annotations

import shutil
from typing import Callable, Iterable

from balena_qemu.constants import REQUIRED_PACKAGES
from balena_qemu.exceptions import PackageError
from balena_qemu.utils import log, privileged, run


def ensure_packages(packages: Iterable[str] = REQUIRED_PACKAGES, runner: Callable = run) -> None:
    packages = list(packages)
    if shutil.which("dpkg") is None:
        log("WARN", "dpkg not found; skipping package check (install QEMU and libvirt manually)")
        return
    try:
        status = runner(["dpkg", "-s", *packages], check=False, capture_output=True)
    except OSError as exc:
        raise PackageError(f"Failed to query installed packages: {exc}") from exc
    if status.returncode == 0:
        return
    log("WARN", "Necessary packages are missing, installing...")
    try:
        result = runner(privileged(["apt-get", "install", "-y", *packages]), check=False)
    except OSError as exc:
        raise PackageError(f"Failed to execute package installer: {exc}") from exc
    if result.returncode != 0:
        raise PackageError(f"Failed to install necessary packages: {' '.join(packages)}")
