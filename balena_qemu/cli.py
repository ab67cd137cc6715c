"""CLI entry points for balena-qemu-runner."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from balena_qemu.config import load_ssh_target, parse_config
from balena_qemu.exceptions import ManagerError
from balena_qemu.launcher import validate_image
from balena_qemu.lifecycle import LifecycleController
from balena_qemu.models import InstanceConfig, StartResult
from balena_qemu.packages import ensure_packages
from balena_qemu.ssh import RemoteShell
from balena_qemu.utils import get_env_bool, log

EPILOG = """\
Example:
  balena-qemu --image <path_to_image> --bridge
  balena-qemu --stop 22400
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="balena-qemu",
        description="Run BalenaOS QEMU images in the background and report how to reach them",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-i", "--image", help="Path to the qemu image [mandatory unless --stop]")
    parser.add_argument(
        "-B",
        "--bridge",
        action="store_true",
        help="Connect the device to a bridge network with a unique MAC address "
        "(creates the default bridge network if it does not exist)",
    )
    parser.add_argument(
        "-P",
        "--port_forward",
        nargs=2,
        action="append",
        default=[],
        metavar=("HOST_PORT", "GUEST_PORT"),
        help="Forward an extra host port to the guest (e.g. --port_forward 8080 80); repeatable",
    )
    parser.add_argument("-R", "--ram", type=int, help="Initial amount of guest memory in MiB")
    parser.add_argument("--max_ram", type=int, help="Maximum amount of guest memory in MiB (default: none)")
    parser.add_argument("-C", "--cpu", type=int, help="Number of CPUs")
    parser.add_argument("-s", "--stop", type=int, metavar="PORT", help="Stop the QEMU device by its assigned ssh port")
    parser.add_argument("--config", type=Path, help="YAML file with default settings")
    return parser


def print_access_info(cfg: InstanceConfig, result: StartResult) -> None:
    if result.bridge_ip and not result.guest_ip:
        log("WARN", "Device is running without a discovered bridge IP")
    log("INFO", "You can use this command to ssh the device:")
    log("INFO", f"ssh -p {result.port} {cfg.ssh_user}@{cfg.ssh_host}")
    if result.guest_ip:
        log("INFO", f"or over the bridge: ssh -p 22222 {cfg.ssh_user}@{result.guest_ip}")
    log("INFO", f"Stop it with: balena-qemu --stop {result.port}")


def stop_device(port: int, config_path: Optional[Path] = None) -> int:
    """Send the shutdown command to the device on *port*; instance settings are not consulted."""
    try:
        user, host = load_ssh_target(config_path)
        LifecycleController(shell=RemoteShell(user=user, host=host)).stop(port)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return exc.exit_code
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        # argparse exits 0 for --help and 2 for bad usage; usage errors map to 1.
        return 0 if exc.code == 0 else 1

    if args.stop is not None:
        return stop_device(args.stop, args.config)

    try:
        cfg = parse_config(
            image=args.image,
            bridge=args.bridge,
            ram=args.ram,
            max_ram=args.max_ram,
            cpus=args.cpu,
            port_forwards=args.port_forward,
            config_path=args.config,
        )
    except ManagerError as exc:
        log("ERROR", str(exc))
        return exc.exit_code

    if cfg.image_path is None:
        log(
            "ERROR",
            "Providing a QEMU image is mandatory, use the --image flag "
            "(images can be downloaded from your balenaCloud dashboard)",
        )
        parser.print_usage()
        return 1

    try:
        validate_image(cfg.image_path)
        if not get_env_bool("SKIP_PACKAGE_CHECK", False):
            ensure_packages()
        result = LifecycleController(cfg).start()
    except ManagerError as exc:
        log("ERROR", f"{exc.stage.capitalize()} failed: {exc}")
        return exc.exit_code

    print_access_info(cfg, result)
    return 0
