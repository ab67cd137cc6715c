"""Configuration loading and environment variable parsing for balena-qemu-runner."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from balena_qemu.constants import (
    BRIDGE_NAME,
    BRIDGE_NETWORK,
    CONFIG_ENV_VAR,
    CPU_OPT,
    DEFAULT_CONFIG_PATH,
    END_SSH_PORT,
    INIT_RAM_MB,
    KVM_CPU_OPT,
    KVM_MACHINE_OPT,
    MACHINE_OPT,
    NUM_OF_CPUS,
    READY_INTERVAL,
    READY_TIMEOUT,
    SSH_HOST,
    SSH_USER,
    START_SSH_PORT,
    TRUTHY,
    VIRT_CPU_FLAGS,
)
from balena_qemu.exceptions import ConfigError
from balena_qemu.models import InstanceConfig, PortForward
from balena_qemu.utils import get_cpu_flags, get_env, kvm_available, log, parse_int


def load_config_file(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the optional YAML defaults file; a missing default location is not an error."""
    explicit = config_path is not None
    if config_path is None:
        env_path = get_env(CONFIG_ENV_VAR)
        explicit = bool(env_path)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file missing: {config_path}")
        return {}
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"{config_path} contains invalid YAML: {exc}")
    except OSError as exc:
        raise ConfigError(f"Cannot read {config_path}: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a YAML mapping, got {type(data).__name__}")
    return data


def load_ssh_target(config_path: Optional[Path] = None) -> Tuple[str, str]:
    """Return the (user, host) used to reach guests; only the YAML file may override them."""
    data = load_config_file(config_path)
    return str(data.get("ssh_user") or SSH_USER), str(data.get("ssh_host") or SSH_HOST)


def select_machine_profile() -> Tuple[str, str]:
    """Return (machine option, CPU model) for the host's acceleration support."""
    if kvm_available():
        return KVM_MACHINE_OPT, KVM_CPU_OPT
    if get_cpu_flags() & VIRT_CPU_FLAGS:
        log("WARN", "CPU supports virtualization but /dev/kvm is not usable; falling back to TCG")
    return MACHINE_OPT, CPU_OPT


def parse_port_forward(raw: Any) -> PortForward:
    """Accept "HOST:GUEST", [HOST, GUEST] or {"host": H, "guest": G}."""
    if isinstance(raw, dict):
        host, guest = raw.get("host"), raw.get("guest")
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        host, guest = raw
    elif isinstance(raw, str) and ":" in raw:
        host, guest = raw.split(":", 1)
    else:
        raise ConfigError(f"Invalid port forward '{raw}'. Expected HOST:GUEST")
    return PortForward(
        parse_int("port_forward host port", host, max_val=65535),
        parse_int("port_forward guest port", guest, max_val=65535),
    )


def _pick(cli_value: Any, env_name: str, file_data: Dict[str, Any], key: str, default: Any) -> Any:
    if cli_value is not None:
        return cli_value
    env_value = get_env(env_name)
    if env_value is not None and env_value.strip():
        return env_value.strip()
    if file_data.get(key) is not None:
        return file_data[key]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def parse_config(
    image: Optional[str] = None,
    bridge: Optional[bool] = None,
    ram: Optional[int] = None,
    max_ram: Optional[int] = None,
    cpus: Optional[int] = None,
    port_forwards: Iterable[Any] = (),
    config_path: Optional[Path] = None,
) -> InstanceConfig:
    """Resolve CLI values, environment, YAML file and defaults into one InstanceConfig."""
    data = load_config_file(config_path)

    image_raw = _pick(image, "QEMU_IMAGE", data, "image", None)
    image_path = Path(str(image_raw)).expanduser() if image_raw else None

    memory_mb = parse_int("ram", _pick(ram, "QEMU_RAM", data, "ram", INIT_RAM_MB))
    max_raw = _pick(max_ram, "QEMU_MAX_RAM", data, "max_ram", None)
    max_memory_mb = parse_int("max_ram", max_raw) if max_raw is not None else None
    if max_memory_mb is not None and max_memory_mb < memory_mb:
        raise ConfigError(f"max_ram ({max_memory_mb}) must be >= ram ({memory_mb})")
    cpu_count = parse_int("cpu", _pick(cpus, "QEMU_CPUS", data, "cpus", NUM_OF_CPUS))
    bridge_enabled = _as_bool(_pick(bridge or None, "QEMU_BRIDGE", data, "bridge", False))

    range_data = data.get("port_range") or {}
    if not isinstance(range_data, dict):
        raise ConfigError("port_range must be a mapping with 'start' and 'end'")
    port_start = parse_int(
        "SSH_PORT_START", _pick(None, "SSH_PORT_START", range_data, "start", START_SSH_PORT), max_val=65535
    )
    port_end = parse_int("SSH_PORT_END", _pick(None, "SSH_PORT_END", range_data, "end", END_SSH_PORT), max_val=65535)
    if port_end < port_start:
        raise ConfigError(f"SSH port range is empty ({port_start}-{port_end})")

    forwards: List[PortForward] = [parse_port_forward(pf) for pf in (data.get("port_forwards") or [])]
    forwards.extend(parse_port_forward(pf) for pf in port_forwards)
    for pf in forwards:
        if port_start <= pf.host_port <= port_end:
            log("WARN", f"Port forward host port {pf.host_port} overlaps the SSH port range")

    ready_timeout = parse_int("READY_TIMEOUT", _pick(None, "READY_TIMEOUT", data, "ready_timeout", READY_TIMEOUT))
    ready_interval = parse_int(
        "READY_INTERVAL", _pick(None, "READY_INTERVAL", data, "ready_interval", READY_INTERVAL)
    )

    machine_opt, cpu_model = select_machine_profile()

    return InstanceConfig(
        image_path=image_path,
        memory_mb=memory_mb,
        max_memory_mb=max_memory_mb,
        cpus=cpu_count,
        machine_opt=machine_opt,
        cpu_model=cpu_model,
        bridge_enabled=bridge_enabled,
        port_range=(port_start, port_end),
        port_forwards=tuple(forwards),
        bridge_name=str(_pick(None, "BRIDGE_NAME", data, "bridge_name", BRIDGE_NAME)),
        bridge_network=str(_pick(None, "BRIDGE_NETWORK", data, "bridge_network", BRIDGE_NETWORK)),
        ssh_user=str(data.get("ssh_user") or SSH_USER),
        ssh_host=str(data.get("ssh_host") or SSH_HOST),
        ready_timeout=ready_timeout,
        ready_interval=ready_interval,
    )
