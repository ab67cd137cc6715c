"""balena-qemu-runner package."""

__all__ = [
    "bridge",
    "cli",
    "config",
    "constants",
    "exceptions",
    "host",
    "identity",
    "launcher",
    "lifecycle",
    "models",
    "network",
    "packages",
    "ports",
    "readiness",
    "ssh",
    "utils",
]
