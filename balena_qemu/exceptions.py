"""Custom exceptions for balena-qemu-runner."""


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""

    stage = "runtime"
    exit_code = 1


class ConfigError(ManagerError):
    stage = "configuration"
    exit_code = 1


class PackageError(ManagerError):
    stage = "package check"
    exit_code = 2


class NoFreePortError(ManagerError):
    stage = "port allocation"
    exit_code = 3


class BridgeSetupError(ManagerError):
    stage = "bridge setup"
    exit_code = 4


class LaunchError(ManagerError):
    stage = "launch"
    exit_code = 5


class ReadinessTimeout(ManagerError):
    stage = "readiness"
    exit_code = 6


class ShutdownError(ManagerError):
    stage = "shutdown"
    exit_code = 7


class UnresolvedError(ManagerError):
    """Guest IP could not be discovered; the instance is still usable."""

    stage = "guest identity"
