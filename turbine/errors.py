"""Exception hierarchy shared by every part of the runtime."""

from __future__ import annotations


class TurbineError(Exception):
    """Base class for every error the runtime raises."""

    prefix = "Turbine error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.prefix}: {self.message}"


class ConfigError(TurbineError):
    """A container configuration is invalid."""

    prefix = "Configuration error"


class ContainerError(TurbineError):
    """A container is missing or in the wrong state for a request."""

    prefix = "Container error"


class NetworkError(TurbineError):
    """Bridge, interface or port forwarding setup failed."""

    prefix = "Network error"


class FilesystemError(TurbineError):
    """Preparing or removing a container filesystem failed."""

    prefix = "Filesystem error"


class ProcessError(TurbineError):
    """Starting, signalling or inspecting a container process failed."""

    prefix = "Process error"


class SecurityError(TurbineError):
    """A container request violates the security policy."""

    prefix = "Security error"


class TurbineRuntimeError(TurbineError):
    """A general failure inside the runtime."""

    prefix = "Runtime error"


class SerializationError(TurbineError):
    """Reading or writing a TOML document failed."""

    def __init__(self, message: str, *, reading: bool = False) -> None:
        super().__init__(message)
        self.reading = reading

    @property
    def prefix(self) -> str:  # type: ignore[override]
        kind = "deserialization" if self.reading else "serialization"
        return f"TOML {kind} error"