"""Security policy checks and process hardening for containers."""

from __future__ import annotations

import grp
import os
import pwd
import resource
from pathlib import Path
from typing import Iterable, Mapping

from .config import ResourceLimits, VolumeMount
from .container import Container
from .errors import SecurityError

_DEFAULT_ALLOWED_USERS = ("turbine",)
_DEFAULT_RESTRICTED_PATHS = ("/etc/passwd", "/etc/shadow", "/etc/group", "/proc", "/sys")
_SYSTEM_PATHS = ("/etc", "/usr", "/lib", "/bin", "/sbin", "/boot")
_DANGEROUS_VARS = ("LD_PRELOAD", "LD_LIBRARY_PATH", "PATH")
_DANGEROUS_FRAGMENTS = ("..", "/etc", "/usr")

_MAX_MEMORY_MB = 4096
_MAX_CPU_QUOTA = 2.0
_MAX_PROCESSES = 1024
_WEB_PORT = 8080
_PRIVILEGED_PORT_LIMIT = 1024

_SENSITIVE_DIRS = ("proc", "sys", "dev")


class SecurityManager:
    """Enforces the rules a container must follow to be created and started."""

    def __init__(
        self,
        allowed_users: Iterable[str] | None = None,
        restricted_paths: Iterable[str] | None = None,
    ) -> None:
        self.allowed_users = list(
            _DEFAULT_ALLOWED_USERS if allowed_users is None else allowed_users
        )
        self.restricted_paths = list(
            _DEFAULT_RESTRICTED_PATHS if restricted_paths is None else restricted_paths
        )

    def validate_container_security(self, container: Container) -> None:
        config = container.config
        self.validate_user(config.user)
        self.validate_volumes(config.volumes)
        self.validate_resource_limits(config.resources)
        self.validate_network_security(container)

    def validate_user(self, user: str | None) -> None:
        """Only allowed, existing, non-root users may run containers."""
        if user is None:
            return
        if user == "root":
            raise SecurityError("Running containers as root is not allowed")
        if user not in self.allowed_users:
            raise SecurityError(f"User '{user}' is not allowed to run containers")
        try:
            pwd.getpwnam(user)
        except KeyError:
            raise SecurityError(f"User '{user}' does not exist") from None

    def validate_volumes(self, volumes: Iterable[VolumeMount]) -> None:
        for volume in volumes:
            host = str(volume.host_path)
            if any(host.startswith(restricted) for restricted in self.restricted_paths):
                raise SecurityError(f"Access to path '{host}' is restricted")
            if not volume.readonly and self.is_system_path(volume.host_path):
                raise SecurityError(f"Write access to system path '{host}' is not allowed")
            self._validate_path_permissions(Path(volume.host_path))

    @staticmethod
    def _validate_path_permissions(path: Path) -> None:
        try:
            mode = path.stat().st_mode
        except OSError as exc:
            raise SecurityError(f'Cannot access path "{path}": {exc}') from exc
        if mode & 0o002:
            raise SecurityError(f'Path "{path}" is world-writable, which is not allowed')

    def validate_resource_limits(self, resources: ResourceLimits) -> None:
        if resources.memory_mb is not None and resources.memory_mb > _MAX_MEMORY_MB:
            raise SecurityError("Memory limit cannot exceed 4GB")
        if resources.cpu_quota is not None and resources.cpu_quota > _MAX_CPU_QUOTA:
            raise SecurityError("CPU quota cannot exceed 2.0")
        if resources.max_processes is not None and resources.max_processes > _MAX_PROCESSES:
            raise SecurityError("Process limit cannot exceed 1024")

    def validate_network_security(self, container: Container) -> None:
        for port in container.config.ports:
            if port.host_port < _PRIVILEGED_PORT_LIMIT and port.host_port != _WEB_PORT:
                raise SecurityError(f"Privileged port {port.host_port} is not allowed")
            if (
                port.container_port < _PRIVILEGED_PORT_LIMIT
                and port.container_port != _WEB_PORT
            ):
                raise SecurityError(
                    f"Privileged container port {port.container_port} is not allowed"
                )

    def is_system_path(self, path: str | os.PathLike[str]) -> bool:
        text = os.fspath(path)
        return any(text.startswith(system) for system in _SYSTEM_PATHS)

    def apply_resource_limits(self, resources: ResourceLimits) -> None:
        """Apply the limits to the current process."""
        limits = (
            (resource.RLIMIT_AS, resources.memory_mb, True, "memory"),
            (resource.RLIMIT_NPROC, resources.max_processes, False, "process"),
            (resource.RLIMIT_FSIZE, resources.disk_mb, True, "disk"),
        )
        for kind, value, in_megabytes, label in limits:
            if value is None:
                continue
            amount = value * 1024 * 1024 if in_megabytes else value
            try:
                resource.setrlimit(kind, (amount, amount))
            except (ValueError, OSError) as exc:
                raise SecurityError(f"Failed to set {label} limit: {exc}") from exc

    def setup_container_user(self, container: Container) -> None:
        """Switch the current process to the container's user and group."""
        username = container.config.user
        if username is None:
            return
        try:
            user = pwd.getpwnam(username)
        except KeyError:
            raise SecurityError(f"User '{username}' not found") from None
        try:
            os.setuid(user.pw_uid)
        except OSError as exc:
            raise SecurityError(f"Failed to set UID: {exc}") from exc
        try:
            group = grp.getgrnam(username)
        except KeyError:
            return
        try:
            os.setgid(group.gr_gid)
        except OSError as exc:
            raise SecurityError(f"Failed to set GID: {exc}") from exc

    def create_secure_environment(self, container: Container) -> None:
        self.setup_container_user(container)
        self.apply_resource_limits(container.config.resources)
        self._setup_secure_filesystem(container)

    @staticmethod
    def _setup_secure_filesystem(container: Container) -> None:
        root = Path(container.root_path)
        for name in _SENSITIVE_DIRS:
            path = root / name
            if path.exists():
                path.chmod(0o555)
        tmp = root / "tmp"
        if tmp.exists():
            tmp.chmod(0o1777)

    def validate_image_security(self, image_path: str) -> None:
        if ".." in image_path:
            raise SecurityError("Image path contains directory traversal")
        if not image_path.startswith(("/", "./")):
            raise SecurityError("Image path must be absolute or relative to current directory")

    def sanitize_environment(self, env: Mapping[str, str]) -> dict[str, str]:
        """Return a copy of env without unsafe overrides and with runtime markers set."""
        cleaned = dict(env)
        for name in _DANGEROUS_VARS:
            value = cleaned.get(name)
            if value is not None and any(part in value for part in _DANGEROUS_FRAGMENTS):
                del cleaned[name]
        cleaned["TURBINE_CONTAINER"] = "true"
        cleaned["HOME"] = "/app"
        return cleaned