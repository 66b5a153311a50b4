"""Container configuration and its TOML representation."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, TypeVar

import tomli_w

from .errors import ConfigError, SerializationError

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFF_FFFF
_U64_MAX = 0xFFFF_FFFF_FFFF_FFFF

_T = TypeVar("_T")


class RestartPolicy(Enum):
    """What to do when a container's process exits."""

    NEVER = "Never"
    ALWAYS = "Always"
    ON_FAILURE = "OnFailure"
    UNLESS_STOPPED = "UnlessStopped"


def _bad(message: str) -> SerializationError:
    return SerializationError(message, reading=True)


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    if key not in data:
        raise _bad(f"missing field `{key}` in {where}")
    return data[key]


def _table(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise _bad(f"expected a table for {where}")
    return value


def _string(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise _bad(f"expected a string for {where}")
    return value


def _uint(value: Any, limit: int, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _bad(f"expected an integer for {where}")
    if not 0 <= value <= limit:
        raise _bad(f"integer {value} out of range for {where}")
    return value


def _float(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _bad(f"expected a float for {where}")
    return float(value)


def _boolean(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise _bad(f"expected a boolean for {where}")
    return value


def _array(value: Any, where: str) -> list[Any]:
    if not isinstance(value, list):
        raise _bad(f"expected an array for {where}")
    return value


def _optional(data: dict[str, Any], key: str, convert: Callable[[Any], _T]) -> _T | None:
    value = data.get(key)
    return None if value is None else convert(value)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class PortMapping:
    """A host port forwarded to a port inside the container."""

    host_port: int
    container_port: int
    protocol: str = "tcp"

    @classmethod
    def _from_dict(cls, data: Any) -> PortMapping:
        table = _table(data, "port mapping")
        return cls(
            host_port=_uint(_require(table, "host_port", "ports"), _U16_MAX, "host_port"),
            container_port=_uint(
                _require(table, "container_port", "ports"), _U16_MAX, "container_port"
            ),
            protocol=_string(_require(table, "protocol", "ports"), "protocol"),
        )

    def _to_dict(self) -> dict[str, Any]:
        return {
            "host_port": self.host_port,
            "container_port": self.container_port,
            "protocol": self.protocol,
        }


@dataclass
class VolumeMount:
    """A host directory mounted into the container."""

    host_path: Path
    container_path: Path
    readonly: bool = False

    def __post_init__(self) -> None:
        self.host_path = Path(self.host_path)
        self.container_path = Path(self.container_path)

    @classmethod
    def _from_dict(cls, data: Any) -> VolumeMount:
        table = _table(data, "volume mount")
        return cls(
            host_path=Path(_string(_require(table, "host_path", "volumes"), "host_path")),
            container_path=Path(
                _string(_require(table, "container_path", "volumes"), "container_path")
            ),
            readonly=_boolean(_require(table, "readonly", "volumes"), "readonly"),
        )

    def _to_dict(self) -> dict[str, Any]:
        return {
            "host_path": str(self.host_path),
            "container_path": str(self.container_path),
            "readonly": self.readonly,
        }


@dataclass
class ResourceLimits:
    """Resource caps for a container; None means unlimited."""

    memory_mb: int | None = 512
    cpu_quota: float | None = 1.0
    disk_mb: int | None = 1024
    max_processes: int | None = 256

    @classmethod
    def _from_dict(cls, data: Any) -> ResourceLimits:
        table = _table(data, "resources")
        return cls(
            memory_mb=_optional(table, "memory_mb", lambda v: _uint(v, _U64_MAX, "memory_mb")),
            cpu_quota=_optional(table, "cpu_quota", lambda v: _float(v, "cpu_quota")),
            disk_mb=_optional(table, "disk_mb", lambda v: _uint(v, _U64_MAX, "disk_mb")),
            max_processes=_optional(
                table, "max_processes", lambda v: _uint(v, _U32_MAX, "max_processes")
            ),
        )

    def _to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "memory_mb": self.memory_mb,
                "cpu_quota": self.cpu_quota,
                "disk_mb": self.disk_mb,
                "max_processes": self.max_processes,
            }
        )


@dataclass
class NetworkSettings:
    """Per-container network options."""

    bridge: str | None = None
    dns: list[str] = field(default_factory=lambda: ["8.8.8.8", "8.8.4.4"])
    hostname: str | None = None

    @classmethod
    def _from_dict(cls, data: Any) -> NetworkSettings:
        table = _table(data, "network")
        dns = _array(_require(table, "dns", "network"), "dns")
        return cls(
            bridge=_optional(table, "bridge", lambda v: _string(v, "bridge")),
            dns=[_string(entry, "dns") for entry in dns],
            hostname=_optional(table, "hostname", lambda v: _string(v, "hostname")),
        )

    def _to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"bridge": self.bridge, "dns": list(self.dns), "hostname": self.hostname}
        )


@dataclass
class ContainerConfig:
    """Everything needed to create and run a container."""

    name: str = ""
    image: str = ""
    command: list[str] = field(default_factory=lambda: ["/bin/sh"])
    working_dir: str | None = "/app"
    environment: dict[str, str] = field(default_factory=dict)
    ports: list[PortMapping] = field(default_factory=list)
    volumes: list[VolumeMount] = field(default_factory=list)
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    user: str | None = None
    uid: int | None = None
    gid: int | None = None
    groups: list[int] | None = None
    restart_policy: RestartPolicy = RestartPolicy.NEVER

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContainerConfig:
        """Build a configuration from a parsed TOML document."""
        table = _table(data, "container config")
        where = "container config"

        environment = _table(_require(table, "environment", where), "environment")
        policy_name = _string(_require(table, "restart_policy", where), "restart_policy")
        try:
            policy = RestartPolicy(policy_name)
        except ValueError:
            raise _bad(f"unknown variant `{policy_name}` for restart_policy") from None

        return cls(
            name=_string(_require(table, "name", where), "name"),
            image=_string(_require(table, "image", where), "image"),
            command=[
                _string(part, "command")
                for part in _array(_require(table, "command", where), "command")
            ],
            working_dir=_optional(table, "working_dir", lambda v: _string(v, "working_dir")),
            environment={
                _string(key, "environment"): _string(value, "environment")
                for key, value in environment.items()
            },
            ports=[
                PortMapping._from_dict(entry)
                for entry in _array(_require(table, "ports", where), "ports")
            ],
            volumes=[
                VolumeMount._from_dict(entry)
                for entry in _array(_require(table, "volumes", where), "volumes")
            ],
            resources=ResourceLimits._from_dict(_require(table, "resources", where)),
            network=NetworkSettings._from_dict(_require(table, "network", where)),
            user=_optional(table, "user", lambda v: _string(v, "user")),
            uid=_optional(table, "uid", lambda v: _uint(v, _U32_MAX, "uid")),
            gid=_optional(table, "gid", lambda v: _uint(v, _U32_MAX, "gid")),
            groups=_optional(
                table,
                "groups",
                lambda v: [_uint(g, _U32_MAX, "groups") for g in _array(v, "groups")],
            ),
            restart_policy=policy,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration as TOML-ready data; unset options are omitted."""
        return _drop_none(
            {
                "name": self.name,
                "image": self.image,
                "command": list(self.command),
                "working_dir": self.working_dir,
                "environment": dict(self.environment),
                "ports": [port._to_dict() for port in self.ports],
                "volumes": [volume._to_dict() for volume in self.volumes],
                "resources": self.resources._to_dict(),
                "network": self.network._to_dict(),
                "user": self.user,
                "uid": self.uid,
                "gid": self.gid,
                "groups": None if self.groups is None else list(self.groups),
                "restart_policy": self.restart_policy.value,
            }
        )

    @classmethod
    def from_file(cls, path: str | Path) -> ContainerConfig:
        """Load a configuration from a TOML file."""
        content = Path(path).read_text(encoding="utf-8")
        try:
            data = tomllib.loads(content)
        except tomllib.TOMLDecodeError as exc:
            raise _bad(str(exc)) from exc
        return cls.from_dict(data)

    def to_file(self, path: str | Path) -> None:
        """Write the configuration to a TOML file."""
        try:
            content = tomli_w.dumps(self.to_dict())
        except TypeError as exc:
            raise SerializationError(str(exc)) from exc
        Path(path).write_text(content, encoding="utf-8")

    def validate(self) -> None:
        """Raise ConfigError if the configuration cannot be used."""
        if not self.name:
            raise ConfigError("Container name cannot be empty")
        if not self.image:
            raise ConfigError("Container image cannot be empty")
        if any(p.host_port == 0 or p.container_port == 0 for p in self.ports):
            raise ConfigError("Invalid port mapping")
        for volume in self.volumes:
            if not volume.host_path.exists():
                raise ConfigError(f'Host path does not exist: "{volume.host_path}"')
        if self.uid == 0 and self.user is not None and self.user != "root":
            raise ConfigError("UID 0 should only be used with user 'root'")

    def set_web_defaults(self, port: int) -> None:
        """Expose the given host port on 8080 and apply web-app settings."""
        self.ports.append(PortMapping(host_port=port, container_port=8080, protocol="tcp"))
        self.environment["PORT"] = "8080"
        self.environment["NODE_ENV"] = "production"
        self.restart_policy = RestartPolicy.ALWAYS
        if self.resources.memory_mb is None:
            self.resources.memory_mb = 256
        if self.resources.cpu_quota is None:
            self.resources.cpu_quota = 0.5

    def set_user(self, user: str, uid: int | None, gid: int | None) -> None:
        self.user = user
        self.uid = uid
        self.gid = gid

    def set_root_user(self) -> None:
        self.user = "root"
        self.uid = 0
        self.gid = 0
        self.groups = None

    def set_nobody_user(self) -> None:
        self.user = "nobody"
        self.uid = 65534
        self.gid = 65534
        self.groups = None

    def add_groups(self, groups: list[int]) -> None:
        """Add supplementary groups, merging sorted and deduplicated with existing ones."""
        if self.groups is None:
            self.groups = list(groups)
        else:
            self.groups = sorted(set(self.groups).union(groups))