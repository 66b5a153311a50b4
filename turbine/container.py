"""Container records and the in-memory registry that tracks them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from .config import ContainerConfig

_ROOT_BASE = Path("/tmp/turbine")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContainerState(Enum):
    """Lifecycle state of a container."""

    CREATED = "Created"
    RUNNING = "Running"
    STOPPED = "Stopped"
    PAUSED = "Paused"
    ERROR = "Error"


@dataclass
class Container:
    """A container instance built from a configuration."""

    config: ContainerConfig
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: ContainerState = ContainerState.CREATED
    error_message: str | None = None
    pid: int | None = None
    root_path: Path | None = None
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    stopped_at: datetime | None = None

    def __post_init__(self) -> None:
        self.root_path = _ROOT_BASE / self.id if self.root_path is None else Path(self.root_path)

    def is_running(self) -> bool:
        return self.state is ContainerState.RUNNING

    def is_stopped(self) -> bool:
        return self.state is ContainerState.STOPPED

    def set_state(self, state: ContainerState, message: str | None = None) -> None:
        """Move to a new state, updating timestamps and the process id."""
        if state is ContainerState.RUNNING:
            self.started_at = _now()
            self.stopped_at = None
        elif state is ContainerState.STOPPED:
            self.stopped_at = _now()
            self.pid = None
        self.error_message = (message or "") if state is ContainerState.ERROR else None
        self.state = state


class ContainerRegistry:
    """Containers indexed by id."""

    def __init__(self) -> None:
        self._containers: dict[str, Container] = {}

    def __len__(self) -> int:
        return len(self._containers)

    def __contains__(self, container_id: object) -> bool:
        return container_id in self._containers

    def register(self, container: Container) -> None:
        self._containers[container.id] = container

    def get(self, container_id: str) -> Container | None:
        return self._containers.get(container_id)

    def remove(self, container_id: str) -> Container | None:
        return self._containers.pop(container_id, None)

    def list(self) -> list[Container]:
        return list(self._containers.values())

    def find_by_name(self, name: str) -> Container | None:
        return next((c for c in self._containers.values() if c.config.name == name), None)

    def find_running(self) -> list[Container]:
        return [c for c in self._containers.values() if c.is_running()]