from pathlib import Path

from turbine.config import ContainerConfig
from turbine.container import Container, ContainerRegistry, ContainerState


def _container(name: str = "web") -> Container:
    return Container(ContainerConfig(name=name, image="/images/web"))


def test_new_container_defaults():
    container = _container()
    assert container.state is ContainerState.CREATED
    assert container.pid is None
    assert container.root_path == Path("/tmp/turbine") / container.id
    assert container.started_at is None
    assert container.stopped_at is None
    assert not container.is_running()
    assert not container.is_stopped()


def test_ids_are_unique():
    ids = {_container().id for _ in range(20)}
    assert len(ids) == 20


def test_running_sets_started_and_clears_stopped():
    container = _container()
    container.set_state(ContainerState.STOPPED)
    container.set_state(ContainerState.RUNNING)
    assert container.is_running()
    assert container.started_at is not None
    assert container.stopped_at is None
    assert container.started_at >= container.created_at


def test_stopped_clears_pid():
    container = _container()
    container.pid = 4321
    container.set_state(ContainerState.RUNNING)
    assert container.pid == 4321
    container.set_state(ContainerState.STOPPED)
    assert container.is_stopped()
    assert container.pid is None
    assert container.stopped_at is not None


def test_paused_keeps_timestamps():
    container = _container()
    container.set_state(ContainerState.RUNNING)
    started = container.started_at
    container.set_state(ContainerState.PAUSED)
    assert container.state is ContainerState.PAUSED
    assert container.started_at == started
    assert not container.is_running()


def test_error_state_message():
    container = _container()
    container.set_state(ContainerState.ERROR, "spawn failed")
    assert container.state is ContainerState.ERROR
    assert container.error_message == "spawn failed"
    container.set_state(ContainerState.CREATED)
    assert container.error_message is None


def test_registry_register_and_get():
    registry = ContainerRegistry()
    container = _container()
    registry.register(container)
    assert registry.get(container.id) is container
    assert container.id in registry
    assert len(registry) == 1
    assert registry.get("missing") is None


def test_registry_remove():
    registry = ContainerRegistry()
    container = _container()
    registry.register(container)
    assert registry.remove(container.id) is container
    assert registry.remove(container.id) is None
    assert registry.list() == []


def test_registry_find_by_name():
    registry = ContainerRegistry()
    web, db = _container("web"), _container("db")
    registry.register(web)
    registry.register(db)
    assert registry.find_by_name("db") is db
    assert registry.find_by_name("cache") is None


def test_registry_find_running():
    registry = ContainerRegistry()
    running, idle = _container("a"), _container("b")
    running.set_state(ContainerState.RUNNING)
    registry.register(running)
    registry.register(idle)
    assert registry.find_running() == [running]
    assert {c.id for c in registry.list()} == {running.id, idle.id}