from pathlib import Path

import pytest

from turbine.config import (
    ContainerConfig,
    NetworkSettings,
    PortMapping,
    ResourceLimits,
    RestartPolicy,
    VolumeMount,
)
from turbine.errors import ConfigError, SerializationError


def _valid() -> ContainerConfig:
    return ContainerConfig(name="web", image="/images/web")


def test_defaults():
    config = ContainerConfig()
    assert config.command == ["/bin/sh"]
    assert config.working_dir == "/app"
    assert config.restart_policy is RestartPolicy.NEVER
    assert config.resources == ResourceLimits(512, 1.0, 1024, 256)
    assert config.network.dns == ["8.8.8.8", "8.8.4.4"]
    assert config.network.bridge is None


def test_validate_accepts_valid_config():
    config = _valid()
    config.validate()
    assert config.name == "web"


def test_validate_empty_name():
    with pytest.raises(ConfigError, match="Container name cannot be empty"):
        ContainerConfig(image="/images/web").validate()


def test_validate_empty_image():
    with pytest.raises(ConfigError, match="Container image cannot be empty"):
        ContainerConfig(name="web").validate()


@pytest.mark.parametrize(("host", "inner"), [(0, 80), (80, 0)])
def test_validate_zero_port(host, inner):
    config = _valid()
    config.ports.append(PortMapping(host, inner))
    with pytest.raises(ConfigError, match="Invalid port mapping"):
        config.validate()


def test_validate_missing_host_path(tmp_path):
    config = _valid()
    missing = tmp_path / "absent"
    config.volumes.append(VolumeMount(missing, "/data"))
    with pytest.raises(ConfigError, match="Host path does not exist"):
        config.validate()


def test_validate_existing_host_path(tmp_path):
    config = _valid()
    config.volumes.append(VolumeMount(tmp_path, "/data", readonly=True))
    config.validate()
    assert config.volumes[0].host_path == tmp_path


def test_validate_uid_zero_non_root():
    config = _valid()
    config.set_user("alice", 0, 0)
    with pytest.raises(ConfigError, match="UID 0 should only be used with user 'root'"):
        config.validate()


def test_validate_uid_zero_root_allowed():
    config = _valid()
    config.set_root_user()
    config.validate()
    assert (config.user, config.uid, config.gid) == ("root", 0, 0)


def test_set_web_defaults():
    config = _valid()
    config.resources = ResourceLimits(None, None, None, None)
    config.set_web_defaults(3000)
    assert config.ports == [PortMapping(3000, 8080, "tcp")]
    assert config.environment == {"PORT": "8080", "NODE_ENV": "production"}
    assert config.restart_policy is RestartPolicy.ALWAYS
    assert config.resources.memory_mb == 256
    assert config.resources.cpu_quota == 0.5


def test_set_web_defaults_keeps_existing_limits():
    config = _valid()
    config.set_web_defaults(3000)
    assert config.resources.memory_mb == 512
    assert config.resources.cpu_quota == 1.0


def test_nobody_user_clears_groups():
    config = _valid()
    config.add_groups([10])
    config.set_nobody_user()
    assert (config.user, config.uid, config.gid, config.groups) == (
        "nobody",
        65534,
        65534,
        None,
    )


def test_add_groups_first_time_keeps_order():
    config = _valid()
    config.add_groups([30, 10, 30])
    assert config.groups == [30, 10, 30]


def test_add_groups_merges_sorted_unique():
    config = _valid()
    config.add_groups([30, 10])
    config.add_groups([20, 10, 5])
    assert config.groups == sorted(set(config.groups))
    assert set(config.groups) == {5, 10, 20, 30}


def test_to_dict_omits_unset_options():
    data = _valid().to_dict()
    assert "user" not in data
    assert "uid" not in data
    assert data["restart_policy"] == "Never"
    assert "bridge" not in data["network"]


def test_restart_policy_names():
    config = _valid()
    config.restart_policy = RestartPolicy.ON_FAILURE
    assert config.to_dict()["restart_policy"] == "OnFailure"
    assert RestartPolicy("UnlessStopped") is RestartPolicy.UNLESS_STOPPED


def test_file_round_trip(tmp_path):
    config = _valid()
    config.environment["KEY"] = "value"
    config.ports.append(PortMapping(9000, 8080, "udp"))
    config.volumes.append(VolumeMount(tmp_path, "/data", readonly=True))
    config.network = NetworkSettings(bridge="br0", dns=["1.1.1.1"], hostname="box")
    config.set_user("turbine", 1000, 1000)
    config.add_groups([4, 2])
    config.resources.disk_mb = None
    config.restart_policy = RestartPolicy.UNLESS_STOPPED

    path = tmp_path / "container.toml"
    config.to_file(path)
    loaded = ContainerConfig.from_file(path)
    assert loaded == config
    assert loaded.resources.disk_mb is None


def test_dict_round_trip():
    config = _valid()
    config.working_dir = None
    assert ContainerConfig.from_dict(config.to_dict()) == config


def test_from_dict_missing_required_field():
    data = _valid().to_dict()
    del data["command"]
    with pytest.raises(SerializationError, match="command"):
        ContainerConfig.from_dict(data)


def test_from_dict_port_out_of_range():
    data = _valid().to_dict()
    data["ports"] = [{"host_port": 70000, "container_port": 80, "protocol": "tcp"}]
    with pytest.raises(SerializationError):
        ContainerConfig.from_dict(data)


def test_from_dict_unknown_policy():
    data = _valid().to_dict()
    data["restart_policy"] = "Sometimes"
    with pytest.raises(SerializationError, match="Sometimes"):
        ContainerConfig.from_dict(data)


def test_from_file_bad_toml(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("name = [", encoding="utf-8")
    with pytest.raises(SerializationError) as info:
        ContainerConfig.from_file(path)
    assert info.value.reading is True


def test_from_file_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ContainerConfig.from_file(Path(tmp_path) / "nope.toml")