# turbine

Building blocks for a lightweight Linux container runtime aimed at web
applications.

- **Configuration** (`turbine.config`): `ContainerConfig` with ports
  (`PortMapping`), volumes (`VolumeMount`), resource limits
  (`ResourceLimits`), network settings (`NetworkSettings`), user and group
  settings and a `RestartPolicy`. `validate()` checks a configuration;
  `set_web_defaults(port)`, `set_user(...)`, `set_root_user()`,
  `set_nobody_user()` and `add_groups(...)` adjust it. Configurations convert
  to and from plain dicts (`to_dict` / `from_dict`) and TOML files
  (`to_file` / `from_file`).
- **Containers** (`turbine.container`): `Container` records with a generated
  id, a root path under `/tmp/turbine/<id>`, a lifecycle `ContainerState` and
  timestamps that `set_state` keeps up to date. A `ContainerRegistry` stores
  them by id and can find them by name or list the running ones.
- **Networking** (`turbine.network`): `NetworkConfig` describes an IPv4,
  IPv6 or dual-stack subnet (`NetworkConfig.ipv4`, `.ipv6`, `.dual_stack`).
  `NetworkManager` sets up and removes a Linux bridge, allocates addresses
  from the subnet, creates veth pairs and installs iptables/ip6tables DNAT
  port forwards. The command runner can be replaced by passing `runner=`.
- **Processes** (`turbine.process`): `ProcessManager` starts a container's
  command under `unshare` and `chroot` (asyncio subprocesses), stops it with
  SIGTERM and a timeout or kills it, pauses and resumes it with SIGSTOP and
  SIGCONT, collects the output of a process that has exited
  (`container_logs`) and runs commands inside a container with `nsenter`
  (`execute_in_container`). The process launcher can be replaced by passing
  `launcher=`.
- **Security** (`turbine.security`): `SecurityManager` checks users,
  volumes, resource limits, ports and image paths, returns a cleaned copy of
  an environment (`sanitize_environment`), and can apply resource limits and
  switch user in the current process.

Failures raise subclasses of `turbine.errors.TurbineError`: `ConfigError`,
`ContainerError`, `NetworkError`, `FilesystemError`, `ProcessError`,
`SecurityError`, `TurbineRuntimeError` and `SerializationError` (for TOML
that cannot be read or written).

## Installation

```
pip install .
```

The network and process parts run `ip`, `iptables`, `ip6tables`, `unshare`,
`nsenter` and `chroot`, and need a Linux host with enough privileges to use
them.

## Example

```python
from turbine.config import ContainerConfig
from turbine.container import Container, ContainerRegistry
from turbine.security import SecurityManager

config = ContainerConfig(name="web", image="/srv/images/web")
config.set_web_defaults(8080)
config.validate()

security = SecurityManager()
security.validate_image_security(config.image)
config.environment = security.sanitize_environment(config.environment)

registry = ContainerRegistry()
container = Container(config)
registry.register(container)
print(registry.find_by_name("web").id)

config.to_file("web.toml")
same = ContainerConfig.from_file("web.toml")
```

A `ContainerConfig` TOML file looks like this. Every key shown is required
except `working_dir`, the `resources` values and `network.bridge` /
`network.hostname`; `user`, `uid`, `gid` and `groups` may be added.

```toml
name = "web"
image = "/srv/images/web"
command = ["/bin/sh"]
working_dir = "/app"
volumes = []
restart_policy = "Always"

[environment]
PORT = "8080"

[[ports]]
host_port = 8080
container_port = 8080
protocol = "tcp"

[resources]
memory_mb = 256
cpu_quota = 0.5

[network]
dns = ["8.8.8.8", "8.8.4.4"]
```

## What this package does not do

It is a library of separate managers, not a finished runtime. There is no
command-line tool and no single runtime object that ties configuration,
security checks, networking and processes together into create / start /
stop / remove operations; your code calls the managers itself. It does not
prepare container root filesystems or mount volumes, does not persist the
registry between runs, and does not report memory or CPU statistics.

## Running the tests

```
pip install .[test]
pytest
```