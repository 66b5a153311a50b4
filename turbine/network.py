"""Bridge networking, address allocation and port forwarding for containers."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Callable, Sequence

from .container import Container
from .errors import NetworkError

IPAddress = IPv4Address | IPv6Address
Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[bytes]"]

_log = logging.getLogger(__name__)

_DEFAULT_IPV4_PREFIX = 24
_DEFAULT_IPV6_PREFIX = 64


def _run_command(args: Sequence[str]) -> subprocess.CompletedProcess[bytes]:
    return subprocess.run(list(args), capture_output=True, check=False)


def _stderr(result: subprocess.CompletedProcess[bytes]) -> str:
    err = result.stderr or b""
    if isinstance(err, bytes):
        return err.decode("utf-8", errors="replace")
    return str(err)


def _ipv4_bridge(subnet: IPv4Address, prefix: int) -> str:
    octets = subnet.packed
    return f"{octets[0]}.{octets[1]}.{octets[2]}.1/{prefix}"


def _ipv6_bridge(subnet: IPv6Address, prefix: int) -> str:
    value = int(subnet)
    segments = [(value >> (16 * (7 - i))) & 0xFFFF for i in range(7)]
    return ":".join(f"{segment:x}" for segment in segments) + f":1/{prefix}"


@dataclass(frozen=True)
class NetworkConfig:
    """Address families and subnets served by the container bridge."""

    ipv4_subnet: IPv4Address | None = IPv4Address("172.17.0.0")
    ipv4_prefix: int = _DEFAULT_IPV4_PREFIX
    ipv6_subnet: IPv6Address | None = None
    ipv6_prefix: int = _DEFAULT_IPV6_PREFIX

    def __post_init__(self) -> None:
        if self.ipv4_subnet is None and self.ipv6_subnet is None:
            raise ValueError("a network needs an IPv4 or an IPv6 subnet")
        if self.ipv4_subnet is not None:
            object.__setattr__(self, "ipv4_subnet", IPv4Address(self.ipv4_subnet))
        if self.ipv6_subnet is not None:
            object.__setattr__(self, "ipv6_subnet", IPv6Address(self.ipv6_subnet))

    @classmethod
    def ipv4(cls, subnet: str | IPv4Address, prefix: int = _DEFAULT_IPV4_PREFIX) -> NetworkConfig:
        return cls(ipv4_subnet=IPv4Address(subnet), ipv4_prefix=prefix)

    @classmethod
    def ipv6(cls, subnet: str | IPv6Address, prefix: int = _DEFAULT_IPV6_PREFIX) -> NetworkConfig:
        return cls(ipv4_subnet=None, ipv6_subnet=IPv6Address(subnet), ipv6_prefix=prefix)

    @classmethod
    def dual_stack(
        cls,
        ipv4_subnet: str | IPv4Address,
        ipv4_prefix: int,
        ipv6_subnet: str | IPv6Address,
        ipv6_prefix: int,
    ) -> NetworkConfig:
        return cls(
            ipv4_subnet=IPv4Address(ipv4_subnet),
            ipv4_prefix=ipv4_prefix,
            ipv6_subnet=IPv6Address(ipv6_subnet),
            ipv6_prefix=ipv6_prefix,
        )

    @property
    def has_ipv4(self) -> bool:
        return self.ipv4_subnet is not None

    @property
    def has_ipv6(self) -> bool:
        return self.ipv6_subnet is not None

    def bridge_addresses(self) -> list[str]:
        """Addresses with prefix given to the bridge, IPv4 first."""
        addresses = []
        if self.ipv4_subnet is not None:
            addresses.append(_ipv4_bridge(self.ipv4_subnet, self.ipv4_prefix))
        if self.ipv6_subnet is not None:
            addresses.append(_ipv6_bridge(self.ipv6_subnet, self.ipv6_prefix))
        return addresses


class NetworkManager:
    """Manages the host bridge and per-container interfaces and port forwards."""

    def __init__(
        self,
        bridge_name: str,
        config: NetworkConfig | None = None,
        runner: Runner | None = None,
    ) -> None:
        self.bridge_name = bridge_name
        self._config = config if config is not None else NetworkConfig()
        self._run = runner if runner is not None else _run_command
        self._allocated: dict[str, list[IPAddress]] = {}
        self._port_mappings: dict[int, str] = {}

    @property
    def network_config(self) -> NetworkConfig:
        return self._config

    @property
    def port_mappings(self) -> dict[int, str]:
        """Host ports currently forwarded, mapped to the owning container id."""
        return dict(self._port_mappings)

    def _check(self, args: Sequence[str], failure: str) -> None:
        result = self._run(args)
        if result.returncode != 0:
            raise NetworkError(f"{failure}: {_stderr(result)}")

    def bridge_exists(self) -> bool:
        return self._run(["ip", "link", "show", self.bridge_name]).returncode == 0

    def setup_bridge(self) -> None:
        """Create, bring up and address the bridge unless it already exists."""
        if self.bridge_exists():
            return
        self._check(
            ["ip", "link", "add", "name", self.bridge_name, "type", "bridge"],
            "Failed to create bridge",
        )
        self._check(
            ["ip", "link", "set", "dev", self.bridge_name, "up"],
            "Failed to bring up bridge",
        )
        for address in self._config.bridge_addresses():
            self._check(
                ["ip", "addr", "add", address, "dev", self.bridge_name],
                f"Failed to configure bridge IP {address}",
            )

    def _taken(self) -> set[IPAddress]:
        return {ip for ips in self._allocated.values() for ip in ips}

    def _next_ipv4(self, subnet: IPv4Address) -> IPv4Address:
        taken = self._taken()
        base = int(subnet) & ~0xFF
        for suffix in range(2, 255):
            candidate = IPv4Address(base | suffix)
            if candidate not in taken:
                return candidate
        raise NetworkError("No available IPv4 addresses in subnet")

    def _next_ipv6(self, container_id: str, subnet: IPv6Address) -> IPv6Address:
        taken = self._taken()
        base = int(subnet) & ~0xFFFF
        for suffix in range(2, 0xFFFF):
            candidate = IPv6Address(base | suffix)
            if candidate not in taken:
                return candidate
        raise NetworkError(
            f"No available IPv6 addresses in subnet for container {container_id}"
        )

    def allocate_ips(self, container_id: str) -> list[IPAddress]:
        """Return the container's addresses, allocating them on first use."""
        existing = self._allocated.get(container_id)
        if existing is not None:
            return list(existing)

        ips: list[IPAddress] = []
        if self._config.ipv4_subnet is not None:
            ips.append(self._next_ipv4(self._config.ipv4_subnet))
        if self._config.ipv6_subnet is not None:
            ips.append(self._next_ipv6(container_id, self._config.ipv6_subnet))

        self._allocated[container_id] = list(ips)
        return ips

    def _configure_interface(self, interface: str, ip: IPAddress) -> None:
        if isinstance(ip, IPv4Address):
            prefix = self._config.ipv4_prefix if self._config.has_ipv4 else _DEFAULT_IPV4_PREFIX
            family = "-4"
        else:
            prefix = self._config.ipv6_prefix if self._config.has_ipv6 else _DEFAULT_IPV6_PREFIX
            family = "-6"
        self._check(
            ["ip", family, "addr", "add", f"{ip}/{prefix}", "dev", interface],
            "Failed to configure container interface",
        )

    def _setup_port_forwarding(
        self, host_port: int, container_ip: IPAddress, container_port: int
    ) -> None:
        if isinstance(container_ip, IPv4Address):
            tool = "iptables"
            rule = f"DNAT --to-destination {container_ip}:{container_port}"
        else:
            tool = "ip6tables"
            rule = f"DNAT --to-destination [{container_ip}]:{container_port}"
        self._check(
            [
                tool, "-t", "nat", "-A", "PREROUTING", "-p", "tcp",
                "--dport", str(host_port), "-j", rule,
            ],
            "Failed to setup port forwarding",
        )

    def setup_container_network(self, container: Container) -> None:
        """Give the container a veth pair, addresses and its port forwards."""
        ips = self.allocate_ips(container.id)
        short_id = container.id[:8]
        veth_host = f"veth-{short_id}"
        veth_container = f"veth-c-{short_id}"

        self._check(
            ["ip", "link", "add", veth_host, "type", "veth", "peer", "name", veth_container],
            "Failed to create veth pair",
        )
        self._check(
            ["ip", "link", "set", veth_host, "master", self.bridge_name],
            "Failed to attach to bridge",
        )
        self._check(
            ["ip", "link", "set", "dev", veth_host, "up"],
            "Failed to bring up interface",
        )
        for ip in ips:
            self._configure_interface(veth_container, ip)

        for port in container.config.ports:
            if port.host_port in self._port_mappings:
                raise NetworkError(f"Port {port.host_port} is already in use")
            target = next((ip for ip in ips if isinstance(ip, IPv4Address)), None)
            if target is None:
                if not ips:
                    raise NetworkError("No IP allocated for container")
                target = ips[0]
            self._setup_port_forwarding(port.host_port, target, port.container_port)
            self._port_mappings[port.host_port] = container.id

    def _cleanup_port_forwarding(self, host_port: int) -> None:
        for tool, family in (("iptables", "IPv4"), ("ip6tables", "IPv6")):
            result = self._run(
                [
                    tool, "-t", "nat", "-D", "PREROUTING", "-p", "tcp",
                    "--dport", str(host_port), "-j", "DNAT",
                ]
            )
            if result.returncode != 0:
                _log.warning(
                    "Failed to cleanup %s port forwarding for port %s: %s",
                    family, host_port, _stderr(result),
                )

    def cleanup_container_network(self, container: Container) -> None:
        """Remove the container's interface, port forwards and addresses."""
        try:
            self._run(["ip", "link", "del", f"veth-{container.id[:8]}"])
        except OSError:
            pass
        for port in container.config.ports:
            self._cleanup_port_forwarding(port.host_port)
            self._port_mappings.pop(port.host_port, None)
        self._allocated.pop(container.id, None)

    def cleanup_bridge(self) -> None:
        """Delete the bridge if it exists."""
        if self.bridge_exists():
            self._check(["ip", "link", "del", self.bridge_name], "Failed to cleanup bridge")

    def container_ips(self, container_id: str) -> list[IPAddress] | None:
        ips = self._allocated.get(container_id)
        return None if ips is None else list(ips)