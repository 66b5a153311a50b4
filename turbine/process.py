"""Launching, signalling and inspecting container processes."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from .container import Container
from .errors import ProcessError

Launcher = Callable[..., Awaitable[asyncio.subprocess.Process]]

_NAMESPACE_FLAGS = ("--pid", "--net", "--mount", "--uts", "--ipc")
_DEFAULT_STOP_TIMEOUT = 10.0


async def _spawn(args: Sequence[str], **options: Any) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(*args, **options)


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


@dataclass(frozen=True)
class _Launch:
    """The command line and process settings used to start a container."""

    args: list[str]
    cwd: str | None
    env: dict[str, str]
    user: int | None
    group: int | None
    extra_groups: list[int] | None

    def options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "env": dict(self.env),
        }
        if self.cwd is not None:
            options["cwd"] = self.cwd
        if self.user is not None:
            options["user"] = self.user
        if self.group is not None:
            options["group"] = self.group
        if self.extra_groups is not None:
            options["extra_groups"] = list(self.extra_groups)
        return options


class ProcessManager:
    """Keeps track of the process behind each running container."""

    def __init__(
        self,
        launcher: Launcher | None = None,
        stop_timeout: float = _DEFAULT_STOP_TIMEOUT,
    ) -> None:
        self._launcher = launcher if launcher is not None else _spawn
        self.stop_timeout = stop_timeout
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    def build_command(self, container: Container) -> _Launch:
        """Describe how the container's process is started in fresh namespaces."""
        config = container.config
        args = ["unshare", *_NAMESPACE_FLAGS, "--fork"]
        if config.user is not None:
            args += ["--user", config.user]
        args += ["chroot", str(container.root_path), *config.command]

        env = dict(os.environ)
        env.update(config.environment)

        return _Launch(
            args=args,
            cwd=config.working_dir,
            env=env,
            user=config.uid,
            group=config.gid,
            extra_groups=None if config.groups is None else list(config.groups),
        )

    async def start_container(self, container: Container) -> int:
        """Start the container's process and return its pid."""
        launch = self.build_command(container)
        try:
            process = await self._launcher(launch.args, **launch.options())
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            raise ProcessError(f"Failed to spawn process: {exc}") from exc
        if process.pid is None:
            raise ProcessError("Failed to get process ID")
        self._processes[container.id] = process
        return process.pid

    @staticmethod
    def _send_signal(pid: int, sig: signal.Signals) -> None:
        try:
            os.kill(pid, sig)
        except OSError as exc:
            raise ProcessError(f"Failed to send signal: {exc}") from exc

    async def stop_container(self, container_id: str, force: bool = False) -> None:
        """Stop the container's process, killing it outright when forced."""
        process = self._processes.pop(container_id, None)
        if process is None:
            return
        if force:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                except OSError as exc:
                    raise ProcessError(f"Failed to kill process: {exc}") from exc
            await process.wait()
            return
        if process.returncode is not None:
            return
        self._send_signal(process.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), self.stop_timeout)
        except TimeoutError:
            raise ProcessError("Process did not terminate gracefully") from None

    async def restart_container(self, container: Container) -> int:
        await self.stop_container(container.id, False)
        return await self.start_container(container)

    def _live(self, container_id: str) -> asyncio.subprocess.Process | None:
        process = self._processes.get(container_id)
        if process is None or process.returncode is not None:
            return None
        return process

    def pause_container(self, container_id: str) -> None:
        process = self._live(container_id)
        if process is not None:
            self._send_signal(process.pid, signal.SIGSTOP)

    def resume_container(self, container_id: str) -> None:
        process = self._live(container_id)
        if process is not None:
            self._send_signal(process.pid, signal.SIGCONT)

    def is_running(self, container_id: str) -> bool:
        return self._live(container_id) is not None

    async def container_logs(self, container_id: str) -> tuple[str, str]:
        """Return (stdout, stderr) of a container whose process has exited."""
        process = self._processes.get(container_id)
        if process is None:
            raise ProcessError("Container not found")
        if process.returncode is None:
            raise ProcessError("Container is still running")
        del self._processes[container_id]
        try:
            stdout, stderr = await process.communicate()
        except OSError as exc:
            raise ProcessError(f"Failed to get output: {exc}") from exc
        return _decode(stdout), _decode(stderr)

    async def execute_in_container(self, container: Container, command: Sequence[str]) -> str:
        """Run a command inside the container's namespaces and return its output."""
        args = ["nsenter"]
        process = self._live(container.id)
        if process is not None:
            args += ["--target", str(process.pid), *_NAMESPACE_FLAGS]
        args += ["chroot", str(container.root_path), *command]

        try:
            child = await self._launcher(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
            stdout, stderr = await child.communicate()
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            raise ProcessError(f"Failed to execute command: {exc}") from exc
        if child.returncode != 0:
            raise ProcessError(f"Command failed: {_decode(stderr)}")
        return _decode(stdout)

    def running_containers(self) -> list[str]:
        return list(self._processes)

    async def cleanup_all(self) -> None:
        """Kill every tracked process."""
        for container_id in list(self._processes):
            await self.stop_container(container_id, True)