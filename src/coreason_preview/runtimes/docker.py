import asyncio
import shlex
import threading
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from typing import Any

import docker
from docker.errors import DockerException, NotFound
from docker.models.containers import Container

from coreason_preview.bundle import SourceBundle
from coreason_preview.runtime import SandboxHandle, SandboxProcess, SandboxRuntime, ServerReadyCallback
from coreason_preview.utils.logger import logger

TCP_LISTEN = "0A"

# V8 heap cap as a share of the container limit, leaving room for native memory
# so heap exhaustion is reported by V8 before the kernel OOM killer fires.
HEAP_FRACTION = 0.75


def parse_listening_ports(proc_net_tcp: str) -> set[int]:
    """Extract listening ports from /proc/net/tcp or /proc/net/tcp6 content."""
    ports: set[int] = set()
    for line in proc_net_tcp.splitlines():
        fields = line.split()
        if len(fields) < 4 or fields[0] == "sl" or fields[3] != TCP_LISTEN:
            continue
        _, _, port_hex = fields[1].rpartition(":")
        try:
            ports.add(int(port_hex, 16))
        except ValueError:
            continue
    return ports


class DockerProcess(SandboxProcess):
    """A command started through the Docker exec API."""

    def __init__(
        self,
        client: docker.DockerClient,
        container: Container,
        exec_id: str,
        stream: Iterator[bytes],
        pid_file: str,
        poll_interval: float = 0.2,
    ):
        self.client = client
        self.container = container
        self.exec_id = exec_id
        self.pid_file = pid_file
        self.poll_interval = poll_interval
        self._stream = stream
        self._killed = False

    async def output(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await asyncio.to_thread(next, self._stream, None)
            if chunk is None:
                return
            yield chunk

    async def wait(self) -> int | None:
        while True:
            info: dict[str, Any] = await asyncio.to_thread(self.client.api.exec_inspect, self.exec_id)
            if not info.get("Running"):
                exit_code = info.get("ExitCode")
                return exit_code if isinstance(exit_code, int) else None
            await asyncio.sleep(self.poll_interval)

    async def kill(self) -> None:
        if self._killed:
            return
        # The wrapper shell writes the pid file; a kill right after spawn waits for it.
        # Negative pid targets the process group created by setsid.
        pid_file = shlex.quote(self.pid_file)
        script = (
            f"for _ in 1 2 3 4 5 6 7 8 9 10; do [ -s {pid_file} ] && break; sleep 0.1; done; "
            f'kill -KILL -"$(cat {pid_file})"'
        )
        try:
            exit_code, _ = await asyncio.to_thread(self.container.exec_run, ["sh", "-c", script])
        except DockerException as e:
            logger.warning(f"Error killing process {self.exec_id[:12]}: {e}")
            return
        if exit_code == 0:
            self._killed = True
        else:
            logger.warning(f"Process group of {self.exec_id[:12]} not signalled (exit {exit_code})")


class DockerRuntime(SandboxRuntime):
    """
    Docker-based implementation of the SandboxRuntime.

    Each mount boots a dedicated container with no route out of the host:
    either ``network_mode="none"`` or an internal-only Docker network.
    """

    def __init__(
        self,
        image: str = "node:20-slim",
        cpu_limit: float = 1.0,
        memory_limit_mb: int = 128,
        pids_limit: int = 256,
        network: str | None = None,
        work_dir: str = "/home/app",
        ready_poll_interval: float = 0.5,
    ):
        self.client = docker.from_env()
        self.image = image
        self.cpu_limit = cpu_limit
        self.memory_limit_mb = memory_limit_mb
        self.pids_limit = pids_limit
        self.network = network
        self.work_dir = work_dir
        self.ready_poll_interval = ready_poll_interval
        self.containers: dict[str, Container] = {}
        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._spawn_count = 0
        self._closed = False
        self._registry_lock = threading.Lock()

    def _ensure_internal_network(self) -> None:
        """Create the configured network as internal, or verify an existing one is internal."""
        assert self.network is not None
        existing = self.client.networks.list(names=[self.network])
        if not existing:
            logger.info(f"Creating internal Docker network {self.network}")
            self.client.networks.create(self.network, driver="bridge", internal=True)
            return
        network = existing[0]
        network.reload()
        if not network.attrs.get("Internal"):
            raise RuntimeError(f"Docker network {self.network} is not internal; guest egress would be possible")

    def _run_container(self) -> Container:
        if self._closed:
            raise RuntimeError("Docker runtime is closed")
        network_args: dict[str, Any]
        if self.network:
            self._ensure_internal_network()
            network_args = {"network": self.network}
        else:
            network_args = {"network_mode": "none"}

        mem_limit = f"{self.memory_limit_mb}m"
        container: Container = self.client.containers.run(
            self.image,
            command="tail -f /dev/null",
            detach=True,
            mem_limit=mem_limit,
            memswap_limit=mem_limit,
            nano_cpus=int(self.cpu_limit * 1e9),
            pids_limit=self.pids_limit,
            cap_drop=["ALL"],
            cap_add=["CHOWN", "DAC_OVERRIDE", "FOWNER", "SETGID", "SETUID"],
            security_opt=["no-new-privileges"],
            remove=True,
            working_dir=self.work_dir,
            labels={"coreason.preview": "true"},
            **network_args,
        )
        # Registered before mount() returns so close() finds it if mount is cancelled.
        # A container that boots after close() has nobody left to release it.
        with self._registry_lock:
            closed = self._closed
            if not closed:
                self.containers[container.short_id] = container
        if closed:
            logger.warning(f"Runtime closed while booting; killing sandbox {container.short_id}")
            self._kill_container(container)
            raise RuntimeError("Docker runtime is closed")
        return container

    async def mount(self, bundle: SourceBundle) -> SandboxHandle:
        """
        Boot a container and copy the bundle into the work dir.
        """
        logger.info(f"Starting Docker sandbox with image {self.image}")
        container: Container | None = None
        try:
            container = await asyncio.to_thread(self._run_container)
            await asyncio.to_thread(container.exec_run, ["mkdir", "-p", self.work_dir])
            ok = await asyncio.to_thread(container.put_archive, self.work_dir, bundle.to_tar())
            if not ok:
                raise RuntimeError(f"Failed to copy bundle into {self.work_dir}")
        except (DockerException, RuntimeError) as e:
            logger.error(f"Failed to start Docker sandbox: {e}")
            if container is not None:
                self.containers.pop(container.short_id, None)
                await asyncio.to_thread(self._kill_container, container)
            raise

        hostname = container.name or container.short_id
        logger.info(f"Docker sandbox started: {container.short_id} ({len(bundle)} files)")
        return SandboxHandle(sandbox_id=container.short_id, hostname=hostname, root=self.work_dir)

    def _container(self, handle: SandboxHandle) -> Container:
        container = self.containers.get(handle.sandbox_id)
        if container is None:
            raise RuntimeError("Sandbox not started")
        return container

    @property
    def heap_limit_mb(self) -> int:
        return max(1, int(self.memory_limit_mb * HEAP_FRACTION))

    def guest_env(self) -> dict[str, str]:
        return {
            "NODE_OPTIONS": f"--max-old-space-size={self.heap_limit_mb}",
            "HOST": "0.0.0.0",
            "CI": "1",
            "BROWSER": "none",
        }

    async def spawn(
        self,
        handle: SandboxHandle,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ) -> SandboxProcess:
        """
        Start a command in its own process group inside the container.
        """
        container = self._container(handle)
        self._spawn_count += 1
        pid_file = f"/tmp/.preview-{self._spawn_count}.pid"
        # "$0" is the pid file, "$@" the real command.
        cmd = ["setsid", "--wait", "sh", "-c", 'echo $$ > "$0"; exec "$@"', pid_file, command, *args]
        environment = {**self.guest_env(), **(env or {})}

        logger.info(f"Spawning {shlex.join([command, *args])} in sandbox {handle.sandbox_id}")
        try:
            created = await asyncio.to_thread(
                self.client.api.exec_create,
                container.id,
                cmd,
                stdout=True,
                stderr=True,
                environment=environment,
                workdir=handle.root,
            )
            exec_id = created["Id"]
            stream = await asyncio.to_thread(self.client.api.exec_start, exec_id, stream=True)
        except DockerException as e:
            logger.error(f"Spawn failed: {e}")
            raise RuntimeError(f"Failed to spawn {command}: {e}") from e

        return DockerProcess(self.client, container, exec_id, iter(stream), pid_file)

    def on_server_ready(self, handle: SandboxHandle, callback: ServerReadyCallback) -> None:
        existing = self._watchers.pop(handle.sandbox_id, None)
        if existing:
            existing.cancel()
        self._watchers[handle.sandbox_id] = asyncio.create_task(self._watch_ports(handle, callback))

    async def _watch_ports(self, handle: SandboxHandle, callback: ServerReadyCallback) -> None:
        """Poll the guest's socket table until something listens."""
        container = self._container(handle)
        while True:
            try:
                _, output = await asyncio.to_thread(container.exec_run, ["cat", "/proc/net/tcp", "/proc/net/tcp6"])
            except DockerException as e:
                logger.warning(f"Port scan failed for sandbox {handle.sandbox_id}: {e}")
                return
            ports = parse_listening_ports(output.decode("utf-8", errors="replace") if output else "")
            if ports:
                port = min(ports)
                url = f"http://{handle.hostname}:{port}"
                logger.info(f"Sandbox {handle.sandbox_id} listening on port {port}")
                callback(port, url)
                return
            await asyncio.sleep(self.ready_poll_interval)

    def _kill_container(self, container: Container) -> None:
        try:
            container.kill()
        except NotFound:
            pass
        except DockerException as e:
            logger.warning(f"Error terminating Docker sandbox: {e}")

    async def teardown(self, handle: SandboxHandle) -> None:
        """
        Kill and cleanup the sandbox environment.
        """
        watcher = self._watchers.pop(handle.sandbox_id, None)
        if watcher:
            watcher.cancel()

        container = self.containers.pop(handle.sandbox_id, None)
        if container is None:
            logger.warning(f"Attempted to teardown non-existent Docker sandbox {handle.sandbox_id}")
            return

        logger.info(f"Terminating Docker sandbox: {container.short_id}")
        await asyncio.to_thread(self._kill_container, container)

    async def close(self) -> None:
        for watcher in self._watchers.values():
            watcher.cancel()
        self._watchers.clear()

        with self._registry_lock:
            self._closed = True
            leftovers = list(self.containers.values())
            self.containers.clear()
        for container in leftovers:
            logger.warning(f"Killing orphaned Docker sandbox: {container.short_id}")
            await asyncio.to_thread(self._kill_container, container)
        await asyncio.to_thread(self.client.close)
