# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass

from coreason_preview.bundle import SourceBundle

ServerReadyCallback = Callable[[int, str], None]


@dataclass(frozen=True)
class SandboxHandle:
    """Opaque reference to one mounted sandbox.

    Attributes:
        sandbox_id: Runtime-specific identifier.
        hostname: Name under which the guest is reachable inside the sandbox boundary.
        root: Directory the bundle was mounted into.
    """

    sandbox_id: str
    hostname: str
    root: str


class SandboxProcess(ABC):
    """A command running inside a sandbox."""

    @abstractmethod
    def output(self) -> AsyncIterator[bytes]:
        """Combined stdout/stderr as it arrives. Ends when the process closes its streams."""
        pass  # pragma: no cover

    @abstractmethod
    async def wait(self) -> int | None:
        """Wait for the process to exit.

        Returns:
            int | None: The exit code, or None if it could not be determined.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def kill(self) -> None:
        """Forcibly terminate the process and its children. Safe to call more than once."""
        pass  # pragma: no cover


class SandboxRuntime(ABC):
    """
    Abstract base class for preview sandbox runtimes.
    Follows the Strategy Pattern.

    Implementations must deny the guest outbound network access, confine its
    writes to the sandbox, and never share a sandbox between sessions.
    """

    @abstractmethod
    async def mount(self, bundle: SourceBundle) -> SandboxHandle:
        """Boot a fresh sandbox and copy the bundle into its root.

        Args:
            bundle: The files to mount.

        Returns:
            SandboxHandle: Handle for the new sandbox.

        Raises:
            RuntimeError: If the sandbox cannot be created or the files cannot be copied.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def spawn(
        self,
        handle: SandboxHandle,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ) -> SandboxProcess:
        """Start a command in the sandbox root.

        Args:
            handle: The sandbox to run in.
            command: Executable name.
            args: Arguments passed to the executable.
            env: Extra environment variables.

        Returns:
            SandboxProcess: The running process.

        Raises:
            RuntimeError: If the sandbox is gone or the command cannot be started.
        """
        pass  # pragma: no cover

    @abstractmethod
    def on_server_ready(self, handle: SandboxHandle, callback: ServerReadyCallback) -> None:
        """Register a callback fired once when the guest starts listening on a port.

        Args:
            handle: The sandbox to watch.
            callback: Called with the port and the preview URL.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def teardown(self, handle: SandboxHandle) -> None:
        """Kill everything in the sandbox and release it. Idempotent."""
        pass  # pragma: no cover

    async def close(self) -> None:
        """Release sandboxes this runtime created but never handed out, and any client resources."""
        return None
