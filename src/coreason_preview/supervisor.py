# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING

from coreason_preview.classifier import OutputClassifier
from coreason_preview.manifest import EntryPlan, Manifest, ManifestError, resolve_entry
from coreason_preview.models import FailureClassification, FailureKind, SessionState
from coreason_preview.runtime import SandboxProcess
from coreason_preview.signals import (
    MemorySignature,
    OutputChunk,
    Phase,
    ProcessExited,
    ServerReady,
    Signal,
    StartupTimeout,
)
from coreason_preview.utils.logger import logger
from coreason_preview.watchdog import ResourceWatchdog

if TYPE_CHECKING:
    from coreason_preview.session import PreviewSession


class ProcessSupervisor:
    """Drives one session from mount to a running preview or a classified failure.

    The supervisor task is the only writer of session state. Output pumps,
    the watchdog and the runtime's ready callback post signals onto a single
    queue, which is drained in order. Whichever of two racing signals is
    dequeued first wins, and anything arriving after a terminal state is
    dropped.
    """

    def __init__(
        self,
        session: "PreviewSession",
        install_command: Sequence[str],
        classifier: OutputClassifier,
    ):
        self.session = session
        self.install_command = list(install_command)
        self.classifier = classifier
        self.messages = classifier.messages
        self._signals: asyncio.Queue[Signal] = asyncio.Queue()
        self.watchdog = ResourceWatchdog(session.limits.startup_budget, self.post)
        self._pumps: list[asyncio.Task[None]] = []
        self._phase: Phase | None = None
        self._plan: EntryPlan | None = None
        self._killed_by_watchdog = False
        self.log = logger.bind(session_id=session.session_id, app_id=session.app_id)

    def post(self, signal: Signal) -> None:
        self._signals.put_nowait(signal)

    @property
    def state(self) -> SessionState:
        return self.session.state

    async def run(self) -> None:
        """Supervise the session until it reaches a terminal state, then release it."""
        try:
            await self._launch()
            while not self.state.is_terminal:
                signal = await self._signals.get()
                await self._handle(signal)
        except asyncio.CancelledError:
            if not self.state.is_terminal:
                self.log.info("Preview cancelled")
                self.session._set_state(SessionState.CANCELLED, reason=self.messages.detail("cancelled"))
            raise
        except Exception as e:
            self.log.exception(f"Supervisor error: {e}")
            self._fail(FailureKind.UNKNOWN)
        finally:
            self.watchdog.close()
            for pump in self._pumps:
                pump.cancel()
            await self.session.release()

    async def _launch(self) -> None:
        session = self.session
        session._set_state(SessionState.MOUNTING)
        self.log.info(f"Mounting bundle {session.bundle.digest()[:12]} ({len(session.bundle)} files)")
        try:
            session.handle = await session.runtime.mount(session.bundle)
        except Exception as e:
            self.log.error(f"Mount failed: {e}")
            self._fail(FailureKind.LAUNCH_FAILURE, "mount_failed")
            return

        try:
            manifest = Manifest.from_bundle(session.bundle)
        except ManifestError as e:
            self.log.warning(f"Manifest rejected: {e}")
            self._fail(FailureKind.LAUNCH_FAILURE, "manifest_invalid")
            return

        self._plan = resolve_entry(manifest, self.install_command)
        session._set_state(SessionState.INSTALLING)
        # One budget covers install and start. It is not reset between phases.
        self.watchdog.arm()
        await self._spawn(Phase.INSTALL, self._plan.install)

    async def _spawn(self, phase: Phase, command: list[str]) -> None:
        session = self.session
        assert session.handle is not None
        self._phase = phase
        try:
            process = await session.runtime.spawn(session.handle, command[0], command[1:])
        except Exception as e:
            self.log.error(f"Failed to spawn {phase.value} command: {e}")
            self._fail(FailureKind.LAUNCH_FAILURE)
            return
        session.process = process
        self._pumps.append(asyncio.create_task(self._pump(phase, process)))

    async def _pump(self, phase: Phase, process: SandboxProcess) -> None:
        """Forward a process's output and exit status as signals."""
        scanner = self.watchdog.scanner(phase)
        exit_code: int | None = None
        try:
            async for chunk in process.output():
                self.post(OutputChunk(phase, chunk))
                scanner.feed(chunk)
            exit_code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.warning(f"Lost {phase.value} process output: {e}")
        self.post(ProcessExited(phase, exit_code))

    async def _handle(self, signal: Signal) -> None:
        if isinstance(signal, OutputChunk):
            self.session.output.append(signal.data)
        elif isinstance(signal, MemorySignature):
            await self._on_memory_signature()
        elif isinstance(signal, StartupTimeout):
            await self._on_startup_timeout()
        elif isinstance(signal, ServerReady):
            self._on_server_ready(signal)
        elif isinstance(signal, ProcessExited):
            await self._on_process_exited(signal)

    async def _on_memory_signature(self) -> None:
        await self._kill_process()
        self._fail(FailureKind.MEMORY_EXCEEDED)

    async def _on_startup_timeout(self) -> None:
        if self.state not in (SessionState.INSTALLING, SessionState.STARTING):
            return
        self._killed_by_watchdog = True
        await self._kill_process()
        self._fail(FailureKind.STARTUP_TIMEOUT)

    def _on_server_ready(self, signal: ServerReady) -> None:
        if self.state is not SessionState.STARTING:
            return
        self.watchdog.disarm()
        self.log.info(f"Preview ready at {signal.url}")
        self.session._set_state(SessionState.RUNNING, url=signal.url)

    async def _on_process_exited(self, signal: ProcessExited) -> None:
        if signal.phase is not self._phase:
            return
        self.log.info(f"{signal.phase.value} process exited with code {signal.exit_code}")
        self.session.process = None

        if signal.phase is Phase.INSTALL:
            if signal.exit_code == 0:
                await self._start()
                return
            kind = self.classifier.kind_of(signal.exit_code, self.session.output.text(), reached_running=False)
            if kind is FailureKind.MEMORY_EXCEEDED:
                self._fail(kind)
            else:
                self._fail(FailureKind.LAUNCH_FAILURE, "install_failed")
            return

        classification = self.classifier.classify(
            signal.exit_code,
            self.session.output.text(),
            reached_running=self.state is SessionState.RUNNING,
            killed_by_watchdog=self._killed_by_watchdog,
        )
        if classification.kind is FailureKind.OK:
            self.session._set_state(SessionState.DONE)
        else:
            self._fail(classification.kind)

    async def _start(self) -> None:
        session = self.session
        assert session.handle is not None and self._plan is not None
        session._set_state(SessionState.STARTING)
        session.runtime.on_server_ready(session.handle, lambda port, url: self.post(ServerReady(port, url)))
        await self._spawn(Phase.START, self._plan.start)

    async def _kill_process(self) -> None:
        process = self.session.process
        if process is None:
            return
        try:
            await asyncio.wait_for(process.kill(), timeout=self.session.limits.kill_grace_period)
        except asyncio.TimeoutError:
            self.log.warning("Timed out killing supervised process")
        except Exception as e:
            self.log.warning(f"Error killing supervised process: {e}")

    def _fail(self, kind: FailureKind, detail: str | None = None) -> None:
        if self.state.is_terminal:
            return
        failure = FailureClassification(kind=kind, reason=self.messages.failure(kind, detail))
        self.log.warning(f"Preview failed: {kind.value}")
        self.session._set_state(SessionState.FAILED, failure=failure)
