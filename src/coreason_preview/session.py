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
import time
from collections.abc import AsyncIterator, Sequence
from typing import Any
from uuid import uuid4

from coreason_preview.buffer import OutputBuffer
from coreason_preview.bundle import SourceBundle
from coreason_preview.classifier import OutputClassifier
from coreason_preview.embed import iframe_attributes
from coreason_preview.manifest import DEFAULT_INSTALL_COMMAND
from coreason_preview.messages import MessageCatalog
from coreason_preview.models import FailureClassification, ResourceLimits, SessionState, StatusEvent
from coreason_preview.runtime import SandboxHandle, SandboxProcess, SandboxRuntime
from coreason_preview.supervisor import ProcessSupervisor
from coreason_preview.utils.logger import logger


class PreviewSession:
    """One preview request: a bundle, its sandbox, and the process running in it.

    The session exclusively owns its sandbox handle and process handle. State
    is written only by its ProcessSupervisor; callers observe it through
    ``events()`` and stop it with ``teardown()``.
    """

    def __init__(
        self,
        app_id: str,
        bundle: SourceBundle,
        runtime: SandboxRuntime,
        limits: ResourceLimits | None = None,
        messages: MessageCatalog | None = None,
        install_command: Sequence[str] = DEFAULT_INSTALL_COMMAND,
    ):
        """Initializes the session.

        Args:
            app_id: Identifier of the app being previewed.
            bundle: The files to run. Not mutated.
            runtime: Runtime used to create this session's sandbox.
            limits: Resource limits. Defaults are used if not provided.
            messages: Catalog for user-facing text.
            install_command: Command installing the bundle's dependencies.
        """
        self.session_id = str(uuid4())
        self.app_id = app_id
        self.bundle = bundle
        self.runtime = runtime
        self.limits = limits or ResourceLimits()
        self.messages = messages or MessageCatalog(memory_limit_mb=self.limits.memory_limit_mb)

        self.state = SessionState.IDLE
        self.handle: SandboxHandle | None = None
        self.process: SandboxProcess | None = None
        self.output = OutputBuffer(self.limits.output_buffer_bytes)
        self.started_at = time.time()
        self.finished_at: float | None = None
        self.url: str | None = None
        self.failure: FailureClassification | None = None
        self.history: list[StatusEvent] = []

        self._changed = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._released = False
        self._supervisor = ProcessSupervisor(self, install_command, OutputClassifier(self.messages))

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Session already started")
        logger.info(f"Starting preview session {self.session_id} for app {self.app_id}")
        self._task = asyncio.create_task(self._supervisor.run(), name=f"preview-{self.session_id}")

    def _set_state(
        self,
        state: SessionState,
        *,
        url: str | None = None,
        failure: FailureClassification | None = None,
        reason: str | None = None,
    ) -> None:
        """Record a transition. Only the supervisor calls this."""
        if self.state.is_terminal:
            logger.warning(f"Ignoring transition {self.state.value} -> {state.value} on finished session")
            return
        self.state = state
        if url is not None:
            self.url = url
        if failure is not None:
            self.failure = failure
            reason = failure.reason
        if state.is_terminal:
            self.finished_at = time.time()

        self.history.append(
            StatusEvent(
                session_id=self.session_id,
                state=state,
                url=url,
                error_classification=failure.kind if failure else None,
                reason_message=reason,
            )
        )
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    @property
    def latest(self) -> StatusEvent | None:
        return self.history[-1] if self.history else None

    @property
    def status_text(self) -> str:
        return self.messages.status(self.state)

    async def events(self) -> AsyncIterator[StatusEvent]:
        """Yield every state change, past then live, ending after the terminal one."""
        index = 0
        while True:
            while index < len(self.history):
                event = self.history[index]
                index += 1
                yield event
                if event.state.is_terminal:
                    return
            await self._changed.wait()

    async def wait_settled(self, timeout: float | None = None) -> StatusEvent:
        """Wait until the preview is running or finished.

        Raises:
            asyncio.TimeoutError: If nothing settles within ``timeout`` seconds.
        """

        async def _settled() -> StatusEvent:
            async for event in self.events():
                if event.state is SessionState.RUNNING or event.state.is_terminal:
                    return event
            raise RuntimeError("Event stream ended without a terminal event")  # pragma: no cover

        return await asyncio.wait_for(_settled(), timeout=timeout)

    async def teardown(self) -> None:
        """Stop the preview and release the sandbox.

        Safe to call at any point, any number of times. Bounded by the kill
        grace period.
        """
        task = self._task
        if task is not None and not task.done():
            if not self.state.is_terminal:
                task.cancel()
            await asyncio.wait({task}, timeout=self.limits.kill_grace_period * 2)
        elif task is None and not self.state.is_terminal:
            self._set_state(SessionState.CANCELLED, reason=self.messages.detail("cancelled"))
        await self.release()

    async def release(self) -> None:
        """Kill the live process and tear down the sandbox exactly once."""
        if self._released:
            return
        self._released = True
        grace = self.limits.kill_grace_period

        process, self.process = self.process, None
        if process is not None:
            try:
                await asyncio.wait_for(process.kill(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out killing process of session {self.session_id}")
            except Exception as e:
                logger.error(f"Error killing process of session {self.session_id}: {e}")

        handle, self.handle = self.handle, None
        if handle is not None:
            try:
                await asyncio.wait_for(self.runtime.teardown(handle), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out tearing down sandbox of session {self.session_id}")
            except Exception as e:
                logger.error(f"Error tearing down sandbox of session {self.session_id}: {e}")

        try:
            await asyncio.wait_for(self.runtime.close(), timeout=grace)
        except Exception as e:
            logger.error(f"Error closing runtime of session {self.session_id}: {e}")

        logger.info(f"Released preview session {self.session_id} ({self.state.value})")

    @property
    def released(self) -> bool:
        return self._released

    def snapshot(self) -> dict[str, Any]:
        """Caller-facing view of the session. Raw output is not included."""
        return {
            "session_id": self.session_id,
            "app_id": self.app_id,
            "state": self.state.value,
            "status_text": self.status_text,
            "url": self.url,
            "error": self.failure.kind.value if self.failure else None,
            "reason": self.failure.reason if self.failure else None,
            "embed": iframe_attributes(self.url) if self.url else None,
        }
