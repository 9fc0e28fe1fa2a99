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

from coreason_preview.classifier import MAX_SIGNATURE_LENGTH, has_oom_signature
from coreason_preview.signals import MemorySignature, Notify, Phase, StartupTimeout
from coreason_preview.utils.logger import logger


class OutputScanner:
    """Scans one process's output stream for heap-exhaustion signatures."""

    def __init__(self, watchdog: "ResourceWatchdog", phase: Phase | None = None):
        self._watchdog = watchdog
        self.phase = phase
        self._carry = ""
        self.triggered = False

    def feed(self, chunk: bytes) -> bool:
        """Inspect a chunk. Returns True (and notifies once) when memory exhaustion is seen."""
        if self.triggered or self._watchdog.closed:
            return self.triggered
        text = self._carry + chunk.decode("utf-8", errors="replace")
        if has_oom_signature(text):
            self.triggered = True
            logger.warning(f"Memory exhaustion signature detected in {self.phase} output")
            self._watchdog.notify(MemorySignature(phase=self.phase))
            return True
        self._carry = text[-MAX_SIGNATURE_LENGTH:]
        return False


class ResourceWatchdog:
    """Startup timer and output scanners for one session.

    Monitors run independently of the guest process and report through
    ``notify``. They never change session state themselves.
    """

    def __init__(self, budget: float, notify: Notify):
        """Initializes the watchdog.

        Args:
            budget: Wall-clock seconds allowed before the server must be ready.
            notify: Callback delivering signals to the supervisor.
        """
        self.budget = budget
        self.notify = notify
        self._timer: asyncio.Task[None] | None = None
        self.armed_at: float | None = None
        self.closed = False
        self._disarmed = False

    def arm(self) -> None:
        """Start the single-shot startup timer. Arming twice keeps the first deadline."""
        if self.closed or self._timer is not None:
            return
        self.armed_at = asyncio.get_running_loop().time()
        self._timer = asyncio.create_task(self._expire())

    async def _expire(self) -> None:
        await asyncio.sleep(self.budget)
        if not self.closed:
            logger.warning(f"Startup budget of {self.budget}s elapsed")
            self.notify(StartupTimeout(budget=self.budget))

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._disarmed and not self._timer.done()

    def disarm(self) -> None:
        self._disarmed = True
        if self._timer and not self._timer.done():
            self._timer.cancel()

    def scanner(self, phase: Phase | None = None) -> OutputScanner:
        return OutputScanner(self, phase)

    def close(self) -> None:
        """Cancel the timer and silence every scanner."""
        self.closed = True
        self.disarm()
