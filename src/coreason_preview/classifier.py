# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

import re

from coreason_preview.messages import MessageCatalog
from coreason_preview.models import FailureClassification, FailureKind

# Heap exhaustion messages from V8, libc, Python and the kernel, plus the
# SIGKILL reports npm and shells print when the cgroup OOM killer fires.
OOM_SIGNATURES = re.compile(
    r"JavaScript heap out of memory"
    r"|FATAL ERROR:[^\n]*heap"
    r"|Reached heap limit"
    r"|Allocation failed"
    r"|\bENOMEM\b"
    r"|Cannot allocate memory"
    r"|\bMemoryError\b"
    r"|out of memory"
    r"|\bSIGKILL\b"
    r"|(?-i:\bKilled\b)",
    re.IGNORECASE,
)

# Longest literal above; scanners keep this much context across chunk boundaries.
MAX_SIGNATURE_LENGTH = 64

EXIT_SIGKILL = 137
# setsid --wait reports a signalled child by its raw signal number.
EXIT_SIGNAL_KILL = 9
EXIT_TIMEOUT = 124


def has_oom_signature(text: str) -> bool:
    return OOM_SIGNATURES.search(text) is not None


class OutputClassifier:
    """Maps an exit code and output tail to a FailureClassification.

    The taxonomy is heuristic. When nothing matches, the result is UNKNOWN
    rather than a guess.
    """

    def __init__(self, messages: MessageCatalog | None = None):
        self.messages = messages or MessageCatalog()

    def kind_of(
        self,
        exit_code: int | None,
        output: str,
        *,
        reached_running: bool,
        killed_by_watchdog: bool = False,
    ) -> FailureKind:
        if killed_by_watchdog:
            return FailureKind.STARTUP_TIMEOUT
        if exit_code == 0 and reached_running:
            return FailureKind.OK
        if has_oom_signature(output) or exit_code in (EXIT_SIGKILL, EXIT_SIGNAL_KILL):
            return FailureKind.MEMORY_EXCEEDED
        if exit_code == EXIT_TIMEOUT:
            return FailureKind.STARTUP_TIMEOUT
        if exit_code == 1 and not reached_running:
            return FailureKind.LAUNCH_FAILURE
        if exit_code is not None and exit_code != 0:
            return FailureKind.RUNTIME_ERROR
        return FailureKind.UNKNOWN

    def classify(
        self,
        exit_code: int | None,
        output: str,
        *,
        reached_running: bool,
        killed_by_watchdog: bool = False,
    ) -> FailureClassification:
        """Classify a process exit.

        Args:
            exit_code: Exit status of the process, None when it could not be read.
            output: Tail of the combined stdout/stderr.
            reached_running: Whether the session reached the running state.
            killed_by_watchdog: Whether the startup timer killed the process.

        Returns:
            FailureClassification: The kind with its fixed user-facing message.
        """
        kind = self.kind_of(
            exit_code,
            output,
            reached_running=reached_running,
            killed_by_watchdog=killed_by_watchdog,
        )
        return FailureClassification(kind=kind, reason=self.messages.failure(kind))
