# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Lifecycle states of a preview session."""

    IDLE = "idle"
    MOUNTING = "mounting"
    INSTALLING = "installing"
    STARTING = "starting"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.FAILED, SessionState.CANCELLED)


class FailureKind(str, Enum):
    """Taxonomy of preview outcomes."""

    OK = "ok"
    STARTUP_TIMEOUT = "startup_timeout"
    MEMORY_EXCEEDED = "memory_exceeded"
    RUNTIME_ERROR = "runtime_error"
    LAUNCH_FAILURE = "launch_failure"
    UNKNOWN = "unknown"


class FailureClassification(BaseModel):
    """A failure kind paired with a fixed, user-safe explanation.

    Attributes:
        kind: The classified cause.
        reason: Human-readable message shown to the end user. Never raw process output.
    """

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    reason: str


class ResourceLimits(BaseModel):
    """Limits applied to a single preview session.

    Attributes:
        startup_budget: Wall-clock seconds shared by the install and start phases.
        memory_limit_mb: Memory ceiling of the sandbox in megabytes.
        output_buffer_bytes: Number of most recent output bytes retained.
        kill_grace_period: Upper bound in seconds for killing a process or tearing down a sandbox.
    """

    model_config = ConfigDict(frozen=True)

    startup_budget: float = Field(default=10.0, gt=0)
    memory_limit_mb: int = Field(default=128, gt=0)
    output_buffer_bytes: int = Field(default=64 * 1024, gt=0)
    kill_grace_period: float = Field(default=2.0, gt=0)


class StatusEvent(BaseModel):
    """A state change published to the caller.

    Attributes:
        session_id: The session that changed.
        state: The state that was entered.
        url: Preview URL, only set when entering ``running``.
        error_classification: Failure kind, only set when entering ``failed``.
        reason_message: User-safe explanation for ``failed`` and ``cancelled``.
        timestamp: Unix time of the transition.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    state: SessionState
    url: str | None = None
    error_classification: FailureKind | None = None
    reason_message: str | None = None
    timestamp: float = Field(default_factory=time.time)
