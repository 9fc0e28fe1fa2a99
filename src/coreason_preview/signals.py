# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

"""Messages delivered to the supervisor.

Concurrent units (output pumps, watchdog monitors, runtime callbacks) never
touch session state. They post one of these and the supervisor applies it.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class Phase(str, Enum):
    INSTALL = "install"
    START = "start"


@dataclass(frozen=True)
class OutputChunk:
    phase: Phase
    data: bytes


@dataclass(frozen=True)
class ProcessExited:
    phase: Phase
    exit_code: int | None


@dataclass(frozen=True)
class ServerReady:
    port: int
    url: str


@dataclass(frozen=True)
class StartupTimeout:
    budget: float


@dataclass(frozen=True)
class MemorySignature:
    phase: Phase | None = None


Signal = OutputChunk | ProcessExited | ServerReady | StartupTimeout | MemorySignature

Notify = Callable[[Signal], None]
