# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

"""
coreason-preview
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .bundle import BundleError, SourceBundle
from .classifier import OutputClassifier
from .config import PreviewConfig
from .factory import SandboxFactory
from .manifest import Manifest, ManifestError
from .models import FailureClassification, FailureKind, ResourceLimits, SessionState, StatusEvent
from .runtime import SandboxHandle, SandboxProcess, SandboxRuntime
from .runtimes.docker import DockerRuntime
from .session import PreviewSession
from .session_manager import SessionManager

__all__ = [
    "BundleError",
    "DockerRuntime",
    "FailureClassification",
    "FailureKind",
    "Manifest",
    "ManifestError",
    "OutputClassifier",
    "PreviewConfig",
    "PreviewSession",
    "ResourceLimits",
    "SandboxFactory",
    "SandboxHandle",
    "SandboxProcess",
    "SandboxRuntime",
    "SessionManager",
    "SessionState",
    "StatusEvent",
    "SourceBundle",
]
