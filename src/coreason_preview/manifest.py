# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

import json
from collections.abc import Sequence
from dataclasses import dataclass, field

from coreason_preview.bundle import SourceBundle

MANIFEST_PATH = "package.json"

# Preference order for the entry script.
ENTRY_SCRIPTS = ("dev", "start", "serve")
DEFAULT_ENTRY_SCRIPT = "start"
DEFAULT_INSTALL_COMMAND = ("npm", "install")


class ManifestError(ValueError):
    """Raised when the bundle's package descriptor is missing or unreadable."""


@dataclass(frozen=True)
class Manifest:
    """Parsed subset of package.json."""

    scripts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, content: str) -> "Manifest":
        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            raise ManifestError(f"{MANIFEST_PATH} is not valid JSON: {e}") from e

        if not isinstance(document, dict):
            raise ManifestError(f"{MANIFEST_PATH} must contain a JSON object")

        scripts = document.get("scripts") or {}
        if not isinstance(scripts, dict):
            raise ManifestError(f"'scripts' in {MANIFEST_PATH} must be an object")

        return cls(scripts={name: cmd for name, cmd in scripts.items() if isinstance(cmd, str)})

    @classmethod
    def from_bundle(cls, bundle: SourceBundle) -> "Manifest":
        """Read the manifest from the bundle root.

        Raises:
            ManifestError: If package.json is absent, undecodable or malformed.
        """
        if MANIFEST_PATH not in bundle:
            raise ManifestError(f"{MANIFEST_PATH} not found in bundle")
        try:
            content = bundle.text(MANIFEST_PATH)
        except UnicodeDecodeError as e:
            raise ManifestError(f"{MANIFEST_PATH} is not UTF-8 text") from e
        return cls.parse(content)


@dataclass(frozen=True)
class EntryPlan:
    """Commands used to install and start a bundle."""

    install: list[str]
    start: list[str]
    script: str


def resolve_start_script(manifest: Manifest) -> str:
    for name in ENTRY_SCRIPTS:
        if name in manifest.scripts:
            return name
    # A missing script fails later through the normal start exit path.
    return DEFAULT_ENTRY_SCRIPT


def resolve_entry(manifest: Manifest, install_command: Sequence[str] = DEFAULT_INSTALL_COMMAND) -> EntryPlan:
    script = resolve_start_script(manifest)
    return EntryPlan(install=list(install_command), start=["npm", "run", script], script=script)
