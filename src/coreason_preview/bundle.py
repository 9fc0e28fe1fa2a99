# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

import hashlib
import io
import tarfile
from collections.abc import Iterator, Mapping
from posixpath import normpath
from types import MappingProxyType


class BundleError(ValueError):
    """Raised when a source bundle cannot be normalized."""


def normalize_path(path: str) -> str:
    """Normalize a bundle path to a relative POSIX path inside the bundle root.

    Raises:
        BundleError: If the path is empty or escapes the root.
    """
    cleaned = path.replace("\\", "/").lstrip("/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    if not cleaned:
        raise BundleError(f"Invalid empty path in bundle: {path!r}")
    if ".." in cleaned.split("/"):
        raise BundleError(f"Path escapes bundle root: {path!r}")
    normalized = normpath(cleaned)
    if normalized == ".":
        raise BundleError(f"Invalid empty path in bundle: {path!r}")
    return normalized


class SourceBundle(Mapping[str, bytes]):
    """Immutable mapping of relative file path to file content.

    Built once from whatever the collaborator supplied (repository listing,
    extracted archive, generated code) and owned by a single session.
    """

    def __init__(self, files: Mapping[str, bytes]):
        self._files = MappingProxyType(dict(files))

    @classmethod
    def from_mapping(cls, files: Mapping[str, str | bytes]) -> "SourceBundle":
        """Build a bundle from a path to content mapping.

        Args:
            files: Text or binary contents keyed by path. Text is UTF-8 encoded.

        Returns:
            SourceBundle: The normalized bundle.

        Raises:
            BundleError: If a path is invalid or two paths collide after normalization.
        """
        normalized: dict[str, bytes] = {}
        for raw_path, content in files.items():
            path = normalize_path(raw_path)
            if path in normalized:
                raise BundleError(f"Duplicate path in bundle: {path}")
            normalized[path] = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        return cls(normalized)

    def __getitem__(self, path: str) -> bytes:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    @property
    def total_bytes(self) -> int:
        return sum(len(content) for content in self._files.values())

    def text(self, path: str) -> str:
        return self._files[path].decode("utf-8")

    def digest(self) -> str:
        """Stable SHA-256 over the sorted (path, content) pairs."""
        sha = hashlib.sha256()
        for path in sorted(self._files):
            sha.update(path.encode("utf-8"))
            sha.update(b"\0")
            sha.update(hashlib.sha256(self._files[path]).digest())
        return sha.hexdigest()

    def to_tar(self) -> bytes:
        """Pack the bundle into an uncompressed tar archive rooted at '.'."""
        tar_stream = io.BytesIO()
        with tarfile.open(fileobj=tar_stream, mode="w") as tar:
            for path in sorted(self._files):
                content = self._files[path]
                info = tarfile.TarInfo(name=path)
                info.size = len(content)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(content))
        return tar_stream.getvalue()
