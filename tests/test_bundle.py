# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

import io
import tarfile

import pytest
from coreason_preview.bundle import BundleError, SourceBundle, normalize_path


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("package.json", "package.json"),
        ("/src/App.jsx", "src/App.jsx"),
        ("./src/./main.js", "src/main.js"),
        ("src\\components\\Button.tsx", "src/components/Button.tsx"),
    ],
)
def test_normalize_path(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected


@pytest.mark.parametrize("raw", ["", "/", "./", ".", "./.", "src/..", "../secret", "src/../../etc/passwd"])
def test_normalize_path_rejects(raw: str) -> None:
    with pytest.raises(BundleError):
        normalize_path(raw)


def test_from_mapping_encodes_text() -> None:
    bundle = SourceBundle.from_mapping({"index.js": "console.log('é')", "logo.png": b"\x89PNG"})

    assert bundle["index.js"] == "console.log('é')".encode()
    assert bundle["logo.png"] == b"\x89PNG"
    assert bundle.text("index.js") == "console.log('é')"
    assert len(bundle) == 2
    assert bundle.total_bytes == len("console.log('é')".encode()) + 4


def test_from_mapping_rejects_collisions() -> None:
    with pytest.raises(BundleError, match="Duplicate path"):
        SourceBundle.from_mapping({"src/a.js": "1", "/src/a.js": "2"})


def test_bundle_is_immutable() -> None:
    source = {"index.js": b"1"}
    bundle = SourceBundle(source)
    source["index.js"] = b"2"

    assert bundle["index.js"] == b"1"
    with pytest.raises(TypeError):
        bundle._files["index.js"] = b"3"  # type: ignore[index]


def test_digest_ignores_insertion_order() -> None:
    one = SourceBundle.from_mapping({"a.js": "1", "b.js": "2"})
    two = SourceBundle.from_mapping({"b.js": "2", "a.js": "1"})
    three = SourceBundle.from_mapping({"a.js": "1", "b.js": "3"})

    assert one.digest() == two.digest()
    assert one.digest() != three.digest()


def test_to_tar_preserves_layout() -> None:
    bundle = SourceBundle.from_mapping({"package.json": "{}", "src/App.jsx": "export default 1"})

    with tarfile.open(fileobj=io.BytesIO(bundle.to_tar())) as tar:
        members = {m.name: m for m in tar.getmembers()}
        assert set(members) == {"package.json", "src/App.jsx"}
        extracted = tar.extractfile(members["src/App.jsx"])
        assert extracted is not None
        assert extracted.read() == b"export default 1"
