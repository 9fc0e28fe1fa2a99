# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview


class OutputBuffer:
    """Append-only buffer keeping the most recent ``cap_bytes`` of process output.

    Oldest bytes are evicted first so a noisy guest cannot grow host memory.
    """

    def __init__(self, cap_bytes: int):
        if cap_bytes <= 0:
            raise ValueError("cap_bytes must be positive")
        self.cap_bytes = cap_bytes
        self._data = bytearray()
        self.total_bytes = 0

    def append(self, chunk: bytes) -> None:
        self.total_bytes += len(chunk)
        if len(chunk) >= self.cap_bytes:
            self._data = bytearray(chunk[-self.cap_bytes :])
            return
        self._data.extend(chunk)
        overflow = len(self._data) - self.cap_bytes
        if overflow > 0:
            del self._data[:overflow]

    @property
    def dropped_bytes(self) -> int:
        return self.total_bytes - len(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def getvalue(self) -> bytes:
        return bytes(self._data)

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")
