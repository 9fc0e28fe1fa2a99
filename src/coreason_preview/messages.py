# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_preview

from typing import Literal

from coreason_preview.models import FailureKind, SessionState

Locale = Literal["en", "ja"]

_FAILURES: dict[str, dict[FailureKind | str, str]] = {
    "en": {
        FailureKind.OK: "The app exited normally.",
        FailureKind.STARTUP_TIMEOUT: "The app took too long to start. It may contain an infinite loop.",
        FailureKind.MEMORY_EXCEEDED: "The app exceeded the memory limit ({memory_limit_mb}MB) and was stopped.",
        FailureKind.RUNTIME_ERROR: "An error occurred while running the app.",
        FailureKind.LAUNCH_FAILURE: "The app failed to start. There may be a problem with its code.",
        FailureKind.UNKNOWN: "An unexpected error occurred while running the app.",
        "install_failed": "Installing the app's dependencies failed.",
        "mount_failed": "The app's files could not be loaded into the sandbox.",
        "manifest_invalid": "The app's package.json is missing or invalid.",
        "cancelled": "The preview was stopped.",
    },
    "ja": {
        FailureKind.OK: "アプリは正常に終了しました。",
        FailureKind.STARTUP_TIMEOUT: "アプリの起動に時間がかかりすぎています。無限ループの可能性があります。",
        FailureKind.MEMORY_EXCEEDED: "メモリ使用量が上限（{memory_limit_mb}MB）を超えたため、アプリを停止しました。",
        FailureKind.RUNTIME_ERROR: "アプリの実行中にエラーが発生しました。",
        FailureKind.LAUNCH_FAILURE: "アプリの起動に失敗しました。コードに問題がある可能性があります。",
        FailureKind.UNKNOWN: "プロセスの実行中に予期しないエラーが発生しました。",
        "install_failed": "依存関係のインストールに失敗しました。",
        "mount_failed": "アプリのファイルを読み込めませんでした。",
        "manifest_invalid": "package.json が見つからないか、不正な形式です。",
        "cancelled": "プレビューを停止しました。",
    },
}

_STATUS: dict[str, dict[SessionState, str]] = {
    "en": {
        SessionState.IDLE: "Initializing...",
        SessionState.MOUNTING: "Mounting files...",
        SessionState.INSTALLING: "Installing dependencies...",
        SessionState.STARTING: "Starting server...",
        SessionState.RUNNING: "Running",
        SessionState.DONE: "Finished",
        SessionState.FAILED: "Error",
        SessionState.CANCELLED: "Stopped",
    },
    "ja": {
        SessionState.IDLE: "初期化中...",
        SessionState.MOUNTING: "ファイルをマウント中...",
        SessionState.INSTALLING: "依存関係をインストール中...",
        SessionState.STARTING: "サーバーを起動中...",
        SessionState.RUNNING: "実行中",
        SessionState.DONE: "終了",
        SessionState.FAILED: "エラー",
        SessionState.CANCELLED: "停止",
    },
}


class MessageCatalog:
    """Fixed, translated user-facing messages.

    Raw process output never passes through here; every message is a constant
    selected by failure kind or by a detail key.
    """

    def __init__(self, locale: Locale = "en", memory_limit_mb: int = 128):
        if locale not in _FAILURES:
            raise ValueError(f"Unsupported locale: {locale}")
        self.locale = locale
        self.memory_limit_mb = memory_limit_mb

    def failure(self, kind: FailureKind, detail: str | None = None) -> str:
        """Message for a failure kind, or for a more specific detail key when given."""
        table = _FAILURES[self.locale]
        template = table.get(detail, table[kind]) if detail else table[kind]
        return template.format(memory_limit_mb=self.memory_limit_mb)

    def detail(self, key: str) -> str:
        return _FAILURES[self.locale][key]

    def status(self, state: SessionState) -> str:
        return _STATUS[self.locale][state]
