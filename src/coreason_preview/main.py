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
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from coreason_preview.bundle import BundleError, SourceBundle
from coreason_preview.messages import MessageCatalog
from coreason_preview.models import FailureKind
from coreason_preview.session_manager import SessionManager
from coreason_preview.utils.logger import logger

# Initialize Preview Logic
manager = SessionManager()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Tear down every preview sandbox when the server stops."""
    try:
        yield
    finally:
        await manager.shutdown()


# Initialize MCP Server
mcp = FastMCP("coreason-preview", lifespan=lifespan)


@mcp.tool()  # type: ignore[misc]
async def start_preview(app_id: str, files: dict[str, str]) -> dict[str, Any]:
    """
    Run an app bundle in an isolated sandbox.
    Returns once the preview is running or has failed, with its URL or a user-safe error.
    """
    try:
        bundle = SourceBundle.from_mapping(files)
    except BundleError as e:
        return {"app_id": app_id, "state": "failed", "error": "launch_failure", "reason": str(e)}

    try:
        session = await manager.start_preview(app_id, bundle)
    except Exception as e:
        # Adapter errors stay in the log; the caller gets a fixed message.
        logger.error(f"Failed to start preview for {app_id}: {e}")
        messages = MessageCatalog(manager.config.locale, manager.config.memory_limit_mb)
        return {
            "app_id": app_id,
            "state": "failed",
            "error": FailureKind.UNKNOWN.value,
            "reason": messages.failure(FailureKind.UNKNOWN),
        }

    if session is None:
        return {"app_id": app_id, "state": None}
    try:
        await session.wait_settled(timeout=manager.config.settle_timeout)
    except asyncio.TimeoutError:
        # Still installing or starting; the caller polls preview_status.
        pass
    return session.snapshot()


@mcp.tool()  # type: ignore[misc]
async def preview_status(app_id: str) -> dict[str, Any]:
    """
    Current state of an app's preview session.
    """
    session = manager.get(app_id)
    if session is None:
        return {"app_id": app_id, "state": None}
    return session.snapshot()


@mcp.tool()  # type: ignore[misc]
async def stop_preview(app_id: str) -> str:
    """
    Stop an app's preview and release its sandbox.
    """
    try:
        stopped = await manager.stop_preview(app_id)
    except Exception as e:
        return f"Error stopping preview: {e!s}"
    return f"Preview for {app_id} stopped." if stopped else f"No preview running for {app_id}."


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
