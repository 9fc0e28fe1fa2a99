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
import inspect
import time
from collections.abc import Awaitable, Callable

from coreason_preview.bundle import SourceBundle
from coreason_preview.config import PreviewConfig
from coreason_preview.factory import SandboxFactory
from coreason_preview.messages import MessageCatalog
from coreason_preview.session import PreviewSession
from coreason_preview.utils.logger import logger

PreflightHook = Callable[[str], bool | Awaitable[bool]]


class SessionManager:
    """Manages the lifecycle of preview sessions.

    Holds at most one active session per app id. A new preview request for an
    app tears down the previous session and creates a fresh one. A background
    reaper tears down sessions that outlive the configured TTL.
    """

    def __init__(self, config: PreviewConfig | None = None):
        """Initializes the SessionManager.

        Args:
            config: Optional configuration object. If not provided, defaults are used.
        """
        self.config = config or PreviewConfig()
        self.sessions: dict[str, PreviewSession] = {}
        self._reaper_task: asyncio.Task[None] | None = None
        self._creation_lock = asyncio.Lock()

    async def start_preview(
        self,
        app_id: str,
        bundle: SourceBundle,
        preflight: PreflightHook | None = None,
    ) -> PreviewSession | None:
        """Create and start a preview session for an app.

        Args:
            app_id: The app being previewed.
            bundle: The files to run.
            preflight: Optional gate (sync or async) run before anything is
                allocated, e.g. a credit check. Returning False aborts.

        Returns:
            PreviewSession | None: The started session, or None if the gate refused.

        Raises:
            ValueError: If app_id is empty.
        """
        if not app_id:
            raise ValueError("App ID is required")

        if preflight is not None:
            allowed = preflight(app_id)
            if inspect.isawaitable(allowed):
                allowed = await allowed
            if not allowed:
                logger.info(f"Preflight refused preview for app {app_id}")
                return None

        await self._start_reaper_if_needed()

        async with self._creation_lock:
            previous = self.sessions.pop(app_id, None)
            if previous is not None:
                logger.info(f"Replacing preview session {previous.session_id} for app {app_id}")
                await previous.teardown()

            limits = self.config.limits()
            runtime = SandboxFactory.get_runtime(self.config)
            session = PreviewSession(
                app_id=app_id,
                bundle=bundle,
                runtime=runtime,
                limits=limits,
                messages=MessageCatalog(self.config.locale, limits.memory_limit_mb),
                install_command=self.config.install_command,
            )
            logger.info(
                "Allocating preview session",
                app_id=app_id,
                runtime=type(runtime).__name__,
            )
            self.sessions[app_id] = session
            session.start()
            return session

    def get(self, app_id: str) -> PreviewSession | None:
        return self.sessions.get(app_id)

    async def stop_preview(self, app_id: str) -> bool:
        """Tear down the app's session. Returns False if there was none."""
        session = self.sessions.pop(app_id, None)
        if session is None:
            return False
        await session.teardown()
        return True

    async def _start_reaper_if_needed(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        """Background task that tears down expired sessions and forgets finished ones."""
        logger.info("Session reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                now = time.time()
                expired_ids = [
                    app_id
                    for app_id, session in self.sessions.items()
                    if session.released or now - session.started_at > self.config.session_ttl
                ]

                for app_id in expired_ids:
                    session = self.sessions.pop(app_id, None)
                    if session is None:
                        continue
                    if not session.released:
                        logger.info(f"Session {session.session_id} expired. Tearing down.")
                    try:
                        await session.teardown()
                    except Exception as e:
                        logger.error(f"Error tearing down expired session {session.session_id}: {e}")

        except asyncio.CancelledError:
            logger.info("Session reaper cancelled")
        except Exception as e:
            logger.error(f"Session reaper crashed: {e}")

    async def shutdown(self) -> None:
        """Stop the reaper and tear down every session."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        logger.info(f"Shutting down SessionManager. Tearing down {len(self.sessions)} sessions.")

        sessions_to_close = list(self.sessions.values())
        self.sessions.clear()

        for session in sessions_to_close:
            try:
                await session.teardown()
            except Exception as e:
                logger.error(f"Error tearing down session during shutdown: {e}")
