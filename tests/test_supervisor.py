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

import pytest
from coreason_preview.messages import MessageCatalog
from coreason_preview.models import FailureKind, ResourceLimits, SessionState
from coreason_preview.session import PreviewSession
from coreason_preview.signals import ServerReady, StartupTimeout

from fakes import (
    FakeRuntime,
    allocates_forever,
    exits,
    floods,
    hangs,
    make_bundle,
    ready,
    wait_for_state,
)

MESSAGES = MessageCatalog()


def states(session: PreviewSession) -> list[SessionState]:
    return [event.state for event in session.history]


@pytest.mark.asyncio
async def test_ready_signal_reaches_running_with_url(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": ready("http://sandbox/3000")})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.state is SessionState.RUNNING
    assert event.url == "http://sandbox/3000"
    assert session.url == "http://sandbox/3000"
    assert states(session) == [
        SessionState.MOUNTING,
        SessionState.INSTALLING,
        SessionState.STARTING,
        SessionState.RUNNING,
    ]
    assert [p.argv for p in runtime.spawned] == [["npm", "install"], ["npm", "run", "dev"]]

    await session.teardown()


@pytest.mark.asyncio
async def test_dev_exit_1_is_launch_failure_with_fixed_reason(limits: ResourceLimits) -> None:
    raw = b"npm ERR! code ELIFECYCLE\nnpm ERR! errno 1\n"
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": exits(1, raw)})
    session = PreviewSession("app-1", make_bundle({"dev": "exit 1"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.state is SessionState.FAILED
    assert event.error_classification is FailureKind.LAUNCH_FAILURE
    assert event.reason_message == MESSAGES.failure(FailureKind.LAUNCH_FAILURE)
    assert "ELIFECYCLE" not in event.reason_message
    assert SessionState.RUNNING not in states(session)
    # Raw output stays available for diagnostics only.
    assert "ELIFECYCLE" in session.output.text()


@pytest.mark.asyncio
async def test_missing_manifest_is_launch_failure(limits: ResourceLimits) -> None:
    runtime = FakeRuntime()
    session = PreviewSession("app-1", make_bundle(None), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.state is SessionState.FAILED
    assert event.error_classification is FailureKind.LAUNCH_FAILURE
    assert event.reason_message == MESSAGES.failure(FailureKind.LAUNCH_FAILURE, "manifest_invalid")
    assert runtime.spawned == []
    await asyncio.sleep(0.05)
    assert runtime.torn_down == runtime.mounted


@pytest.mark.asyncio
async def test_malformed_manifest_is_launch_failure(limits: ResourceLimits) -> None:
    runtime = FakeRuntime()
    bundle = make_bundle(None, **{"package.json": "{not json"})
    session = PreviewSession("app-1", bundle, runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.LAUNCH_FAILURE
    assert SessionState.RUNNING not in states(session)


@pytest.mark.asyncio
async def test_mount_failure_is_launch_failure(limits: ResourceLimits) -> None:
    runtime = FakeRuntime(mount_error=RuntimeError("docker daemon unavailable"))
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.LAUNCH_FAILURE
    assert event.reason_message == MESSAGES.failure(FailureKind.LAUNCH_FAILURE, "mount_failed")
    assert "docker" not in event.reason_message


@pytest.mark.asyncio
async def test_spawn_failure_is_launch_failure(limits: ResourceLimits) -> None:
    runtime = FakeRuntime(spawn_error=RuntimeError("exec failed"))
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.LAUNCH_FAILURE


@pytest.mark.asyncio
async def test_install_failure_never_starts(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(1, b"npm ERR! 404 Not Found")})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.LAUNCH_FAILURE
    assert event.reason_message == MESSAGES.failure(FailureKind.LAUNCH_FAILURE, "install_failed")
    assert len(runtime.spawned) == 1
    assert SessionState.STARTING not in states(session)


@pytest.mark.asyncio
async def test_missing_start_script_fails_through_start_exit() -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run start": exits(1, b'npm ERR! Missing script: "start"')})
    session = PreviewSession("app-1", make_bundle({"build": "tsc"}), runtime)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert runtime.spawned[-1].argv == ["npm", "run", "start"]
    assert event.error_classification is FailureKind.LAUNCH_FAILURE


@pytest.mark.asyncio
async def test_startup_timeout_kills_process() -> None:
    limits = ResourceLimits(startup_budget=0.1, kill_grace_period=0.5)
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": hangs()})
    session = PreviewSession("app-1", make_bundle({"dev": "node spin.js"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.state is SessionState.FAILED
    assert event.error_classification is FailureKind.STARTUP_TIMEOUT
    assert event.reason_message == MESSAGES.failure(FailureKind.STARTUP_TIMEOUT)
    dev = runtime.spawned[-1]
    assert dev.killed

    # No further output is recorded once terminated.
    seen = session.output.total_bytes
    dev.emit(b"still spinning\n")
    await asyncio.sleep(0.05)
    assert session.output.total_bytes == seen


@pytest.mark.asyncio
async def test_startup_budget_is_shared_with_install() -> None:
    limits = ResourceLimits(startup_budget=0.2, kill_grace_period=0.5)
    runtime = FakeRuntime({"npm install": exits(0, delay=0.15), "npm run dev": ready(delay=0.15)})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.STARTUP_TIMEOUT
    assert SessionState.STARTING in states(session)


@pytest.mark.asyncio
async def test_hanging_install_times_out() -> None:
    limits = ResourceLimits(startup_budget=0.1, kill_grace_period=0.5)
    runtime = FakeRuntime({"npm install": hangs()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.STARTUP_TIMEOUT
    assert runtime.spawned[0].killed


@pytest.mark.asyncio
async def test_memory_signature_fails_without_waiting_for_timer(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": allocates_forever()})
    session = PreviewSession("app-1", make_bundle({"dev": "node leak.js"}), runtime, limits)
    session.start()

    # Budget is 5s; the signature must end the session well before.
    event = await session.wait_settled(timeout=1)

    assert event.error_classification is FailureKind.MEMORY_EXCEEDED
    assert event.reason_message == MESSAGES.failure(FailureKind.MEMORY_EXCEEDED)
    assert "128MB" in event.reason_message
    assert runtime.spawned[-1].killed


@pytest.mark.asyncio
async def test_memory_exhaustion_during_install(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(134, b"FATAL ERROR: Ineffective mark-compacts near heap limit")})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.MEMORY_EXCEEDED


@pytest.mark.asyncio
async def test_oom_killed_dev_server_reported_by_npm(limits: ResourceLimits) -> None:
    # The kernel kills node before V8 can report; npm only prints the signal.
    runtime = FakeRuntime(
        {"npm install": exits(0), "npm run dev": exits(1, b"npm error command failed\nnpm error signal SIGKILL\n")}
    )
    session = PreviewSession("app-1", make_bundle({"dev": "node leak.js"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.state is SessionState.FAILED
    assert event.error_classification is FailureKind.MEMORY_EXCEEDED


@pytest.mark.asyncio
async def test_exit_137_after_running_is_memory_exceeded(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": ready()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()
    await wait_for_state(session, SessionState.RUNNING)

    runtime.spawned[-1].exit(137)
    await wait_for_state(session, SessionState.FAILED)

    assert session.failure is not None
    assert session.failure.kind is FailureKind.MEMORY_EXCEEDED


@pytest.mark.asyncio
async def test_crash_after_running_is_runtime_error(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": ready()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()
    await wait_for_state(session, SessionState.RUNNING)

    runtime.spawned[-1].emit(b"TypeError: cannot read properties of undefined\n")
    runtime.spawned[-1].exit(1)
    await wait_for_state(session, SessionState.FAILED)

    assert session.failure is not None
    assert session.failure.kind is FailureKind.RUNTIME_ERROR
    assert session.url == "http://sandbox/3000"


@pytest.mark.asyncio
async def test_clean_exit_after_running_is_done(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": ready()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()
    await wait_for_state(session, SessionState.RUNNING)

    runtime.spawned[-1].exit(0)
    await wait_for_state(session, SessionState.DONE)

    assert session.failure is None


@pytest.mark.asyncio
async def test_clean_exit_before_ready_is_unknown(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": exits(0)})
    session = PreviewSession("app-1", make_bundle({"dev": "echo done"}), runtime, limits)
    session.start()

    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.UNKNOWN


@pytest.mark.asyncio
async def test_running_disarms_startup_timer() -> None:
    limits = ResourceLimits(startup_budget=0.1, kill_grace_period=0.5)
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": ready()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()
    await wait_for_state(session, SessionState.RUNNING)

    assert not session._supervisor.watchdog.armed
    await asyncio.sleep(0.2)

    assert session.state is SessionState.RUNNING
    assert not runtime.spawned[-1].killed
    await session.teardown()


@pytest.mark.asyncio
async def test_ready_processed_before_timeout_wins(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": hangs()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()
    await wait_for_state(session, SessionState.STARTING)

    session._supervisor.post(ServerReady(3000, "http://sandbox/3000"))
    session._supervisor.post(StartupTimeout(limits.startup_budget))
    await wait_for_state(session, SessionState.RUNNING)
    await asyncio.sleep(0.05)

    assert session.state is SessionState.RUNNING
    assert SessionState.FAILED not in states(session)
    assert not runtime.spawned[-1].killed
    await session.teardown()


@pytest.mark.asyncio
async def test_timeout_processed_before_ready_wins(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": hangs()})
    session = PreviewSession("app-1", make_bundle({"dev": "vite"}), runtime, limits)
    session.start()
    await wait_for_state(session, SessionState.STARTING)

    session._supervisor.post(StartupTimeout(limits.startup_budget))
    session._supervisor.post(ServerReady(3000, "http://sandbox/3000"))
    event = await session.wait_settled(timeout=2)

    assert event.error_classification is FailureKind.STARTUP_TIMEOUT
    assert SessionState.RUNNING not in states(session)
    assert session.url is None


@pytest.mark.asyncio
async def test_output_buffer_bounded_under_flood() -> None:
    limits = ResourceLimits(output_buffer_bytes=4096)
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": floods(chunks=500, size=1000)})
    session = PreviewSession("app-1", make_bundle({"dev": "yes"}), runtime, limits)
    session.start()

    await session.wait_settled(timeout=2)

    assert len(session.output) == 4096
    assert session.output.total_bytes >= 500 * 1000


@pytest.mark.asyncio
async def test_exactly_one_terminal_event(limits: ResourceLimits) -> None:
    runtime = FakeRuntime({"npm install": exits(0), "npm run dev": exits(2)})
    session = PreviewSession("app-1", make_bundle({"dev": "node crash.js"}), runtime, limits)
    session.start()

    collected = [event async for event in session.events()]

    assert sum(1 for e in collected if e.state.is_terminal) == 1
    assert collected[-1].error_classification is FailureKind.RUNTIME_ERROR

    # Late signals after the terminal state are dropped.
    session._supervisor.post(ServerReady(3000, "http://sandbox/3000"))
    await asyncio.sleep(0.05)
    assert session.state is SessionState.FAILED
