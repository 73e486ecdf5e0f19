"""Forced termination and CancellationController tests."""

from __future__ import annotations

import asyncio
import sys
import threading
from unittest import mock

import pytest

from procpump.cancellation import CancellationToken
from procpump.runtime.termination import CancellationController, kill_process

pytestmark = pytest.mark.timeout(30)


async def spawn_sleeper(*, new_session: bool = True) -> asyncio.subprocess.Process:
    kwargs = {"start_new_session": True} if new_session and sys.platform != "win32" else {}
    return await asyncio.create_subprocess_exec(
        sys.executable, "-c", "import time; time.sleep(60)",
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        **kwargs,
    )


# =============================================================================
# kill_process
# =============================================================================


class TestKillProcess:
    @pytest.mark.asyncio
    async def test_kills_running_process(self):
        process = await spawn_sleeper()

        assert kill_process(process) is True
        returncode = await asyncio.wait_for(process.wait(), timeout=10)

        assert returncode != 0

    @pytest.mark.asyncio
    async def test_kills_without_process_group(self):
        process = await spawn_sleeper(new_session=False)

        assert kill_process(process, process_group=False) is True
        await asyncio.wait_for(process.wait(), timeout=10)

    @pytest.mark.asyncio
    async def test_already_exited_is_noop(self):
        process = await spawn_sleeper()
        process.kill()
        await process.wait()

        assert kill_process(process) is False
        assert kill_process(process) is False

    def test_process_lookup_error_is_benign(self):
        process = mock.MagicMock(pid=999999, returncode=None)
        process.kill.side_effect = ProcessLookupError()

        assert kill_process(process, process_group=False) is False

    def test_other_os_error_is_logged(self, caplog: pytest.LogCaptureFixture):
        process = mock.MagicMock(pid=999999, returncode=None)
        process.kill.side_effect = PermissionError("denied")

        assert kill_process(process, process_group=False) is False
        assert any("Error killing subprocess" in r.getMessage() for r in caplog.records)

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
    def test_does_not_signal_foreign_group(self):
        """A child sharing the caller's group is killed on its own."""
        process = mock.MagicMock(pid=12345, returncode=None)

        with mock.patch("procpump.runtime.termination.os.getpgid", return_value=1), \
                mock.patch("procpump.runtime.termination.os.killpg") as killpg:
            assert kill_process(process) is True

        killpg.assert_not_called()
        process.kill.assert_called_once()


# =============================================================================
# CancellationController
# =============================================================================


class TestCancellationController:
    @pytest.mark.asyncio
    async def test_token_kills_process(self):
        process = await spawn_sleeper()
        token = CancellationToken()

        with CancellationController(process, token) as controller:
            token.cancel()
            await asyncio.wait_for(process.wait(), timeout=10)

        assert controller.fired

    @pytest.mark.asyncio
    async def test_already_cancelled_token_fires_on_arm(self):
        process = await spawn_sleeper()
        killed = []

        controller = CancellationController(
            process, CancellationToken.cancelled(), on_kill=lambda: killed.append(True)
        )
        controller.arm()
        await asyncio.wait_for(process.wait(), timeout=10)
        controller.disarm()

        assert killed == [True]
        assert controller.fired

    @pytest.mark.asyncio
    async def test_cancel_from_other_thread(self):
        process = await spawn_sleeper()
        token = CancellationToken()

        with CancellationController(process, token) as controller:
            thread = threading.Thread(target=token.cancel)
            thread.start()
            await asyncio.wait_for(process.wait(), timeout=10)
            thread.join()

        assert controller.fired

    @pytest.mark.asyncio
    async def test_disarmed_controller_ignores_token(self):
        process = await spawn_sleeper()
        token = CancellationToken()

        controller = CancellationController(process, token)
        with controller:
            pass
        token.cancel()
        await asyncio.sleep(0.1)

        assert not controller.fired
        assert process.returncode is None

        process.kill()
        await process.wait()

    @pytest.mark.asyncio
    async def test_no_token(self):
        process = await spawn_sleeper()

        with CancellationController(process, None) as controller:
            assert controller.kill() is True
            await asyncio.wait_for(process.wait(), timeout=10)

        assert controller.fired

    @pytest.mark.asyncio
    async def test_kill_after_exit_is_safe(self):
        process = await spawn_sleeper()
        token = CancellationToken()

        with CancellationController(process, token) as controller:
            controller.kill()
            await process.wait()
            assert controller.kill() is False
