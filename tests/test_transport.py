"""Tests for process spawning, capture, deadlines and cleanup."""

import asyncio
import gc
import sys
import time

import pytest

from cli_agents.exceptions import CliTimeoutError, ProcessSpawnError
from cli_agents.services import transport as transport_module
from cli_agents.services.transport import ProcessTransport

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="stub CLIs are shell scripts")


@pytest.fixture
def transport():
    return ProcessTransport(kill_grace_period=0.5)


async def wait_until_gone(pid, process_alive, within=3.0):
    deadline = time.monotonic() + within
    while time.monotonic() < deadline:
        if not process_alive(pid):
            return True
        await asyncio.sleep(0.05)
    return False


class TestExecute:
    """Test blocking execution."""

    @pytest.mark.asyncio
    async def test_captures_streams_and_exit_code(self, transport, make_cli):
        """Test stdout, stderr and exit code capture."""
        cli = make_cli('echo "line one"\necho "line two"\necho "warning: slow" >&2\nexit 3\n')

        output = await transport.execute([cli, "prompt"], timeout=10)

        assert output.stdout == "line one\nline two"
        assert output.stderr.strip() == "warning: slow"
        assert output.exit_code == 3
        assert output.duration > 0
        assert not output.truncated

    @pytest.mark.asyncio
    async def test_stdin_piped_and_closed(self, transport, make_cli):
        """Test that stdin bytes reach the process and EOF follows."""
        cli = make_cli("cat\n")

        output = await transport.execute([cli], stdin=b"hello from stdin\n", timeout=10)

        assert output.stdout == "hello from stdin"
        assert output.exit_code == 0

    @pytest.mark.asyncio
    async def test_env_and_cwd(self, transport, make_cli, tmp_path):
        """Test environment additions and working directory."""
        workdir = tmp_path / "work"
        workdir.mkdir()
        cli = make_cli('echo "$AGENT_FLAG"\npwd\n')

        output = await transport.execute([cli], cwd=str(workdir), env={"AGENT_FLAG": "on"}, timeout=10)

        lines = output.stdout.splitlines()
        assert lines[0] == "on"
        assert lines[1].endswith("work")

    @pytest.mark.asyncio
    async def test_missing_executable(self, transport, tmp_path):
        """Test that a missing binary raises ProcessSpawnError."""
        with pytest.raises(ProcessSpawnError) as exc_info:
            await transport.execute([str(tmp_path / "no-such-cli")], timeout=5)

        assert exc_info.value.executable.endswith("no-such-cli")

    @pytest.mark.asyncio
    async def test_output_cap(self, transport, make_cli):
        """Test that stdout beyond the cap is dropped and flagged."""
        cli = make_cli('i=0\nwhile [ $i -lt 200 ]; do echo "0123456789012345678901234567890123456789"; i=$((i+1)); done\n')

        output = await transport.execute([cli], timeout=10, max_output_bytes=1000)

        assert output.truncated
        assert len(output.stdout) <= 1000
        assert output.exit_code == 0

    @pytest.mark.asyncio
    async def test_overlong_lines_dropped_whole(self, transport, make_cli, monkeypatch):
        """Test that a line over the line limit is dropped with none of its tail surfacing."""
        monkeypatch.setattr(transport_module, "LINE_LIMIT", 1024)
        cli = make_cli(
            "head -c 5000 /dev/zero | tr '\\0' x; echo\n"
            "echo first\n"
            "head -c 3000 /dev/zero | tr '\\0' y; sleep 0.3; head -c 3000 /dev/zero | tr '\\0' y; echo\n"
            "echo second\n"
        )

        output = await transport.execute([cli], timeout=10)

        assert output.stdout == "first\nsecond"
        assert output.truncated


class TestDeadline:
    """Test timeout enforcement."""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, transport, make_cli, process_alive):
        """Test that a hanging CLI is killed and CliTimeoutError raised."""
        cli = make_cli("echo started\nsleep 30\n")
        stream = transport.stream([cli], timeout=0.5)

        started = time.monotonic()
        with pytest.raises(CliTimeoutError) as exc_info:
            async with stream:
                async for _ in stream:
                    pass

        assert time.monotonic() - started < 5
        assert exc_info.value.timeout == 0.5
        assert await wait_until_gone(stream.pid, process_alive)

    @pytest.mark.asyncio
    async def test_timeout_kills_process_group(self, transport, make_cli, process_alive):
        """Test that children spawned by the CLI die with it."""
        cli = make_cli("sleep 30 &\necho $!\nwait\n")
        stream = transport.stream([cli], timeout=0.5)

        with pytest.raises(CliTimeoutError):
            async with stream:
                child_pid = int(await stream.__anext__())
                async for _ in stream:
                    pass

        assert await wait_until_gone(child_pid, process_alive)

    @pytest.mark.asyncio
    async def test_sigterm_ignored_escalates(self, transport, make_cli, process_alive):
        """Test that a process ignoring SIGTERM is killed after the grace period."""
        cli = make_cli("trap '' TERM\nsleep 30\n")
        stream = transport.stream([cli], timeout=0.3)

        with pytest.raises(CliTimeoutError):
            async with stream:
                async for _ in stream:
                    pass
        assert await wait_until_gone(stream.pid, process_alive)

    @pytest.mark.asyncio
    async def test_timeout_without_output_for_idle_consumer(self, transport, make_cli):
        """Test that a silent process still times out."""
        cli = make_cli("sleep 30\n")

        started = time.monotonic()
        with pytest.raises(CliTimeoutError):
            await transport.execute([cli], timeout=0.3)

        assert time.monotonic() - started < 5


class TestStreamLifecycle:
    """Test early close, cancellation and abandonment."""

    @pytest.mark.asyncio
    async def test_lines_arrive_incrementally(self, transport, make_cli):
        """Test that the first line is available before the process exits."""
        cli = make_cli("echo first\nsleep 2\necho second\n")

        async with transport.stream([cli], timeout=10) as stream:
            started = time.monotonic()
            first = await stream.__anext__()
            assert first == "first"
            assert time.monotonic() - started < 1.5

    @pytest.mark.asyncio
    async def test_early_close_kills_process(self, transport, make_cli, process_alive):
        """Test that leaving the context early terminates the process."""
        cli = make_cli("echo ready\nsleep 30\n")

        async with transport.stream([cli], timeout=30) as stream:
            async for line in stream:
                assert line == "ready"
                break

        assert stream.cancelled
        assert await wait_until_gone(stream.pid, process_alive)

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, transport, make_cli):
        """Test repeated aclose calls."""
        cli = make_cli("echo done\n")
        stream = await transport.stream([cli], timeout=10).start()

        lines = [line async for line in stream]
        await stream.aclose()
        await stream.aclose()

        assert lines == ["done"]
        assert stream.exit_code == 0
        assert not stream.cancelled

    @pytest.mark.asyncio
    async def test_task_cancellation_kills_process(self, transport, make_cli, process_alive):
        """Test that cancelling the consuming task kills the process."""
        cli = make_cli("echo ready\nsleep 30\n")
        stream = transport.stream([cli], timeout=30)
        ready = asyncio.Event()

        async def consume():
            async for _ in stream:
                ready.set()

        task = asyncio.create_task(consume())
        await asyncio.wait_for(ready.wait(), 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert stream.cancelled
        assert await wait_until_gone(stream.pid, process_alive)

    @pytest.mark.asyncio
    async def test_abandoned_stream_is_killed(self, transport, make_cli, process_alive):
        """Test that garbage-collecting an unfinished stream kills its process."""
        cli = make_cli("echo ready\nsleep 30\n")
        stream = await transport.stream([cli], timeout=30).start()
        await stream.__anext__()
        pid = stream.pid

        del stream
        gc.collect()

        assert await wait_until_gone(pid, process_alive)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
