"""Pytest configuration and shared fixtures."""

import asyncio
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from sandboxed_server.config import Settings

# Stand-in for an installed launcher script. In console mode it reads its
# node name from vm.args, prints a prompt after every line and exits on
# init:stop(). Like the Erlang shell, only non-blank lines advance the
# prompt counter.
TEMPLATE_SCRIPT = """\
#!/bin/sh
RUNNER_SCRIPT_DIR=/usr/lib/riak/bin
RUNNER_BASE_DIR=${RUNNER_SCRIPT_DIR%/*}
RUNNER_ETC_DIR=/etc/riak
RUNNER_LOG_DIR=/var/log/riak
PIPE_DIR=/tmp/riak/pipe
RUNNER_USER=riak

NODE=`sed -n 's/^-name //p' "$RUNNER_ETC_DIR/vm.args"`
echo "Exec: $RUNNER_BASE_DIR/erts/bin/erlexec -boot $1 -name $NODE"
count=1
printf '(%s)%d> ' "$NODE" "$count"
while read -r line; do
    case "$line" in
        "init:stop().")
            echo "ok"
            exit 0
            ;;
    esac
    if [ -n "$line" ]; then
        count=$((count + 1))
    fi
    printf '(%s)%d> ' "$NODE" "$count"
done
"""


@pytest.fixture
def template_bin_dir(tmp_path) -> Path:
    """An installation bin directory holding a template launcher script."""
    bin_dir = tmp_path / "riak" / "bin"
    bin_dir.mkdir(parents=True)
    script = bin_dir / "riak"
    script.write_text(TEMPLATE_SCRIPT, encoding="utf-8")
    os.chmod(script, 0o755)
    return bin_dir


@pytest.fixture
def slow_reset_bin_dir(tmp_path) -> Path:
    """A launcher that takes a second to evaluate a backend reset.

    Once done it touches ``reset_done`` in its log directory.
    """
    bin_dir = tmp_path / "slow" / "bin"
    bin_dir.mkdir(parents=True)
    script = bin_dir / "riak"
    script.write_text(
        TEMPLATE_SCRIPT.replace(
            '        "init:stop().")',
            "        *reset*)\n"
            "            sleep 1\n"
            '            touch "$RUNNER_LOG_DIR/reset_done"\n'
            "            ;;\n"
            '        "init:stop().")',
        ),
        encoding="utf-8",
    )
    os.chmod(script, 0o755)
    return bin_dir


@pytest.fixture
def test_settings(tmp_path, template_bin_dir) -> Settings:
    """Settings pointing into the test's temp directory with short timeouts."""
    return Settings(
        bin_dir=str(template_bin_dir),
        temp_dir=str(tmp_path / "sandbox"),
        prompt_timeout_seconds=2.0,
        startup_timeout_seconds=1.0,
        shutdown_timeout_seconds=1.0,
    )


class FakeConsoleProcess:
    """Stands in for an ``asyncio.subprocess.Process`` running a console.

    Must be created inside a running event loop.
    """

    def __init__(self, node_name: str, pid: int = 4242, respond: bool = True,
                 exit_on_stop: bool = True):
        self.node_name = node_name
        self.pid = pid
        self.returncode = None
        self.respond = respond
        self.exit_on_stop = exit_on_stop
        self.lines = []
        self._count = 1
        self._exited = asyncio.Event()

        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin = MagicMock()
        self.stdin.is_closing.return_value = False
        self.stdin.write.side_effect = self._on_write
        self.stdin.drain = AsyncMock()
        self.kill = MagicMock(side_effect=self._exit)

        self.stdout.feed_data(b"Erlang R14B04 (erts-5.8.5) [smp:4:4] [rq:4]\n")

    def prompt(self, advance: bool = True):
        if advance:
            self._count += 1
        self.stdout.feed_data(f"({self.node_name}){self._count}> ".encode())

    def _on_write(self, data: bytes):
        line = data.decode("utf-8").rstrip("\n")
        self.lines.append(line)
        if line == "init:stop()." and self.exit_on_stop:
            self._exit(0)
        elif self.respond:
            # A blank line reprints the current prompt
            self.prompt(advance=bool(line))

    def _exit(self, code: int = -9):
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode


@pytest.fixture
def fake_process_factory():
    """Build fake console processes (call from inside an async test)."""
    return FakeConsoleProcess
