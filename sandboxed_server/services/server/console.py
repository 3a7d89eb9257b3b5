"""Interactive console protocol over a child process's standard streams.

The server runs its shell in console mode: statements go in on stdin, and
once a statement has been evaluated the shell prints a prompt such as
``(riaktest123@127.0.0.1)4>``. Seeing that prompt is the only readiness
signal the console offers, so everything printed before it (boot logs,
statement results) is skipped.
"""

import asyncio
import codecs
import re
import time
from typing import Optional, Pattern

import structlog

from ...models.errors import ServerTimeoutError

logger = structlog.get_logger(__name__)

# Console statements
KICKSTART_COMMAND = ""
STOP_COMMAND = "init:stop()."
RESTART_COMMAND = "init:restart()."

READ_CHUNK_SIZE = 4096


def reset_command(backend: str) -> str:
    """Statement that empties an in-memory storage backend."""
    return f"{backend}:reset()."


def prompt_pattern(node_name: str) -> Pattern[str]:
    """Pattern of the console prompt for ``node_name``."""
    return re.compile(r"\(" + re.escape(node_name) + r"\)(\d+)>")


class ConsoleSession:
    """Line-oriented session with a server console.

    Wraps the three pipes of the spawned process. Output read while waiting
    for a prompt is buffered; whatever follows a matched prompt stays in the
    buffer for the next wait.
    """

    def __init__(
        self,
        stdin: asyncio.StreamWriter,
        stdout: asyncio.StreamReader,
        stderr: Optional[asyncio.StreamReader] = None,
    ):
        self._stdin: Optional[asyncio.StreamWriter] = stdin
        self._stdout: Optional[asyncio.StreamReader] = stdout
        self._stderr: Optional[asyncio.StreamReader] = stderr
        self._buffer = ""
        # Counter of the last prompt read, accepted or skipped
        self._counter: Optional[int] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @classmethod
    def for_process(cls, process: asyncio.subprocess.Process) -> "ConsoleSession":
        return cls(process.stdin, process.stdout, process.stderr)

    @property
    def closed(self) -> bool:
        return self._stdin is None

    async def send_line(self, text: str) -> None:
        """Write one statement followed by a newline and flush it.

        Raises:
            BrokenPipeError: If the console no longer accepts input
        """
        if self._stdin is None or self._stdin.is_closing():
            raise BrokenPipeError("Console input is closed")

        try:
            self._stdin.write(f"{text}\n".encode("utf-8"))
            await self._stdin.drain()
        except ConnectionResetError as e:
            raise BrokenPipeError(str(e)) from e

        logger.debug("Sent console line", line=text)

    async def await_prompt(
        self, node_name: str, timeout: float, evaluated: bool = False
    ) -> str:
        """Wait until the console prints the prompt for ``node_name``.

        The shell only advances the prompt counter after evaluating a
        statement; a blank line reprints the current one. With
        ``evaluated`` set, prompts that don't advance past the one read
        before them are skipped, so a wait after ``send_line`` can't be
        satisfied by a prompt printed earlier. A counter going back down
        (the shell restarted) is not an advance either.

        Args:
            node_name: Node name the prompt is parameterized by
            timeout: Maximum time to wait in seconds
            evaluated: Only accept the prompt following an evaluated statement

        Returns:
            The matched prompt text

        Raises:
            ServerTimeoutError: If the prompt doesn't appear in time
            BrokenPipeError: If the console output closes first
        """
        pattern = prompt_pattern(node_name)
        start_time = time.perf_counter()

        try:
            prompt = await asyncio.wait_for(self._read_until(pattern, evaluated), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Console prompt timeout",
                node=node_name,
                timeout=timeout,
                pending_output=self._buffer[-200:],
            )
            raise ServerTimeoutError(
                f"No console prompt from {node_name} within {timeout} seconds"
            )

        elapsed = time.perf_counter() - start_time
        logger.debug("Console prompt", prompt=prompt, elapsed_ms=f"{elapsed * 1000:.1f}")
        return prompt

    async def _read_until(self, pattern: Pattern[str], evaluated: bool) -> str:
        while True:
            match = pattern.search(self._buffer)
            if match:
                self._buffer = self._buffer[match.end():]
                previous, self._counter = self._counter, int(match.group(1))
                if evaluated and previous is not None and self._counter <= previous:
                    logger.debug("Skipped stale console prompt", prompt=match.group(0))
                    continue
                return match.group(0)

            if self._stdout is None:
                raise BrokenPipeError("Console output is closed")

            chunk = await self._stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                raise BrokenPipeError("Console output ended before prompt")
            self._buffer += self._decoder.decode(chunk)

    def close(self) -> None:
        """Close the console streams. Safe to call more than once."""
        stdin, self._stdin = self._stdin, None
        self._stdout = None
        self._stderr = None
        self._buffer = ""

        if stdin is not None:
            try:
                stdin.close()
            except (OSError, RuntimeError) as e:
                logger.debug("Error closing console input", error=str(e))
