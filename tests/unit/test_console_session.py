"""Unit tests for ConsoleSession."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from sandboxed_server.models.errors import ServerTimeoutError
from sandboxed_server.services.server.console import (
    ConsoleSession,
    prompt_pattern,
    reset_command,
)


def make_stdin():
    stdin = MagicMock()
    stdin.is_closing.return_value = False
    stdin.drain = AsyncMock()
    return stdin


class TestPromptPattern:
    """Test the console prompt pattern."""

    def test_matches_own_node(self):
        """The prompt for foo@bar matches amid other output."""
        assert prompt_pattern("foo@bar").search("...(foo@bar)42> ")

    def test_ignores_other_node(self):
        """A prompt for another node does not match."""
        assert prompt_pattern("foo@bar").search("(other@node)1> ") is None

    def test_node_name_is_escaped(self):
        """Dots in the node name are literal."""
        pattern = prompt_pattern("riak@127.0.0.1")
        assert pattern.search("(riak@127.0.0.1)1>")
        assert pattern.search("(riak@127x0x0x1)1>") is None

    def test_requires_counter(self):
        """The prompt needs a numeric counter."""
        assert prompt_pattern("foo@bar").search("(foo@bar)> ") is None


class TestAwaitPrompt:
    """Test waiting for the console prompt."""

    @pytest.mark.asyncio
    async def test_skips_log_noise(self):
        """Boot output before the prompt is ignored."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"Erlang R14B04\nEshell V5.8.5\n(other@node)3> junk\n")
        stdout.feed_data(b"(foo@bar)1> ")
        session = ConsoleSession(make_stdin(), stdout)

        prompt = await session.await_prompt("foo@bar", timeout=1)

        assert prompt == "(foo@bar)1>"

    @pytest.mark.asyncio
    async def test_prompt_split_across_reads(self):
        """A prompt arriving in pieces is still found."""
        stdout = asyncio.StreamReader()
        session = ConsoleSession(make_stdin(), stdout)

        async def feed():
            stdout.feed_data(b"(foo@")
            await asyncio.sleep(0.01)
            stdout.feed_data(b"bar)7> ")

        feeder = asyncio.create_task(feed())
        prompt = await session.await_prompt("foo@bar", timeout=1)
        await feeder

        assert prompt == "(foo@bar)7>"

    @pytest.mark.asyncio
    async def test_consumes_one_prompt_per_wait(self):
        """Output after a matched prompt is kept for the next wait."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"(foo@bar)1> ok\n(foo@bar)2> ")
        session = ConsoleSession(make_stdin(), stdout)

        assert await session.await_prompt("foo@bar", timeout=1) == "(foo@bar)1>"
        assert await session.await_prompt("foo@bar", timeout=1) == "(foo@bar)2>"

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A prompt for another node only ends in a timeout."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"(other@node)1> ")
        session = ConsoleSession(make_stdin(), stdout)

        with pytest.raises(ServerTimeoutError):
            await session.await_prompt("foo@bar", timeout=0.05)

    @pytest.mark.asyncio
    async def test_timeout_is_builtin_timeout_error(self):
        """Callers can catch the builtin TimeoutError."""
        session = ConsoleSession(make_stdin(), asyncio.StreamReader())

        with pytest.raises(TimeoutError):
            await session.await_prompt("foo@bar", timeout=0.05)

    @pytest.mark.asyncio
    async def test_eof_before_prompt(self):
        """Output ending before the prompt means the console is gone."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"{error, boot_failed}\n")
        stdout.feed_eof()
        session = ConsoleSession(make_stdin(), stdout)

        with pytest.raises(BrokenPipeError):
            await session.await_prompt("foo@bar", timeout=1)


class TestSendLine:
    """Test sending console statements."""

    @pytest.mark.asyncio
    async def test_writes_line_and_drains(self):
        """The statement is newline-terminated and flushed."""
        stdin = make_stdin()
        session = ConsoleSession(stdin, asyncio.StreamReader())

        await session.send_line(reset_command("riak_kv_test_backend"))

        stdin.write.assert_called_once_with(b"riak_kv_test_backend:reset().\n")
        stdin.drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blank_line(self):
        """The kick-start line is just a newline."""
        stdin = make_stdin()
        session = ConsoleSession(stdin, asyncio.StreamReader())

        await session.send_line("")

        stdin.write.assert_called_once_with(b"\n")

    @pytest.mark.asyncio
    async def test_broken_pipe_on_drain(self):
        """A closed peer surfaces as BrokenPipeError."""
        stdin = make_stdin()
        stdin.drain = AsyncMock(side_effect=BrokenPipeError)
        session = ConsoleSession(stdin, asyncio.StreamReader())

        with pytest.raises(BrokenPipeError):
            await session.send_line("init:stop().")

    @pytest.mark.asyncio
    async def test_connection_reset_becomes_broken_pipe(self):
        """A reset connection is reported as a broken pipe."""
        stdin = make_stdin()
        stdin.drain = AsyncMock(side_effect=ConnectionResetError("reset"))
        session = ConsoleSession(stdin, asyncio.StreamReader())

        with pytest.raises(BrokenPipeError):
            await session.send_line("init:stop().")

    @pytest.mark.asyncio
    async def test_closing_transport(self):
        """Writing to a closing transport is a broken pipe."""
        stdin = make_stdin()
        stdin.is_closing.return_value = True
        session = ConsoleSession(stdin, asyncio.StreamReader())

        with pytest.raises(BrokenPipeError):
            await session.send_line("init:stop().")
        stdin.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        """A closed session refuses to send."""
        session = ConsoleSession(make_stdin(), asyncio.StreamReader())
        session.close()

        with pytest.raises(BrokenPipeError):
            await session.send_line("init:stop().")


class TestClose:
    """Test closing the session."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Closing twice closes stdin once and never raises."""
        stdin = make_stdin()
        session = ConsoleSession(stdin, asyncio.StreamReader(), asyncio.StreamReader())

        session.close()
        session.close()

        assert session.closed is True
        stdin.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_swallows_errors(self):
        """Errors while closing the pipe are not raised."""
        stdin = make_stdin()
        stdin.close.side_effect = OSError("bad fd")
        session = ConsoleSession(stdin, asyncio.StreamReader())

        session.close()

        assert session.closed is True

    @pytest.mark.asyncio
    async def test_await_prompt_after_close(self):
        """Waiting on a closed session is a broken pipe."""
        session = ConsoleSession(make_stdin(), asyncio.StreamReader())
        session.close()

        with pytest.raises(BrokenPipeError):
            await session.await_prompt("foo@bar", timeout=1)


class TestEvaluatedPrompt:
    """Test waiting for the prompt that follows an evaluated statement."""

    @pytest.mark.asyncio
    async def test_reprinted_prompt_is_skipped(self):
        """A prompt reprinted by a blank line doesn't end the wait."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"(foo@bar)1> (foo@bar)1> ")
        session = ConsoleSession(make_stdin(), stdout)
        assert await session.await_prompt("foo@bar", timeout=1) == "(foo@bar)1>"

        with pytest.raises(ServerTimeoutError):
            await session.await_prompt("foo@bar", timeout=0.05, evaluated=True)

        stdout.feed_data(b"ok\n(foo@bar)2> ")
        assert await session.await_prompt("foo@bar", timeout=1, evaluated=True) == "(foo@bar)2>"

    @pytest.mark.asyncio
    async def test_waits_for_late_result(self):
        """A slow statement is waited for even with an old prompt buffered."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"(foo@bar)1> (foo@bar)1> ")
        session = ConsoleSession(make_stdin(), stdout)
        await session.await_prompt("foo@bar", timeout=1)

        async def evaluate_slowly():
            await asyncio.sleep(0.05)
            stdout.feed_data(b"ok\n(foo@bar)2> ")

        evaluator = asyncio.create_task(evaluate_slowly())
        prompt = await session.await_prompt("foo@bar", timeout=1, evaluated=True)
        await evaluator

        assert prompt == "(foo@bar)2>"

    @pytest.mark.asyncio
    async def test_counter_restarting_after_shell_restart(self):
        """After a shell restart the counter starts over at 1."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"(foo@bar)5> ok\n(foo@bar)6> Eshell V5.8.5\n(foo@bar)1> ")
        session = ConsoleSession(make_stdin(), stdout)
        await session.await_prompt("foo@bar", timeout=1)

        assert await session.await_prompt("foo@bar", timeout=1, evaluated=True) == "(foo@bar)6>"

        stdout.feed_data(b"ok\n(foo@bar)2> ")
        assert await session.await_prompt("foo@bar", timeout=1, evaluated=True) == "(foo@bar)2>"

    @pytest.mark.asyncio
    async def test_first_prompt_accepted(self):
        """With no prompt read yet, any prompt is accepted."""
        stdout = asyncio.StreamReader()
        stdout.feed_data(b"(foo@bar)3> ")
        session = ConsoleSession(make_stdin(), stdout)

        assert await session.await_prompt("foo@bar", timeout=1, evaluated=True) == "(foo@bar)3>"
