"""Recycling a running server back to an empty data store."""

from typing import Awaitable, Callable

import structlog

from ...config.defaults import TEST_BACKEND
from ...models.errors import ServerTimeoutError
from ...models.server import ServerOptions
from .console import RESTART_COMMAND, ConsoleSession, reset_command

logger = structlog.get_logger(__name__)

ReadinessProbe = Callable[[str, int, float], Awaitable[bool]]


class RestartStrategy:
    """Chooses between a backend reset and a full restart.

    With the in-memory test backend the data is dropped by a console
    statement and the node keeps running. Any other backend needs
    ``init:restart()``; the console prompts again long before the
    applications are back, so the HTTP port is probed as well.
    """

    def __init__(
        self,
        options: ServerOptions,
        probe: ReadinessProbe,
        prompt_timeout: float,
        startup_timeout: float,
    ):
        self._options = options
        self._probe = probe
        self._prompt_timeout = prompt_timeout
        self._startup_timeout = startup_timeout

    @property
    def uses_test_backend(self) -> bool:
        return self._options.storage_backend == TEST_BACKEND

    async def recycle(self, console: ConsoleSession) -> None:
        """Reset the server attached to ``console``.

        Raises:
            BrokenPipeError: If the console is gone
            ServerTimeoutError: If the prompt or the service port does not
                come back in time
        """
        node_name = self._options.node_name

        if self.uses_test_backend:
            await console.send_line(reset_command(TEST_BACKEND))
            await console.await_prompt(node_name, self._prompt_timeout, evaluated=True)
            logger.info("Reset test backend", node=node_name)
            return

        await console.send_line(RESTART_COMMAND)
        await console.await_prompt(node_name, self._prompt_timeout, evaluated=True)
        await self.wait_for_startup()
        logger.info("Restarted server", node=node_name)

    async def wait_for_startup(self) -> None:
        core = self._options.app_config.get("riak_core", {})
        host = str(core.get("web_ip", "127.0.0.1"))
        port = int(core.get("web_port", 8098))

        if not await self._probe(host, port, self._startup_timeout):
            raise ServerTimeoutError(
                f"Server at {host}:{port} not reachable within "
                f"{self._startup_timeout} seconds after restart"
            )
