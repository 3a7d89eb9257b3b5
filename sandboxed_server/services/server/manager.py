"""Lifecycle management for a disposable test server.

One manager owns one sandbox directory and at most one server process.
Start, stop and recycle are serialized by a lock and re-check the state
once they hold it, so concurrent callers never spawn a second process.
"""

import asyncio
import shutil
import time
from typing import Any, Dict, Optional, Set

import structlog

from ...config import Settings
from ...config import settings as default_settings
from ...config.defaults import build_default_options
from ...models.errors import ConfigWriteError, ErrorDetail, SpawnError
from ...models.server import LifecycleState, SandboxPaths, ServerHandle, ServerOptions
from ...utils.net import wait_for_service
from .console import KICKSTART_COMMAND, STOP_COMMAND, ConsoleSession
from .materializer import ConfigMaterializer, deep_merge
from .restart import ReadinessProbe, RestartStrategy

logger = structlog.get_logger(__name__)

_STARTABLE = (LifecycleState.PREPARED, LifecycleState.STOPPED)


class SandboxedServerManager:
    """Runs a throwaway server instance for a test suite.

    Typical use, once per test run::

        server = SandboxedServerManager({"bin_dir": "/usr/lib/riak/bin"})
        server.prepare()
        await server.start()
        ...
        await server.recycle()  # between tests
        ...
        await server.cleanup()

    Construction removes whatever an earlier, uncleanly stopped manager
    left in the same sandbox directory.
    """

    def __init__(
        self,
        options: Optional[Dict[str, Any]] = None,
        settings: Optional[Settings] = None,
        probe: Optional[ReadinessProbe] = None,
    ):
        """Initialize the manager.

        Args:
            options: Overrides deep-merged over the defaults; recognized keys
                are ``app_config``, ``vm_args``, ``temp_dir`` and ``bin_dir``
            settings: Settings to use instead of the global ones
            probe: Readiness probe used after a full restart
        """
        self._settings = settings or default_settings

        merged = deep_merge(build_default_options(self._settings), options or {})
        self._paths = SandboxPaths.from_root(merged["temp_dir"])
        merged["temp_dir"] = str(self._paths.root)

        core = merged["app_config"].setdefault("riak_core", {})
        if not core.get("ring_state_dir"):
            core["ring_state_dir"] = str(self._paths.ring_dir)

        self._options = ServerOptions(**merged)

        self._materializer = ConfigMaterializer(
            self._options, self._paths, self._settings.script_name
        )
        self._restart = RestartStrategy(
            self._options,
            probe=probe or wait_for_service,
            prompt_timeout=self._settings.prompt_timeout_seconds,
            startup_timeout=self._settings.startup_timeout_seconds,
        )

        # For synchronizing start/stop/recycle
        self._lock = asyncio.Lock()
        self._state = LifecycleState.UNPREPARED
        self._handle: Optional[ServerHandle] = None
        self._reapers: Set[asyncio.Task] = set()

        self._remove_sandbox()

    @property
    def options(self) -> ServerOptions:
        return self._options

    @property
    def paths(self) -> SandboxPaths:
        return self._paths

    @property
    def node_name(self) -> str:
        return self._options.node_name

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def started(self) -> bool:
        """Whether the server has been started."""
        return self._state == LifecycleState.STARTED

    @property
    def pid(self) -> Optional[int]:
        """Process id of the running server, if any."""
        return self._handle.pid if self._handle else None

    def prepare(self) -> None:
        """Create the sandbox and write the launcher script and config.

        Call once at the top of the test suite, before any concurrent use.

        Raises:
            ConfigWriteError: If the sandbox can't be created or written
        """
        if self._state != LifecycleState.UNPREPARED:
            return

        for directory in self._paths.directories():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(
                    "Failed to create sandbox directory",
                    directory=str(directory),
                    error=str(e),
                )
                raise ConfigWriteError(
                    f"Failed to create sandbox directory {directory}: {e}",
                    details=[ErrorDetail(field=str(directory), message=str(e))],
                ) from e

        self._materializer.materialize()
        self._state = LifecycleState.PREPARED

        logger.info("Prepared test server", sandbox=str(self._paths.root), node=self.node_name)

    async def start(self) -> None:
        """Start the server if it is prepared and not running.

        Waits until the console prints its prompt.

        Raises:
            SpawnError: If the launcher can't be executed
            ServerTimeoutError: If the console doesn't prompt in time; the
                half-started process is killed and the state is unchanged
            BrokenPipeError: If the console exits before prompting
        """
        if self._state not in _STARTABLE:
            return

        async with self._lock:
            if self._state not in _STARTABLE:
                return

            start_time = time.perf_counter()
            process = await self._spawn()
            console = ConsoleSession.for_process(process)

            try:
                # Some consoles only print the first prompt after a newline
                await console.send_line(KICKSTART_COMMAND)
                await console.await_prompt(
                    self.node_name, self._settings.prompt_timeout_seconds
                )
            except BaseException as e:
                # Cancelled or failed: never leave the half-started child behind
                logger.error(
                    "Test server failed to start",
                    pid=process.pid,
                    node=self.node_name,
                    error=repr(e),
                )
                console.close()
                await self._kill(process)
                raise

            self._handle = ServerHandle(process=process, console=console)
            self._state = LifecycleState.STARTED

            elapsed = time.perf_counter() - start_time
            logger.info(
                "Started test server",
                pid=process.pid,
                node=self.node_name,
                elapsed_ms=f"{elapsed * 1000:.1f}",
            )

    async def stop(self) -> bool:
        """Stop the server if it is running.

        Returns:
            True if a running server was stopped, False otherwise
        """
        if self._state != LifecycleState.STARTED:
            return False

        async with self._lock:
            if self._state != LifecycleState.STARTED:
                return False

            try:
                await self._handle.console.send_line(STOP_COMMAND)
            except BrokenPipeError:
                logger.debug("Console already closed on stop", node=self.node_name)
            finally:
                self._release_handle()

        logger.info("Stopped test server", node=self.node_name)
        return True

    async def recycle(self) -> bool:
        """Empty the server's data, starting it first if needed.

        Returns:
            True when the server is usable again, False if it turned out to
            be dead (it is then marked stopped and can be started again)

        Raises:
            ServerTimeoutError: If a full restart doesn't come back in time
        """
        if self._state != LifecycleState.STARTED:
            await self.start()
            return self.started

        async with self._lock:
            if self._state != LifecycleState.STARTED:
                logger.debug("Server stopped before recycle", node=self.node_name)
                return False

            try:
                await self._restart.recycle(self._handle.console)
            except BrokenPipeError:
                logger.warning(
                    "Broken pipe when recycling, is the server alive?",
                    node=self.node_name,
                    pid=self.pid,
                )
                self._release_handle()
                return False

        return True

    async def cleanup(self) -> None:
        """Stop the server and delete the sandbox. Never raises."""
        if self._state == LifecycleState.STARTED:
            await self.stop()
        self._remove_sandbox()
        self._state = LifecycleState.UNPREPARED

    async def wait_closed(self) -> None:
        """Wait for stopped server processes to exit."""
        if self._reapers:
            await asyncio.gather(*list(self._reapers), return_exceptions=True)

    async def __aenter__(self) -> "SandboxedServerManager":
        self.prepare()
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()
        await self.wait_closed()

    # =========================================================================
    # Private methods
    # =========================================================================

    async def _spawn(self) -> asyncio.subprocess.Process:
        script = self._materializer.launcher_script
        try:
            process = await asyncio.create_subprocess_exec(
                str(script),
                "console",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Failed to spawn test server", script=str(script), error=str(e))
            raise SpawnError(
                f"Failed to run {script} console: {e}",
                details=[ErrorDetail(field=str(script), message=str(e))],
            ) from e

        logger.debug("Spawned test server", pid=process.pid, script=str(script))
        return process

    def _release_handle(self) -> None:
        """Drop the running server without waiting for it to exit."""
        handle, self._handle = self._handle, None
        self._state = LifecycleState.STOPPED
        if handle is None:
            return

        handle.console.close()
        task = asyncio.get_running_loop().create_task(self._reap(handle.process))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        timeout = self._settings.shutdown_timeout_seconds
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Test server did not exit, killing it", pid=process.pid, timeout=timeout
            )
            await self._kill(process)

        logger.debug("Test server exited", pid=process.pid, returncode=process.returncode)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    def _remove_sandbox(self) -> None:
        try:
            shutil.rmtree(self._paths.root)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(
                "Failed to remove sandbox", sandbox=str(self._paths.root), error=str(e)
            )
            return
        logger.debug("Removed sandbox", sandbox=str(self._paths.root))
