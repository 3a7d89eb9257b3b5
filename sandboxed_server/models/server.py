"""Server lifecycle data models.

SandboxPaths is the fixed directory layout of one sandbox. ServerOptions
holds the merged, validated options a manager is built from.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..services.server.console import ConsoleSession


class LifecycleState(str, Enum):
    """Lifecycle of a managed server."""

    UNPREPARED = "unprepared"
    PREPARED = "prepared"
    STARTED = "started"
    STOPPED = "stopped"


class ServerOptions(BaseModel):
    """Options for one test server, after merging over the defaults."""

    app_config: Dict[str, Dict[str, Any]]
    vm_args: Dict[str, Any]
    temp_dir: str = Field(..., min_length=1)
    bin_dir: str = Field(..., min_length=1)

    @property
    def node_name(self) -> str:
        """Node name the console prompt is parameterized by."""
        return str(self.vm_args["-name"])

    @property
    def storage_backend(self) -> Any:
        return self.app_config.get("riak_kv", {}).get("storage_backend")


@dataclass(frozen=True)
class SandboxPaths:
    """Directory layout of a sandbox, derived from its root."""

    root: Path
    bin: Path
    etc: Path
    log: Path
    data: Path
    pipe: Path

    @classmethod
    def from_root(cls, root) -> "SandboxPaths":
        root = Path(root).expanduser().resolve()
        return cls(
            root=root,
            bin=root / "bin",
            etc=root / "etc",
            log=root / "log",
            data=root / "data",
            pipe=root / "pipe",
        )

    def directories(self) -> Iterator[Path]:
        """The five sandbox directories, in creation order."""
        yield from (self.bin, self.etc, self.log, self.data, self.pipe)

    @property
    def ring_dir(self) -> Path:
        return self.data / "ring"

    @property
    def vm_args_file(self) -> Path:
        return self.etc / "vm.args"

    @property
    def app_config_file(self) -> Path:
        return self.etc / "app.config"

    def launcher_script(self, script_name: str) -> Path:
        return self.bin / script_name


@dataclass
class ServerHandle:
    """A running server process and the console attached to it.

    Owned by the manager; never handed out to callers.
    """

    process: asyncio.subprocess.Process
    console: "ConsoleSession"

    @property
    def pid(self) -> int:
        return self.process.pid
