"""Sandbox config generation.

Writes the three artifacts a server needs to boot from a sandbox: the
launcher script (rewritten from the installed template), ``vm.args`` and
``app.config``.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping

import structlog

from ...config.defaults import Atom
from ...models.errors import ConfigWriteError, ErrorDetail
from ...models.server import SandboxPaths, ServerOptions

logger = structlog.get_logger(__name__)

INDENT = "    "

# Line in the template that derives the base dir from the script location
BASE_DIR_LINE = "RUNNER_BASE_DIR=${RUNNER_SCRIPT_DIR%/*}"


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` over ``base`` without mutating either.

    Nested mappings present on both sides are merged recursively; any other
    value from ``override`` replaces the one in ``base``. Keys keep the
    order of ``base``, keys only in ``override`` are appended.
    """
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def format_scalar(value: Any) -> str:
    """Render a non-string scalar the way the Erlang side reads it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_app_config(config: Mapping[str, Any], depth: int = 1) -> str:
    """Render a nested mapping as an Erlang term list (without the final ``.``).

    >>> print(render_app_config({"a": 1, "b": {"c": "x"}}))
    [
        {a, 1},
        {b, [
            {c, "x"}
        ]}
    ]
    """
    padding = INDENT * depth
    parent_padding = INDENT * (depth - 1)

    entries = []
    for key, value in config.items():
        if isinstance(value, Mapping):
            printable = render_app_config(value, depth + 1)
        elif isinstance(value, Atom):
            printable = str(value)
        elif isinstance(value, str):
            printable = f'"{value}"'
        else:
            printable = format_scalar(value)
        entries.append(f"{{{key}, {printable}}}")

    values = f",\n{padding}".join(entries)
    return f"[\n{padding}{values}\n{parent_padding}]"


def render_vm_args(vm_args: Mapping[str, Any]) -> str:
    """Render VM flags as ``key value`` lines."""
    return "\n".join(f"{key} {format_scalar(value)}" for key, value in vm_args.items())


@dataclass(frozen=True)
class ScriptRule:
    """Replaces whatever follows ``marker`` on a line of the launcher script."""

    name: str
    marker: str
    value: str

    def apply(self, line: str) -> str:
        pattern = re.compile(re.escape(self.marker) + r".*")
        # Callable replacement keeps backslashes in paths literal
        return pattern.sub(lambda _: self.marker + self.value, line, count=1)


def build_script_rules(paths: SandboxPaths) -> List[ScriptRule]:
    """Rules pointing the launcher at the sandbox directories."""
    return [
        ScriptRule("script_dir", "RUNNER_SCRIPT_DIR=", str(paths.bin)),
        ScriptRule("etc_dir", "RUNNER_ETC_DIR=", str(paths.etc)),
        ScriptRule("user", "RUNNER_USER=", ""),
        ScriptRule("log_dir", "RUNNER_LOG_DIR=", str(paths.log)),
        ScriptRule("pipe_dir", "PIPE_DIR=", str(paths.pipe)),
    ]


def rewrite_script(template: str, rules: List[ScriptRule], base_dir: str) -> str:
    """Apply ``rules`` to each line of ``template`` and return the new script.

    The derived base dir line is pinned to ``base_dir``, since the rewritten
    script no longer lives next to the installation.
    """
    lines = []
    for line in template.splitlines(keepends=True):
        for rule in rules:
            line = rule.apply(line)
        if line.strip() == BASE_DIR_LINE:
            line = f"RUNNER_BASE_DIR={base_dir}\n"
        lines.append(line)
    return "".join(lines)


class ConfigMaterializer:
    """Writes a server's launcher script and config files into a sandbox."""

    def __init__(self, options: ServerOptions, paths: SandboxPaths, script_name: str):
        """Initialize the materializer.

        Args:
            options: Merged server options
            paths: Sandbox layout to write into
            script_name: File name of the launcher in ``options.bin_dir``
        """
        self._options = options
        self._paths = paths
        self._script_name = script_name

    @property
    def template_script(self) -> Path:
        return Path(self._options.bin_dir).expanduser().resolve() / self._script_name

    @property
    def launcher_script(self) -> Path:
        return self._paths.launcher_script(self._script_name)

    def materialize(self) -> Path:
        """Write all sandbox artifacts.

        Returns:
            Path of the generated launcher script

        Raises:
            ConfigWriteError: If the template can't be read or a file can't
                be written
        """
        self.write_launcher_script()
        self.write_vm_args()
        self.write_app_config()

        logger.info(
            "Wrote server config",
            sandbox=str(self._paths.root),
            launcher=str(self.launcher_script),
        )
        return self.launcher_script

    def write_launcher_script(self) -> None:
        template_path = self.template_script
        try:
            template = template_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigWriteError(
                f"Cannot read launcher template {template_path}: {e}",
                details=[ErrorDetail(field=str(template_path), message=str(e))],
            ) from e

        script = rewrite_script(
            template,
            build_script_rules(self._paths),
            base_dir=str(template_path.parent.parent),
        )
        self._write(self.launcher_script, script)

        try:
            os.chmod(self.launcher_script, 0o755)
        except OSError as e:
            raise ConfigWriteError(
                f"Cannot make launcher executable: {e}",
                details=[ErrorDetail(field=str(self.launcher_script), message=str(e))],
            ) from e

    def write_vm_args(self) -> None:
        self._write(self._paths.vm_args_file, render_vm_args(self._options.vm_args))

    def write_app_config(self) -> None:
        self._write(
            self._paths.app_config_file,
            render_app_config(self._options.app_config) + ".",
        )

    def _write(self, path: Path, content: str) -> None:
        if not path.parent.is_dir():
            raise ConfigWriteError(
                f"Sandbox directory does not exist: {path.parent}",
                details=[ErrorDetail(field=str(path.parent), message="missing")],
            )
        try:
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as e:
            raise ConfigWriteError(
                f"Cannot write {path}: {e}",
                details=[ErrorDetail(field=str(path), message=str(e))],
            ) from e
