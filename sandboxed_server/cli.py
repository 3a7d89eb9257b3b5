"""
Sandboxed test server CLI.

Usage:
  sandboxed-server render --bin-dir /usr/lib/riak/bin      # Show generated config
  sandboxed-server run --bin-dir /usr/lib/riak/bin         # Run until Ctrl-C

Overrides:
  --set riak_core.web_port=9100      app.config setting
  --vm-arg +A=32                     vm.args flag

Values are parsed as integers, ``true``/``false``, double-quoted strings,
or bare atoms.
"""

import argparse
import asyncio
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .config import Settings, build_default_options
from .config.defaults import Atom
from .models.errors import SandboxedServerException
from .services.server import SandboxedServerManager, deep_merge, render_app_config, render_vm_args
from .utils.logging import setup_logging

console = Console()


# ============================================================================
# Option parsing
# ============================================================================

def parse_value(raw: str) -> Any:
    """Parse a command line value into an app.config scalar."""
    if re.fullmatch(r"-?\d+", raw):
        return int(raw)
    if raw in ("true", "false"):
        return raw == "true"
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return raw[1:-1]
    return Atom(raw)


def parse_overrides(app_settings: List[str], vm_args: List[str]) -> Dict[str, Any]:
    """Turn ``--set`` and ``--vm-arg`` pairs into a manager options tree."""
    options: Dict[str, Any] = {"app_config": {}, "vm_args": {}}

    for item in app_settings:
        key, sep, raw = item.partition("=")
        section, dot, name = key.partition(".")
        if not sep or not dot or not section or not name:
            raise argparse.ArgumentTypeError(
                f"Expected subsystem.key=value, got {item!r}"
            )
        options["app_config"] = deep_merge(
            options["app_config"], {section: {name: parse_value(raw)}}
        )

    for item in vm_args:
        flag, sep, raw = item.partition("=")
        if not sep or not flag:
            raise argparse.ArgumentTypeError(f"Expected flag=value, got {item!r}")
        options["vm_args"][flag] = parse_value(raw)

    return options


# ============================================================================
# Commands
# ============================================================================

def cmd_render(args: argparse.Namespace, settings: Settings) -> int:
    """Print the vm.args and app.config a server would be started with."""
    options = deep_merge(
        build_default_options(settings),
        parse_overrides(args.set, args.vm_arg),
    )

    console.print(
        Panel(
            Syntax(render_vm_args(options["vm_args"]), "text"),
            title="vm.args",
            border_style="cyan",
        )
    )
    console.print(
        Panel(
            Syntax(render_app_config(options["app_config"]) + ".", "erlang"),
            title="app.config",
            border_style="cyan",
        )
    )
    return 0


async def _run_server(manager: SandboxedServerManager) -> None:
    async with manager:
        table = Table(title="Test Server", box=box.ROUNDED)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        core = manager.options.app_config.get("riak_core", {})
        table.add_row("Node", manager.node_name)
        table.add_row("PID", str(manager.pid))
        table.add_row("Sandbox", str(manager.paths.root))
        table.add_row("HTTP", f"{core.get('web_ip')}:{core.get('web_port')}")
        table.add_row("Backend", str(manager.options.storage_backend))
        console.print(table)
        console.print("[dim]Press Ctrl-C to stop and clean up[/dim]")

        await asyncio.Event().wait()


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Prepare and start a server, then keep it up until interrupted."""
    setup_logging(settings.log_level, settings.log_format)

    manager = SandboxedServerManager(parse_overrides(args.set, args.vm_arg), settings=settings)
    try:
        asyncio.run(_run_server(manager))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
    return 0


# ============================================================================
# Entry point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sandboxed-server",
        description="Run a disposable server instance in a sandbox",
    )
    parser.add_argument("--env-file", type=Path, default=None, help="Load settings from this .env file")
    parser.add_argument("--bin-dir", default=None, help="Directory of the template launcher script")
    parser.add_argument("--temp-dir", default=None, help="Sandbox root directory")

    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("render", "Show the generated vm.args and app.config"),
        ("run", "Start a server and keep it running until Ctrl-C"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--set", action="append", default=[], metavar="SUBSYSTEM.KEY=VALUE",
            help="Override an app.config setting",
        )
        sub.add_argument(
            "--vm-arg", action="append", default=[], metavar="FLAG=VALUE",
            help="Override a vm.args flag",
        )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.env_file:
        load_dotenv(args.env_file)

    overrides = {}
    if args.bin_dir:
        overrides["bin_dir"] = args.bin_dir
    if args.temp_dir:
        overrides["temp_dir"] = args.temp_dir

    commands = {"render": cmd_render, "run": cmd_run}
    try:
        settings = Settings(**overrides)
        return commands[args.command](args, settings)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except SandboxedServerException as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        console.print_json(e.to_response().model_dump_json())
        return 1
    except ValidationError as e:
        console.print(f"[red]Invalid server options:[/red] {escape(str(e))}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
