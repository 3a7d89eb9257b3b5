"""Test server lifecycle services.

This package runs a disposable server instance for a test suite:
- materializer.py: sandbox launcher script and config file generation
- console.py: interactive console session over the child's pipes
- restart.py: backend reset or full restart when recycling
- manager.py: lifecycle state machine tying it all together
"""

from .manager import SandboxedServerManager
from .materializer import ConfigMaterializer, deep_merge, render_app_config, render_vm_args
from .console import ConsoleSession, prompt_pattern
from .restart import RestartStrategy

__all__ = [
    "SandboxedServerManager",
    "ConfigMaterializer",
    "ConsoleSession",
    "RestartStrategy",
    "deep_merge",
    "prompt_pattern",
    "render_app_config",
    "render_vm_args",
]
