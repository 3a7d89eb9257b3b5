"""Default server configuration trees.

The app config mirrors the sections of a Riak ``app.config``; the VM args
are the ``vm.args`` flags handed to the Erlang runtime.
"""

import random
from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from . import Settings


class Atom(str):
    """A bare token in the generated app.config (rendered without quotes)."""

    def __repr__(self) -> str:
        return f"Atom({str.__repr__(self)})"


# In-memory backend that supports a console reset between tests
TEST_BACKEND = Atom("riak_kv_test_backend")

APP_CONFIG_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "riak_core": {
        "web_ip": "127.0.0.1",
        "web_port": 9000,
        "handoff_port": 9001,
        "ring_creation_size": 64,
    },
    "riak_kv": {
        "storage_backend": TEST_BACKEND,
        "pb_ip": "127.0.0.1",
        "pb_port": 9002,
        "js_vm_count": 8,
        "js_max_vm_mem": 8,
        "js_thread_stack": 16,
        "riak_kv_stat": True,
        # Turn off map caching
        "map_cache_size": 0,
        "vnode_cache_entries": 0,
    },
    "luwak": {
        "enabled": False,
    },
}


def default_vm_args() -> Dict[str, Any]:
    """Build VM args with a fresh random node name and cookie."""
    return {
        "-name": f"riaktest{random.randrange(1000000)}@127.0.0.1",
        "-setcookie": f"{random.randrange(1000000)}_{random.randrange(1000000)}",
        "+K": True,
        "+A": 64,
        "-smp": "enable",
        "-env ERL_MAX_PORTS": 4096,
        "-env ERL_FULLSWEEP_AFTER": 10,
    }


def build_default_options(settings: "Settings") -> Dict[str, Any]:
    """Default manager options; callers deep-merge their overrides on top."""
    # Nested dicts are copied so a manager never mutates the module defaults
    return {
        "app_config": {
            section: dict(values) for section, values in APP_CONFIG_DEFAULTS.items()
        },
        "vm_args": default_vm_args(),
        "temp_dir": settings.temp_dir,
        "bin_dir": settings.bin_dir,
    }
