# solana_volume_bot_bundle/volume_bot/__init__.py
from __future__ import annotations

import importlib as _importlib

__all__ = [
    "chain",
    "confirmation",
    "database",
    "dex",
    "engine",
    "errors",
    "interfaces",
    "lifecycle",
    "models",
    "registry",
    "scheduler",
    "service",
    "utils_exec",
    "wallet_safety",
    "watchdog",
]


def __getattr__(name: str):
    if name in __all__:
        return _importlib.import_module(f"{__name__}.{name}")
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(list(globals().keys()) + __all__)
