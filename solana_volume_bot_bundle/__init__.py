# solana_volume_bot_bundle/__init__.py
from __future__ import annotations

# Package version (falls back to 0.0.0 when not installed)
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("solana_volume_bot_bundle")
except PackageNotFoundError:
    __version__ = "0.0.0"

from .common.constants import APP_NAME, appdata_dir, local_appdata_dir

# Public API surface (include lazy names so `import *` and IDEs see them)
__all__ = [
    "__version__",
    "APP_NAME",
    "appdata_dir",
    "local_appdata_dir",
    # Lazy names:
    "load_config",
    "setup_logging",
    "BotGroupService",
]


def __getattr__(name: str):
    """Lazy access to selected helpers to avoid import cycles at startup."""
    if name == "load_config":
        from .volume_bot.utils_exec import load_config
        return load_config
    if name == "setup_logging":
        from .volume_bot.utils_exec import setup_logging
        return setup_logging
    if name == "BotGroupService":
        from .volume_bot.service import BotGroupService
        return BotGroupService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | {"load_config", "setup_logging", "BotGroupService"})
