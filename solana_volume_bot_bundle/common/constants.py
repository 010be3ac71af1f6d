# solana_volume_bot_bundle/common/constants.py
from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Dict, Final, Mapping, Optional, Tuple

__all__ = [
    "APP_NAME",
    "local_appdata_dir",
    "appdata_dir",
    "logs_dir",
    "config_path",
    "env_path",
    "db_path",
    "runtime_summary_path",
    "ensure_app_dirs",
    "LAMPORTS_PER_SOL",
    "WSOL_MINT",
    "TOKEN_PROGRAM_ID",
    "TOKEN_2022_PROGRAM_ID",
    "PUMPFUN_PROGRAM_ID",
    "SOL_RESERVE_LAMPORTS",
    "SWEEP_FEE_LAMPORTS",
    "PER_WALLET_FEE_RESERVE_SOL",
    "MAX_BOT_GROUPS",
    "MAX_WALLETS_PER_GROUP",
    "BURNER_NAME_SUFFIX",
    "TRADING_PATTERNS",
    "INTENSITY_PRESETS",
]

# -----------------------------------------------------------------------------
# App naming
# -----------------------------------------------------------------------------
APP_NAME: Final[str] = "SOLOVolumeBot"  # used as the directory name across platforms

# -----------------------------------------------------------------------------
# Platform-aware base dirs
# -----------------------------------------------------------------------------
def _windows_local_appdata() -> Optional[Path]:
    """Return Windows LocalAppData (LOCALAPPDATA), or None."""
    val = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    if not val:
        return None
    p = Path(val).expanduser()
    if p.exists() or p.parent.exists():
        return p
    return None


def _xdg_data_home() -> Path:
    val = os.getenv("XDG_DATA_HOME")
    return Path(val).expanduser() if val else (Path.home() / ".local" / "share")


def local_appdata_dir() -> Path:
    r"""
    Cross-platform "local app data" root for this user.

    - Windows:  %LOCALAPPDATA%
    - macOS:    ~/Library/Application Support
    - Linux:    ~/.local/share (or $XDG_DATA_HOME)
    """
    system = platform.system().lower()
    if system.startswith("win"):
        return _windows_local_appdata() or Path.home()
    if system == "darwin":
        return Path.home() / "Library" / "Application Support"
    return _xdg_data_home()


def appdata_dir() -> Path:
    """Full application data directory (``<local appdata>/SOLOVolumeBot``)."""
    override = os.getenv("SOLO_VOLUME_BOT_HOME")
    if override:
        return Path(override).expanduser()
    return local_appdata_dir() / APP_NAME


def logs_dir() -> Path:
    """Directory where rotating logs are stored."""
    return appdata_dir() / "logs"


def config_path() -> Path:
    """Default location for YAML config."""
    return appdata_dir() / "config.yaml"


def env_path() -> Path:
    return appdata_dir() / ".env"


def db_path() -> Path:
    """Default SQLite DB location (bot groups, trade ledger, launch registry)."""
    return appdata_dir() / "volume_bot.sqlite3"


def runtime_summary_path() -> Path:
    return appdata_dir() / "runtime_summary.json"

# -----------------------------------------------------------------------------
# Utilities
# -----------------------------------------------------------------------------
def ensure_app_dirs() -> None:
    """
    Create the app data hierarchy if missing. Safe to call multiple times.
    Never raises on filesystem errors.
    """
    try:
        appdata_dir().mkdir(parents=True, exist_ok=True)
        logs_dir().mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

# -----------------------------------------------------------------------------
# Chain constants
# -----------------------------------------------------------------------------
LAMPORTS_PER_SOL: Final[int] = 1_000_000_000
WSOL_MINT: Final[str] = "So11111111111111111111111111111111111111112"
TOKEN_PROGRAM_ID: Final[str] = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID: Final[str] = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
PUMPFUN_PROGRAM_ID: Final[str] = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"

# -----------------------------------------------------------------------------
# Orchestration defaults
# -----------------------------------------------------------------------------
SOL_RESERVE_LAMPORTS: Final[int] = 5_000_000      # kept back for fees/rent on every buy
SWEEP_FEE_LAMPORTS: Final[int] = 5_000            # left behind to pay the sweep transfer
PER_WALLET_FEE_RESERVE_SOL: Final[float] = 0.001  # treasury must cover this per wallet on top of funding
MAX_BOT_GROUPS: Final[int] = 6
MAX_WALLETS_PER_GROUP: Final[int] = 20  # funding must fit one transaction
BURNER_NAME_SUFFIX: Final[str] = "-W"

TRADING_PATTERNS: Final[Tuple[str, ...]] = ("organic", "steady", "burst", "wave")

# swap bounds in SOL, interval bounds in seconds
INTENSITY_PRESETS: Mapping[str, Dict[str, float]] = {
    "low": {"min_swap_sol": 0.005, "max_swap_sol": 0.02, "min_interval_s": 120, "max_interval_s": 300},
    "medium": {"min_swap_sol": 0.01, "max_swap_sol": 0.1, "min_interval_s": 30, "max_interval_s": 120},
    "high": {"min_swap_sol": 0.05, "max_swap_sol": 0.2, "min_interval_s": 15, "max_interval_s": 60},
    "aggressive": {"min_swap_sol": 0.1, "max_swap_sol": 0.5, "min_interval_s": 5, "max_interval_s": 30},
}


__doc__ = r"""
Central paths and constants for the SOLOVolumeBot app.

Paths:
  Windows:   %LOCALAPPDATA%\SOLOVolumeBot\{config.yaml, volume_bot.sqlite3, logs\}
  macOS:     ~/Library/Application Support/SOLOVolumeBot/...
  Linux:     ~/.local/share/SOLOVolumeBot/...

Set SOLO_VOLUME_BOT_HOME to relocate the whole tree (useful for tests and
side-by-side installs).
"""
