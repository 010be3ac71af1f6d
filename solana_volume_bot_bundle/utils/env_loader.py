# solana_volume_bot_bundle/utils/env_loader.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from solana_volume_bot_bundle.common.constants import env_path

logger = logging.getLogger("VolumeBot")

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

_ENV_PATH_LOADED: Optional[Path] = None


def _candidate_env_paths() -> List[Path]:
    return [
        env_path(),           # user appdata
        Path.cwd() / ".env",  # project CWD (dev)
    ]


def load_env_first_found(override: bool = False) -> Optional[Path]:
    """
    Priority:
      1) DOTENV_PATH env var (if set and exists)
      2) Per-user appdata path: <appdata>/SOLOVolumeBot/.env
      3) ./.env in the working directory
    Returns the Path loaded or None. Only the first hit is loaded; repeated
    calls return the cached result.
    """
    global _ENV_PATH_LOADED
    if _ENV_PATH_LOADED is not None:
        return _ENV_PATH_LOADED

    dotenv_override = os.environ.get("DOTENV_PATH")
    if dotenv_override:
        p = Path(dotenv_override)
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=override)
            logger.info("Loaded .env from DOTENV_PATH: %s", str(p))
            _ENV_PATH_LOADED = p
            return p
        logger.warning("DOTENV_PATH set but file not found: %s", str(p))

    for p in _candidate_env_paths():
        if p.exists():
            load_dotenv(dotenv_path=str(p), override=override)
            logger.info("Loaded .env from %s", str(p))
            _ENV_PATH_LOADED = p
            return p

    logger.debug("No .env file found by loader.")
    return None


def _clean(v: Optional[str]) -> Optional[str]:
    if not v:
        return None
    v = v.strip().strip('"').strip("'")
    return v or None


def get_rpc_url(default: Optional[str] = None) -> str:
    return _clean(os.environ.get("SOLANA_RPC_URL")) or default or DEFAULT_RPC_URL


def get_jupiter_api_key() -> Optional[str]:
    return _clean(os.environ.get("JUPITER_API_KEY"))


__all__ = [
    "DEFAULT_RPC_URL",
    "load_env_first_found",
    "get_rpc_url",
    "get_jupiter_api_key",
]
