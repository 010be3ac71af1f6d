# solana_volume_bot_bundle/utils/__init__.py
from __future__ import annotations

from solana_volume_bot_bundle.common.constants import (
    APP_NAME,
    appdata_dir,
    config_path,
    db_path,
    ensure_app_dirs,
    env_path,
    logs_dir,
)

from .env_loader import (
    get_jupiter_api_key,
    get_rpc_url,
    load_env_first_found,
)

__all__ = [
    # appdata helpers
    "APP_NAME", "appdata_dir", "logs_dir", "ensure_app_dirs",
    "config_path", "env_path", "db_path",
    # env helpers
    "load_env_first_found", "get_rpc_url", "get_jupiter_api_key",
]
