# solana_volume_bot_bundle/volume_bot/utils_exec.py
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from solana_volume_bot_bundle.common.constants import (
    MAX_BOT_GROUPS,
    PER_WALLET_FEE_RESERVE_SOL,
    SOL_RESERVE_LAMPORTS,
    SWEEP_FEE_LAMPORTS,
    config_path as _default_config_path,
    db_path as _default_db_path,
    ensure_app_dirs,
    logs_dir,
    runtime_summary_path,
)
from solana_volume_bot_bundle.common.feature_flags import (
    is_ghost_holders_enabled,
    is_stealth_funding_enabled,
)
from solana_volume_bot_bundle.utils.env_loader import get_jupiter_api_key, get_rpc_url

logger = logging.getLogger("VolumeBot")

# -----------------------------------------------------------------------------
# Config & logging helpers
# -----------------------------------------------------------------------------
_missing_cfg_last_log_ts: float = 0.0


def _resolve_config_path(path: Optional[str] = None) -> Path:
    if path:
        return Path(path).expanduser()
    return _default_config_path()


def _default_config() -> Dict[str, Any]:
    return {
        "logging": {
            "file": str(logs_dir() / "volume_bot.log"),
            "log_level": "INFO",
            "log_rotation_size_mb": 10,
            "log_max_files": 5,
        },
        "solana": {
            "rpc_url": "https://api.mainnet-beta.solana.com",
        },
        "database": {
            "path": str(_default_db_path()),
        },
        "jupiter": {
            "base_url": "https://api.jup.ag/swap/v1",
            "timeout_s": 20,
        },
        "volume_bot": {
            "slippage_bps": 200,
            "max_groups": MAX_BOT_GROUPS,
            "ghost_holders": False,
            "stealth_funding": False,
        },
    }


def _create_default_config(cfg_path: Path) -> None:
    try:
        if not cfg_path.exists() or (cfg_path.stat().st_size == 0):
            cfg_path.parent.mkdir(parents=True, exist_ok=True)
            cfg_path.write_text(
                "# Auto-generated default config\n" + yaml.safe_dump(_default_config(), sort_keys=False),
                encoding="utf-8",
            )
    except OSError as e:
        logger.debug("Could not create default config at %s: %s", cfg_path, e)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    global _missing_cfg_last_log_ts
    cfg_path = _resolve_config_path(path)
    _create_default_config(cfg_path)
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded configuration from %s", cfg_path)
        return config
    except (OSError, yaml.YAMLError) as e:
        now = time.time()
        if now - _missing_cfg_last_log_ts > 30:
            logger.error("Failed to load config from %s: %s", cfg_path, e)
            _missing_cfg_last_log_ts = now
        return {}


_LOG_SENTINEL_ATTR = "_solo_volume_logging_file"


def setup_logging(config: Optional[Dict[str, Any]]) -> logging.Logger:
    log_cfg = (config or {}).get("logging", {}) if isinstance(config, dict) else {}

    raw_file = log_cfg.get("file") or (logs_dir() / "volume_bot.log")
    log_file = Path(raw_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level_name = str(log_cfg.get("log_level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    max_size_mb = int(log_cfg.get("log_rotation_size_mb", 10))
    max_files = int(log_cfg.get("log_max_files", 5))

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, _LOG_SENTINEL_ATTR, None) == str(log_file):
        for h in root.handlers:
            h.setLevel(level)
        return logging.getLogger("VolumeBot")

    file_handler: Optional[RotatingFileHandler] = None
    for h in list(root.handlers):
        if isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", None) == str(log_file.resolve()):
            file_handler = h
            break
    if file_handler is None:
        file_handler = RotatingFileHandler(
            str(log_file),
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=max_files,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        root.addHandler(file_handler)
    file_handler.setLevel(level)

    has_console = any(isinstance(h, logging.StreamHandler) and not hasattr(h, "baseFilename") for h in root.handlers)
    if not has_console:
        sh = logging.StreamHandler()
        sh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        sh.setLevel(level)
        root.addHandler(sh)

    lx = logging.getLogger("VolumeBot")
    lx.handlers.clear()
    lx.propagate = True
    lx.setLevel(level)

    setattr(root, _LOG_SENTINEL_ATTR, str(log_file))
    lx.info("Logging configured: level=%s, file=%s", level_name, str(log_file))
    return lx

# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class VolumeBotSettings:
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    db_path: str = ""
    jupiter_base_url: str = "https://api.jup.ag/swap/v1"
    jupiter_api_key: Optional[str] = None
    jupiter_timeout_s: float = 20.0
    slippage_bps: int = 200
    sol_reserve_lamports: int = SOL_RESERVE_LAMPORTS
    sweep_fee_lamports: int = SWEEP_FEE_LAMPORTS
    per_wallet_fee_reserve_sol: float = PER_WALLET_FEE_RESERVE_SOL
    sell_pct_min: float = 0.25
    sell_pct_max: float = 0.75
    prefer_buy_probability: float = 0.5
    stagger_base_s: Tuple[float, float] = (2.0, 5.0)
    stagger_step_s: Tuple[float, float] = (3.0, 8.0)
    watchdog_floor_s: float = 60.0
    watchdog_rearm_s: Tuple[float, float] = (1.0, 5.0)
    watchdog_heartbeat_s: float = 5.0
    suspend_gap_s: float = 10.0
    confirm_timeout_s: float = 60.0
    drain_timeout_s: float = 90.0
    max_groups: int = MAX_BOT_GROUPS
    dust_whole_tokens: float = 0.0
    stealth_funding: bool = False
    summary_flush_s: float = 1.0

    def dust_raw(self, decimals: int) -> int:
        """Residual raw balance treated as empty for a mint with ``decimals``."""
        if self.dust_whole_tokens <= 0:
            return 0
        return int(self.dust_whole_tokens * (10 ** max(0, int(decimals))))


def _pair(v: Any, default: Tuple[float, float]) -> Tuple[float, float]:
    if isinstance(v, (list, tuple)) and len(v) == 2:
        lo, hi = float(v[0]), float(v[1])
        return (min(lo, hi), max(lo, hi))
    return default


def settings_from_config(cfg: Optional[Dict[str, Any]]) -> VolumeBotSettings:
    cfg = cfg or {}
    vb = cfg.get("volume_bot", {}) or {}
    sol = cfg.get("solana", {}) or {}
    jup = cfg.get("jupiter", {}) or {}
    db = cfg.get("database", {}) or {}
    d = VolumeBotSettings()

    ghost = is_ghost_holders_enabled(cfg)
    dust = float(vb.get("dust_whole_tokens", 1.0 if ghost else 0.0))
    if not ghost:
        dust = 0.0

    return VolumeBotSettings(
        rpc_url=get_rpc_url(sol.get("rpc_url")),
        db_path=str(db.get("path") or _default_db_path()),
        jupiter_base_url=str(jup.get("base_url") or d.jupiter_base_url).rstrip("/"),
        jupiter_api_key=get_jupiter_api_key() or jup.get("api_key"),
        jupiter_timeout_s=float(jup.get("timeout_s", d.jupiter_timeout_s)),
        slippage_bps=int(vb.get("slippage_bps", d.slippage_bps)),
        sol_reserve_lamports=int(vb.get("sol_reserve_lamports", d.sol_reserve_lamports)),
        sweep_fee_lamports=int(vb.get("sweep_fee_lamports", d.sweep_fee_lamports)),
        per_wallet_fee_reserve_sol=float(vb.get("per_wallet_fee_reserve_sol", d.per_wallet_fee_reserve_sol)),
        sell_pct_min=float(vb.get("sell_pct_min", d.sell_pct_min)),
        sell_pct_max=float(vb.get("sell_pct_max", d.sell_pct_max)),
        prefer_buy_probability=float(vb.get("prefer_buy_probability", d.prefer_buy_probability)),
        stagger_base_s=_pair(vb.get("stagger_base_s"), d.stagger_base_s),
        stagger_step_s=_pair(vb.get("stagger_step_s"), d.stagger_step_s),
        watchdog_floor_s=float(vb.get("watchdog_floor_s", d.watchdog_floor_s)),
        watchdog_rearm_s=_pair(vb.get("watchdog_rearm_s"), d.watchdog_rearm_s),
        watchdog_heartbeat_s=float(vb.get("watchdog_heartbeat_s", d.watchdog_heartbeat_s)),
        suspend_gap_s=float(vb.get("suspend_gap_s", d.suspend_gap_s)),
        confirm_timeout_s=float(vb.get("confirm_timeout_s", d.confirm_timeout_s)),
        drain_timeout_s=float(vb.get("drain_timeout_s", d.drain_timeout_s)),
        max_groups=int(vb.get("max_groups", d.max_groups)),
        dust_whole_tokens=dust,
        stealth_funding=is_stealth_funding_enabled(cfg),
        summary_flush_s=float(vb.get("summary_flush_s", d.summary_flush_s)),
    )

# -----------------------------------------------------------------------------
# Misc
# -----------------------------------------------------------------------------
def short_addr(address: Any) -> str:
    s = str(address or "")
    return (s[:8] + "...") if len(s) > 8 else s


def write_runtime_summary(summary: Dict[str, Any], path: Optional[Path] = None) -> None:
    """Atomically persist the lightweight runtime summary as JSON."""
    if path:
        target = Path(path)
    else:
        ensure_app_dirs()
        target = runtime_summary_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".runtime_summary.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2, sort_keys=True)
        os.replace(tmp, target)
    except OSError:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


__all__ = [
    "load_config",
    "setup_logging",
    "VolumeBotSettings",
    "settings_from_config",
    "short_addr",
    "write_runtime_summary",
]
