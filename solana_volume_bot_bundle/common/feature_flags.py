# solana_volume_bot_bundle/common/feature_flags.py
import os


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    v = str(v).strip().lower()
    return v in ("1", "true", "yes", "y", "on")


def is_stealth_funding_enabled(cfg: dict) -> bool:
    # Hard env kill-switch wins
    if _env_bool("FORCE_DISABLE_STEALTH_FUNDING", False):
        return False
    cfg_toggle = bool((cfg or {}).get("volume_bot", {}).get("stealth_funding", False))
    return cfg_toggle or _env_bool("STEALTH_FUNDING_ENABLE", False)


def is_ghost_holders_enabled(cfg: dict) -> bool:
    """Ghost holders: leave a whole-token dust balance behind when liquidating."""
    cfg_toggle = bool((cfg or {}).get("volume_bot", {}).get("ghost_holders", False))
    return cfg_toggle or _env_bool("GHOST_HOLDERS_ENABLE", False)


def resolved_run_flags(cfg: dict) -> dict:
    return {
        "stealth_funding": is_stealth_funding_enabled(cfg),
        "ghost_holders": is_ghost_holders_enabled(cfg),
    }
