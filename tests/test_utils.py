import json

import pytest
import yaml

from solana_volume_bot_bundle.common import feature_flags
from solana_volume_bot_bundle.volume_bot import utils_exec
from solana_volume_bot_bundle.volume_bot.utils_exec import (
    VolumeBotSettings,
    load_config,
    settings_from_config,
    short_addr,
    write_runtime_summary,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SOLO_VOLUME_BOT_HOME", str(tmp_path / "home"))
    for var in ("SOLANA_RPC_URL", "JUPITER_API_KEY", "GHOST_HOLDERS_ENABLE",
                "STEALTH_FUNDING_ENABLE", "FORCE_DISABLE_STEALTH_FUNDING"):
        monkeypatch.delenv(var, raising=False)


def test_load_config_writes_default_when_missing(tmp_path):
    path = tmp_path / "conf" / "config.yaml"
    cfg = load_config(str(path))
    assert path.exists()
    assert cfg["volume_bot"]["max_groups"] == 6
    assert yaml.safe_load(path.read_text(encoding="utf-8")) == cfg


def test_settings_from_config_reads_sections():
    s = settings_from_config({
        "solana": {"rpc_url": "https://rpc.example"},
        "jupiter": {"base_url": "https://jup.example/v1/", "api_key": "cfgkey"},
        "volume_bot": {"slippage_bps": 75, "stagger_base_s": [9, 3], "max_groups": 2},
    })
    assert s.rpc_url == "https://rpc.example"
    assert s.jupiter_base_url == "https://jup.example/v1"
    assert s.jupiter_api_key == "cfgkey"
    assert s.slippage_bps == 75
    assert s.stagger_base_s == (3.0, 9.0)
    assert s.max_groups == 2
    assert s.stagger_step_s == VolumeBotSettings().stagger_step_s


def test_env_overrides_rpc_and_api_key(monkeypatch):
    monkeypatch.setenv("SOLANA_RPC_URL", "'https://env.example'")
    monkeypatch.setenv("JUPITER_API_KEY", "envkey")
    s = settings_from_config({"solana": {"rpc_url": "https://rpc.example"}, "jupiter": {"api_key": "cfgkey"}})
    assert s.rpc_url == "https://env.example"
    assert s.jupiter_api_key == "envkey"


def test_dust_only_applies_with_ghost_holders(monkeypatch):
    assert settings_from_config({"volume_bot": {"dust_whole_tokens": 3}}).dust_whole_tokens == 0.0

    ghost = settings_from_config({"volume_bot": {"ghost_holders": True}})
    assert ghost.dust_whole_tokens == 1.0
    assert ghost.dust_raw(6) == 1_000_000

    monkeypatch.setenv("GHOST_HOLDERS_ENABLE", "yes")
    assert settings_from_config({"volume_bot": {"dust_whole_tokens": 2}}).dust_raw(0) == 2


def test_stealth_funding_kill_switch_wins(monkeypatch):
    cfg = {"volume_bot": {"stealth_funding": True}}
    assert feature_flags.is_stealth_funding_enabled(cfg)
    monkeypatch.setenv("FORCE_DISABLE_STEALTH_FUNDING", "1")
    assert not feature_flags.is_stealth_funding_enabled(cfg)
    assert feature_flags.resolved_run_flags(cfg) == {"stealth_funding": False, "ghost_holders": False}


def test_runtime_summary_is_replaced_atomically(tmp_path):
    path = tmp_path / "state" / "runtime_summary.json"
    write_runtime_summary({"g": {"status": "running"}}, path)
    write_runtime_summary({}, path)
    assert json.loads(path.read_text(encoding="utf-8")) == {}
    assert [p.name for p in path.parent.iterdir()] == ["runtime_summary.json"]


def test_short_addr():
    assert short_addr("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263") == "DezXAZ8z..."
    assert short_addr(None) == ""


def test_runtime_summary_with_explicit_path_leaves_app_dirs_alone(tmp_path, monkeypatch):
    def no_app_dirs():
        raise AssertionError("app dirs touched")

    monkeypatch.setattr(utils_exec, "ensure_app_dirs", no_app_dirs)
    path = tmp_path / "elsewhere" / "summary.json"
    write_runtime_summary({"g": {"status": "running"}}, path)
    assert json.loads(path.read_text(encoding="utf-8")) == {"g": {"status": "running"}}


def test_summary_flush_interval_is_configurable():
    assert settings_from_config({}).summary_flush_s == VolumeBotSettings().summary_flush_s
    assert settings_from_config({"volume_bot": {"summary_flush_s": 3}}).summary_flush_s == 3.0
