#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Any, Dict, Optional

from solana_volume_bot_bundle.common.constants import INTENSITY_PRESETS, TRADING_PATTERNS, runtime_summary_path
from solana_volume_bot_bundle.utils.env_loader import load_env_first_found

from .database import SqliteTradeLedger, init_db
from .service import BotGroupService
from .utils_exec import load_config, setup_logging


def _parse_args(argv=None):
    p = argparse.ArgumentParser(description="Solana volume bot: manage bot group configs")
    p.add_argument("-c", "--config", dest="config", default=None,
                   help="Path to config.yaml (optional; will use AppData default if omitted)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List bot groups")

    show = sub.add_parser("show", help="Show one bot group and its last known runtime summary")
    show.add_argument("group_id")

    create = sub.add_parser("create", help="Create a bot group")
    create.add_argument("name")
    create.add_argument("target_token")
    create.add_argument("--wallets", dest="wallet_count", type=int, required=True)
    create.add_argument("--sol-per-wallet", dest="sol_per_wallet", type=float, required=True)
    create.add_argument("--pattern", choices=TRADING_PATTERNS, default="organic")
    create.add_argument("--intensity", choices=sorted(INTENSITY_PRESETS), default="medium")
    _add_bounds(create)

    update = sub.add_parser("update", help="Edit an idle bot group")
    update.add_argument("group_id")
    update.add_argument("--sol-per-wallet", dest="sol_per_wallet", type=float)
    update.add_argument("--pattern", choices=TRADING_PATTERNS)
    update.add_argument("--intensity", choices=sorted(INTENSITY_PRESETS))
    _add_bounds(update)

    delete = sub.add_parser("delete", help="Delete an idle bot group")
    delete.add_argument("group_id")

    trades = sub.add_parser("trades", help="Show recent volume trades")
    trades.add_argument("--group", dest="group_id", default=None)
    trades.add_argument("--limit", type=int, default=20)
    return p.parse_args(argv)


def _add_bounds(p: argparse.ArgumentParser) -> None:
    p.add_argument("--min-swap", dest="min_swap_sol", type=float)
    p.add_argument("--max-swap", dest="max_swap_sol", type=float)
    p.add_argument("--min-interval", dest="min_interval_s", type=float)
    p.add_argument("--max-interval", dest="max_interval_s", type=float)


def _bounds(args) -> Dict[str, Any]:
    keys = ("sol_per_wallet", "pattern", "intensity", "min_swap_sol", "max_swap_sol", "min_interval_s", "max_interval_s")
    return {k: getattr(args, k) for k in keys if getattr(args, k, None) is not None}


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, default=str))


def _last_summary(group_id: str) -> Optional[Dict[str, Any]]:
    path = runtime_summary_path()
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8")).get(group_id)
    except (OSError, ValueError):
        return None


async def _run(args, cfg: Dict[str, Any]) -> int:
    # config commands never touch the vault
    svc = BotGroupService.from_config(cfg, vault=None)  # type: ignore[arg-type]
    try:
        await init_db(svc.settings.db_path)
        await svc.reload_configs()

        if args.command == "list":
            _print([
                {"id": c.id, "name": c.name, "target_token": c.target_token,
                 "wallet_count": c.wallet_count, "intensity": c.intensity}
                for c in svc.list_configs()
            ])
            return 0

        if args.command == "show":
            config = svc.get_config(args.group_id)
            if config is None:
                print(f"Unknown bot group {args.group_id!r}", file=sys.stderr)
                return 1
            _print({"config": asdict(config), "runtime": _last_summary(config.id) or {"status": "idle"}})
            return 0

        if args.command == "trades":
            _print(await SqliteTradeLedger(svc.settings.db_path).list_trades(group_id=args.group_id, limit=args.limit))
            return 0

        if args.command == "create":
            extra = _bounds(args)
            for k in ("sol_per_wallet", "pattern", "intensity"):
                extra.pop(k, None)
            outcome = await svc.create_config(
                args.name, args.target_token, args.wallet_count, args.sol_per_wallet,
                pattern=args.pattern, intensity=args.intensity, **extra,
            )
        elif args.command == "update":
            outcome = await svc.update_config(args.group_id, _bounds(args))
        else:
            outcome = await svc.delete_config(args.group_id)

        print(outcome.message)
        if outcome.config is not None and args.command != "delete":
            _print(asdict(outcome.config))
        return 0 if outcome.success else 1
    finally:
        await svc.close()


def main(argv=None):
    args = _parse_args(argv)
    load_env_first_found()
    cfg = load_config(args.config)
    setup_logging(cfg)
    sys.exit(asyncio.run(_run(args, cfg)))


if __name__ == "__main__":
    main()
