# solana_volume_bot_bundle/volume_bot/wallet_safety.py
"""
Launch-wallet protection.

A wallet that created a token holds the creator authority needed to claim fees
later. Destroying its key forfeits those fees forever, so such wallets are
never deleted, whatever their balance.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from .interfaces import LaunchRegistry
from .models import Wallet
from .utils_exec import short_addr

logger = logging.getLogger("VolumeBot")


@dataclass
class SafetyPartition:
    deletable: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)
    protected_details: List[Dict[str, Any]] = field(default_factory=list)


def partition_deletable(
    candidate_ids: Iterable[str],
    wallets: Mapping[str, Wallet],
    launches_by_address: Mapping[str, List[Dict[str, Any]]],
) -> SafetyPartition:
    """
    Split ``candidate_ids`` into deletable and protected wallets.

    Candidates missing from ``wallets`` stay deletable: without an address they
    cannot match a launch record, and the vault no longer knows them anyway.
    """
    out = SafetyPartition()
    for wid in candidate_ids:
        wallet = wallets.get(wid)
        launches = launches_by_address.get(wallet.address, []) if wallet is not None else []
        if launches:
            out.protected.append(wid)
            out.protected_details.append({
                "wallet_id": wid,
                "wallet_name": wallet.name,
                "address": wallet.address,
                "launches": [
                    {"mint": l.get("mint_address"), "symbol": l.get("symbol"), "name": l.get("name")}
                    for l in launches
                ],
            })
        else:
            out.deletable.append(wid)
    return out


class WalletSafetyPolicy:
    """Reads the launch registry fresh on every call; protection can change mid-run."""

    def __init__(self, launch_registry: LaunchRegistry):
        self.launch_registry = launch_registry

    async def partition(self, candidate_ids: Iterable[str], wallets: Mapping[str, Wallet]) -> SafetyPartition:
        launches = await self.launch_registry.launch_wallet_addresses()
        result = partition_deletable(list(candidate_ids), wallets, launches)
        for d in result.protected_details:
            logger.warning(
                "Protecting launch wallet %s (%s): created %s",
                d["wallet_name"],
                short_addr(d["address"]),
                ", ".join(str(l["symbol"] or l["mint"]) for l in d["launches"]),
            )
        return result


__all__ = ["SafetyPartition", "partition_deletable", "WalletSafetyPolicy"]
