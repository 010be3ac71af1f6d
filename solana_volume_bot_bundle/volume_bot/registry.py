# solana_volume_bot_bundle/volume_bot/registry.py
"""
In-memory registry of live bot-group state.

The transition methods below are the only mutators of a group's state. Every
call is checked against ``_ALLOWED`` so an illegal move (say, ``stopping`` to
``running``) surfaces immediately instead of corrupting the group.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Type

from .errors import InvalidTransitionError
from .models import (
    BotGroupRuntime,
    Error,
    GroupState,
    Idle,
    IdleWithOrphans,
    Running,
    RuntimeStats,
    Starting,
    Stopping,
)

logger = logging.getLogger("VolumeBot")

_ALLOWED: Dict[Type, tuple] = {
    Idle: (Starting, Running, Stopping),
    IdleWithOrphans: (Starting, Running, Stopping),
    Starting: (Running, Error),
    Running: (Stopping, Error),
    Stopping: (Idle, IdleWithOrphans, Error),
    Error: (Stopping,),
}

SummaryListener = Callable[[Dict[str, Dict]], None]


class RuntimeRegistry:
    def __init__(self, on_change: Optional[SummaryListener] = None):
        self._runtimes: Dict[str, BotGroupRuntime] = {}
        self._names: Dict[str, str] = {}
        self._on_change = on_change

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, group_id: str) -> BotGroupRuntime:
        """Snapshot of the group's runtime; an unknown group reads as idle."""
        rt = self._runtimes.get(group_id)
        return rt.copy() if rt is not None else BotGroupRuntime(group_id=group_id)

    def is_running(self, group_id: str) -> bool:
        rt = self._runtimes.get(group_id)
        return rt is not None and rt.is_running

    def running_group_ids(self) -> List[str]:
        return [gid for gid, rt in self._runtimes.items() if rt.is_running]

    def all(self) -> Dict[str, BotGroupRuntime]:
        return {gid: rt.copy() for gid, rt in self._runtimes.items()}

    def summary(self) -> Dict[str, Dict]:
        """Lightweight view of every non-idle group, suitable for persistence."""
        out: Dict[str, Dict] = {}
        for gid, rt in self._runtimes.items():
            if isinstance(rt.state, Idle):
                continue
            out[gid] = {
                "status": rt.status,
                "state": rt.state.name,
                "name": self._names.get(gid, gid),
                "wallet_count": len(rt.owned_wallet_ids),
                "swaps_executed": rt.stats.swaps_executed,
                "total_volume_sol": round(rt.stats.total_volume_sol, 9),
                "error": rt.error,
            }
        return out

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _transition(self, group_id: str, target: GroupState) -> BotGroupRuntime:
        rt = self._runtimes.get(group_id)
        if rt is None:
            rt = BotGroupRuntime(group_id=group_id)
            self._runtimes[group_id] = rt
        if not isinstance(target, _ALLOWED[type(rt.state)]):
            raise InvalidTransitionError(group_id, rt.state.name, target.name)
        logger.debug("Bot group %s: %s -> %s", group_id, rt.state.name, target.name)
        rt.state = target
        return rt

    def mark_starting(self, group_id: str, name: Optional[str] = None) -> None:
        rt = self._transition(group_id, Starting())
        if name:
            self._names[group_id] = name
        rt.wallet_ids = []
        rt.unsignable_wallet_ids = []
        rt.stats = RuntimeStats()
        rt.error = None
        self._changed()

    def mark_running(
        self,
        group_id: str,
        wallet_ids: Iterable[str],
        *,
        unsignable_wallet_ids: Iterable[str] = (),
        name: Optional[str] = None,
    ) -> None:
        rt = self._transition(group_id, Running())
        if name:
            self._names[group_id] = name
        rt.wallet_ids = list(wallet_ids)
        rt.unsignable_wallet_ids = [w for w in unsignable_wallet_ids if w not in rt.wallet_ids]
        rt.stats = RuntimeStats(started_at=time.time())
        rt.error = None
        self._changed()

    def mark_stopping(self, group_id: str, *, wallet_ids: Optional[Iterable[str]] = None) -> None:
        rt = self._transition(group_id, Stopping())
        if wallet_ids is not None:
            rt.wallet_ids = list(wallet_ids)
        self._changed()

    def mark_idle(self, group_id: str, kept_wallet_ids: Iterable[str] = (), *, error: Optional[str] = None) -> None:
        kept = list(dict.fromkeys(kept_wallet_ids))
        target: GroupState = IdleWithOrphans(tuple(kept)) if kept else Idle()
        rt = self._transition(group_id, target)
        rt.wallet_ids = kept
        rt.unsignable_wallet_ids = []
        rt.stats = RuntimeStats()
        rt.error = error
        self._changed()

    def mark_error(self, group_id: str, reason: str) -> None:
        rt = self._transition(group_id, Error(reason))
        rt.error = reason
        self._changed()

    # ------------------------------------------------------------------
    # Run-time bookkeeping (no state change)
    # ------------------------------------------------------------------
    def record_wallets(self, group_id: str, wallet_ids: Iterable[str]) -> None:
        """Record wallets as owned by the run as soon as they exist, before funding."""
        rt = self._runtimes.get(group_id)
        if rt is None:
            return
        for wid in wallet_ids:
            if wid not in rt.wallet_ids:
                rt.wallet_ids.append(wid)
        self._changed()

    def record_swap(self, group_id: str, volume_sol: float) -> None:
        rt = self._runtimes.get(group_id)
        if rt is None or not rt.is_running:
            return
        rt.stats.swaps_executed += 1
        rt.stats.total_volume_sol += max(0.0, float(volume_sol))
        self._changed()

    def record_failure(self, group_id: str) -> None:
        rt = self._runtimes.get(group_id)
        if rt is not None and rt.is_running:
            rt.stats.failed_trades += 1

    def exclude_wallet(self, group_id: str, wallet_id: str) -> None:
        """Stop trading a wallet whose signer vanished, keeping it in the group's accounting."""
        rt = self._runtimes.get(group_id)
        if rt is None or wallet_id not in rt.wallet_ids:
            return
        rt.wallet_ids.remove(wallet_id)
        if wallet_id not in rt.unsignable_wallet_ids:
            rt.unsignable_wallet_ids.append(wallet_id)
        logger.warning("Bot group %s: wallet %s excluded from trading (signer unavailable)", group_id, wallet_id)
        self._changed()

    def forget(self, group_id: str) -> None:
        self._runtimes.pop(group_id, None)
        self._names.pop(group_id, None)
        self._changed()

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.summary())
        except Exception as e:
            logger.warning("Runtime summary listener failed: %s", e)


__all__ = ["RuntimeRegistry"]
