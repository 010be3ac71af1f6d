# solana_volume_bot_bundle/volume_bot/scheduler.py
"""
Trade Loop Scheduler.

One asyncio task per (group, wallet). Each task sleeps, runs one engine
attempt, then sleeps a fresh random interval read from the live config. The
per-wallet ``WalletExecutionState`` records live in this scheduler and are
only mutated by the wallet's own loop (plus cancellation bookkeeping here).
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .engine import TradeExecutionEngine
from .models import BotGroupConfig
from .registry import RuntimeRegistry
from .utils_exec import VolumeBotSettings

logger = logging.getLogger("VolumeBot")

ConfigProvider = Callable[[str], Optional[BotGroupConfig]]
StateKey = Tuple[str, str]


@dataclass
class WalletExecutionState:
    group_id: str
    wallet_id: str
    executing: bool = False
    require_buy_first: bool = True
    last_trade_at: Optional[float] = None
    armed_at: float = 0.0
    cancelled: bool = False
    task: Optional[asyncio.Task] = None
    generation: int = 0

    @property
    def key(self) -> StateKey:
        return (self.group_id, self.wallet_id)


def stagger_delays(count: int, settings: VolumeBotSettings, rng: random.Random) -> List[float]:
    """Strictly increasing initial delays: base jitter, then a random step per index."""
    delays: List[float] = []
    current = rng.uniform(*settings.stagger_base_s)
    for i in range(count):
        if i > 0:
            current += max(1e-3, rng.uniform(*settings.stagger_step_s))
        delays.append(current)
    return delays


class TradeLoopScheduler:
    def __init__(
        self,
        engine: TradeExecutionEngine,
        registry: RuntimeRegistry,
        config_provider: ConfigProvider,
        settings: VolumeBotSettings,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.registry = registry
        self.config_provider = config_provider
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock
        self._states: Dict[StateKey, WalletExecutionState] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_state(self, group_id: str, wallet_id: str) -> Optional[WalletExecutionState]:
        return self._states.get((group_id, wallet_id))

    def group_states(self, group_id: str) -> List[WalletExecutionState]:
        return [s for (gid, _), s in self._states.items() if gid == group_id]

    def active_wallet_ids(self, group_id: str) -> List[str]:
        return [s.wallet_id for s in self.group_states(group_id) if not s.cancelled]

    def next_interval(self, config: BotGroupConfig) -> float:
        return self.rng.uniform(float(config.min_interval_s), float(config.max_interval_s))

    # ------------------------------------------------------------------
    # Arming
    # ------------------------------------------------------------------
    def arm_group(self, group_id: str, wallet_ids: Sequence[str], *, require_buy_first: bool = True) -> List[float]:
        """Arm one staggered loop per wallet; returns the initial delays used."""
        delays = stagger_delays(len(wallet_ids), self.settings, self.rng)
        for wallet_id, delay in zip(wallet_ids, delays):
            self.arm(group_id, wallet_id, delay, require_buy_first=require_buy_first)
        logger.info("Bot group %s: armed %d trade loop(s)", group_id, len(wallet_ids))
        return delays

    def arm(
        self, group_id: str, wallet_id: str, delay: float, *, require_buy_first: Optional[bool] = None
    ) -> Optional[WalletExecutionState]:
        """
        Start a fresh loop for the wallet. A pending (sleeping) loop for the same
        wallet is replaced; a loop that is mid-trade is kept as is. Returns None
        without arming anything unless the group is running.
        """
        if not self.registry.is_running(group_id):
            logger.debug("Not arming %s/%s: group is not running", group_id, wallet_id)
            return None
        key = (group_id, wallet_id)
        prev = self._states.get(key)
        if prev is not None and prev.executing and not prev.cancelled:
            logger.debug("Not re-arming %s/%s: trade in flight", group_id, wallet_id)
            return prev
        state = WalletExecutionState(group_id=group_id, wallet_id=wallet_id)
        if prev is not None:
            state.require_buy_first = prev.require_buy_first
            state.last_trade_at = prev.last_trade_at
            state.generation = prev.generation + 1
            self._retire(prev)
        if require_buy_first is not None:
            state.require_buy_first = require_buy_first
        state.armed_at = self.clock()
        self._states[key] = state
        state.task = asyncio.create_task(
            self._run(state, float(delay)),
            name=f"volume-loop:{group_id}:{wallet_id}:{state.generation}",
        )
        return state

    def _retire(self, state: WalletExecutionState) -> None:
        state.cancelled = True
        task = state.task
        if task is not None and not task.done() and not state.executing:
            task.cancel()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def _alive(self, state: WalletExecutionState) -> bool:
        return (
            not state.cancelled
            and self._states.get(state.key) is state
            and self.registry.is_running(state.group_id)
        )

    async def _run(self, state: WalletExecutionState, delay: float) -> None:
        try:
            while True:
                await asyncio.sleep(max(0.0, delay))
                if not self._alive(state):
                    return
                try:
                    await self._tick(state)
                except Exception:
                    logger.exception("Trade attempt for %s/%s raised", state.group_id, state.wallet_id)
                if not self._alive(state):
                    return
                config = self.config_provider(state.group_id)
                if config is None:
                    logger.warning("Bot group %s: config vanished; stopping loop for %s", state.group_id, state.wallet_id)
                    return
                delay = self.next_interval(config)
        except asyncio.CancelledError:
            logger.debug("Trade loop %s/%s cancelled", state.group_id, state.wallet_id)
            raise
        except Exception:
            logger.exception("Trade loop %s/%s crashed", state.group_id, state.wallet_id)

    async def _tick(self, state: WalletExecutionState) -> None:
        if state.executing:
            logger.debug("Skipping tick for %s/%s: execution in progress", state.group_id, state.wallet_id)
            return
        config = self.config_provider(state.group_id)
        if config is None:
            return
        state.executing = True
        state.last_trade_at = self.clock()
        try:
            outcome = await self.engine.execute_trade(config, state.wallet_id, require_buy_first=state.require_buy_first)
        finally:
            state.executing = False
        if outcome.success and outcome.trade_type == "buy":
            state.require_buy_first = False
        if outcome.signer_missing:
            state.cancelled = True
            self.registry.exclude_wallet(state.group_id, state.wallet_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def cancel_wallet(self, group_id: str, wallet_id: str) -> None:
        state = self._states.pop((group_id, wallet_id), None)
        if state is not None:
            self._retire(state)

    def cancel_group(self, group_id: str) -> List[asyncio.Task]:
        """
        Cancel every loop of the group and drop its execution state. Returns
        the tasks still finishing an in-flight trade; see ``drain``.
        """
        in_flight: List[asyncio.Task] = []
        for key in [k for k in self._states if k[0] == group_id]:
            state = self._states.pop(key)
            self._retire(state)
            if state.task is not None and not state.task.done() and state.executing:
                in_flight.append(state.task)
        if in_flight:
            logger.info("Bot group %s: waiting on %d in-flight trade(s)", group_id, len(in_flight))
        return in_flight

    async def drain(self, tasks: Sequence[asyncio.Task], timeout: Optional[float] = None) -> None:
        if not tasks:
            return
        timeout = self.settings.drain_timeout_s if timeout is None else timeout
        done, pending = await asyncio.wait(list(tasks), timeout=timeout)
        for t in pending:
            logger.warning("Trade loop %s still running after %.0fs; cancelling", t.get_name(), timeout)
            t.cancel()

    async def shutdown(self) -> None:
        tasks = [s.task for s in self._states.values() if s.task is not None]
        for state in list(self._states.values()):
            state.cancelled = True
            if state.task is not None:
                state.task.cancel()
        self._states.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["WalletExecutionState", "stagger_delays", "TradeLoopScheduler"]
