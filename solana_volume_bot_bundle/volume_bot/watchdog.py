# solana_volume_bot_bundle/volume_bot/watchdog.py
"""
Visibility watchdog: repairs trade loops that stalled while the host was
suspended (laptop sleep, SIGSTOP, a frozen VM).

Suspension is detected by a heartbeat: on Linux the monotonic clock does not
advance while the machine sleeps but the wall clock does, so a wall-clock gap
much larger than the monotonic gap means we were suspended. Hosts that know
better can call ``notify_resume`` directly.
"""
from __future__ import annotations

import asyncio
import logging
import signal
import time
from typing import Callable, List, Optional, Tuple

from .registry import RuntimeRegistry
from .scheduler import ConfigProvider, TradeLoopScheduler
from .utils_exec import VolumeBotSettings

logger = logging.getLogger("VolumeBot")


class VisibilityWatchdog:
    def __init__(
        self,
        scheduler: TradeLoopScheduler,
        registry: RuntimeRegistry,
        config_provider: ConfigProvider,
        settings: VolumeBotSettings,
        *,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.scheduler = scheduler
        self.registry = registry
        self.config_provider = config_provider
        self.settings = settings
        self.clock = clock
        self.monotonic = monotonic
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    def stale_threshold(self, max_interval_s: float) -> float:
        return max(2.0 * float(max_interval_s), self.settings.watchdog_floor_s)

    def on_resume(self) -> List[Tuple[str, str]]:
        """Re-arm every stalled loop of every running group; returns the re-armed keys."""
        now = self.clock()
        rearmed: List[Tuple[str, str]] = []
        for group_id in self.registry.running_group_ids():
            config = self.config_provider(group_id)
            if config is None:
                continue
            threshold = self.stale_threshold(config.max_interval_s)
            for wallet_id in self.registry.get(group_id).wallet_ids:
                state = self.scheduler.get_state(group_id, wallet_id)
                if state is not None and state.executing:
                    continue
                last = None
                if state is not None and not state.cancelled:
                    last = state.last_trade_at or state.armed_at
                if last is not None and (now - last) < threshold:
                    continue
                delay = self.scheduler.rng.uniform(*self.settings.watchdog_rearm_s)
                if self.scheduler.arm(group_id, wallet_id, delay) is not None:
                    rearmed.append((group_id, wallet_id))
        if rearmed:
            logger.info("Watchdog re-armed %d stalled trade loop(s)", len(rearmed))
        return rearmed

    def notify_resume(self) -> List[Tuple[str, str]]:
        logger.info("Host resume signalled; checking trade loops")
        return self.on_resume()

    async def run(self) -> None:
        """Heartbeat loop; returns when ``stop`` is called."""
        interval = self.settings.watchdog_heartbeat_s
        last_wall, last_mono = self.clock(), self.monotonic()
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            wall, mono = self.clock(), self.monotonic()
            gap = (wall - last_wall) - (mono - last_mono)
            last_wall, last_mono = wall, mono
            if gap > self.settings.suspend_gap_s:
                logger.info("Detected host suspension of ~%.0fs", gap)
                self.on_resume()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop = asyncio.Event()
            self._task = asyncio.create_task(self.run(), name="volume-watchdog")
            self._install_sigcont()
        return self._task

    def _install_sigcont(self) -> None:
        sig = getattr(signal, "SIGCONT", None)
        if sig is None:
            return
        try:
            asyncio.get_running_loop().add_signal_handler(sig, self.notify_resume)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.debug("SIGCONT handler unavailable: %s", e)

    async def stop(self) -> None:
        self._stop.set()
        sig = getattr(signal, "SIGCONT", None)
        if sig is not None:
            try:
                asyncio.get_running_loop().remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                pass
        if self._task is not None:
            await self._task
            self._task = None


__all__ = ["VisibilityWatchdog"]
