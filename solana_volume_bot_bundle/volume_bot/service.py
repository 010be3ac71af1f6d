# solana_volume_bot_bundle/volume_bot/service.py
"""
Operator-facing facade.

``BotGroupService`` wires the orchestrator together and is the only surface an
operator layer (dashboard, CLI) needs. Every mutating call returns a
``LifecycleOutcome``; configuration and vault errors are folded into a failed
outcome instead of escaping as exceptions.
"""
from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

from .chain import SolanaChain
from .database import SqliteConfigStore, SqliteLaunchRegistry, SqliteTradeLedger, init_db
from .dex import BondingCurveVenueDetector, DexRouter, JupiterSwapper
from .engine import TradeExecutionEngine
from .errors import ConfigError, VolumeBotError
from .interfaces import ChainClient, ConfigStore, LaunchRegistry, Ledger, StealthFunder, SwapService, Vault, VenueDetector
from .lifecycle import LifecycleManager, orphaned_wallets
from .models import BotGroupConfig, BotGroupRuntime, LifecycleOutcome, apply_config_updates, build_config
from .registry import RuntimeRegistry
from .scheduler import TradeLoopScheduler
from .utils_exec import VolumeBotSettings, settings_from_config, write_runtime_summary
from .wallet_safety import WalletSafetyPolicy
from .watchdog import VisibilityWatchdog

logger = logging.getLogger("VolumeBot")


class BotGroupService:
    def __init__(
        self,
        *,
        store: ConfigStore,
        vault: Vault,
        chain: ChainClient,
        swap_service: SwapService,
        venue_detector: VenueDetector,
        ledger: Ledger,
        launch_registry: LaunchRegistry,
        settings: Optional[VolumeBotSettings] = None,
        stealth_funder: Optional[StealthFunder] = None,
        rng: Optional[random.Random] = None,
        summary_path: Optional[Path] = None,
        persist_summary: bool = True,
    ):
        self.settings = settings or VolumeBotSettings()
        self.store = store
        self.vault = vault
        self.chain = chain
        self.swap_service = swap_service
        self._summary_path = summary_path
        self._configs: Dict[str, BotGroupConfig] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._closers: List[Any] = []
        self._pending_summary: Optional[Dict[str, Dict]] = None
        self._summary_task: Optional[asyncio.Task] = None
        self._summary_lock = asyncio.Lock()

        rng = rng or random.Random()
        self.registry = RuntimeRegistry(on_change=self._persist_summary if persist_summary else None)
        self.engine = TradeExecutionEngine(
            vault=vault,
            chain=chain,
            swap_service=swap_service,
            venue_detector=venue_detector,
            ledger=ledger,
            registry=self.registry,
            settings=self.settings,
            rng=rng,
        )
        self.scheduler = TradeLoopScheduler(self.engine, self.registry, self.get_config, self.settings, rng=rng)
        self.lifecycle = LifecycleManager(
            vault=vault,
            chain=chain,
            engine=self.engine,
            registry=self.registry,
            scheduler=self.scheduler,
            safety=WalletSafetyPolicy(launch_registry),
            settings=self.settings,
            stealth_funder=stealth_funder,
        )
        self.watchdog = VisibilityWatchdog(self.scheduler, self.registry, self.get_config, self.settings)

    @classmethod
    def from_config(
        cls,
        cfg: Optional[Dict[str, Any]],
        vault: Vault,
        *,
        stealth_funder: Optional[StealthFunder] = None,
    ) -> "BotGroupService":
        """Build a service backed by SQLite, the configured RPC endpoint and Jupiter."""
        settings = settings_from_config(cfg)
        chain = SolanaChain.from_settings(settings)
        jupiter = JupiterSwapper.from_settings(chain, settings)
        router = DexRouter({"jupiter": jupiter})
        svc = cls(
            store=SqliteConfigStore(settings.db_path),
            vault=vault,
            chain=chain,
            swap_service=router,
            venue_detector=BondingCurveVenueDetector(chain),
            ledger=SqliteTradeLedger(settings.db_path),
            launch_registry=SqliteLaunchRegistry(settings.db_path),
            settings=settings,
            stealth_funder=stealth_funder,
        )
        svc._closers = [router, chain]
        return svc

    # ------------------------------------------------------------------
    # Setup / teardown
    # ------------------------------------------------------------------
    async def open(self) -> "BotGroupService":
        if isinstance(self.store, SqliteConfigStore):
            await init_db(self.store.dbp)
        await self.reload_configs()
        self.watchdog.start()
        return self

    async def close(self) -> None:
        """Stop the watchdog and every loop. Wallets are left in place for resume/cleanup."""
        await self.watchdog.stop()
        await self.scheduler.shutdown()
        task, self._summary_task = self._summary_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush_summary()
        for c in self._closers:
            try:
                await c.close()
            except Exception as e:
                logger.debug("Error closing %s: %s", type(c).__name__, e)

    async def __aenter__(self) -> "BotGroupService":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _persist_summary(self, summary: Dict[str, Dict]) -> None:
        """Registry change hook: keep the newest summary and write it at most once per flush interval."""
        self._pending_summary = summary
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_pending_summary()
            return
        if self._summary_task is None or self._summary_task.done():
            self._summary_task = loop.create_task(self._flush_summary_later(), name="runtime-summary-flush")

    def _write_pending_summary(self) -> None:
        summary, self._pending_summary = self._pending_summary, None
        if summary is None:
            return
        try:
            write_runtime_summary(summary, self._summary_path)
        except OSError as e:
            logger.warning("Could not write runtime summary: %s", e)

    async def _flush_summary_later(self) -> None:
        await asyncio.sleep(self.settings.summary_flush_s)
        await self.flush_summary()

    async def flush_summary(self) -> None:
        """Write the newest pending runtime summary now, off the event loop."""
        async with self._summary_lock:
            summary, self._pending_summary = self._pending_summary, None
            if summary is None:
                return
            try:
                await asyncio.to_thread(write_runtime_summary, summary, self._summary_path)
            except OSError as e:
                logger.warning("Could not write runtime summary: %s", e)

    def _lock(self, group_id: str) -> asyncio.Lock:
        lock = self._locks.get(group_id)
        if lock is None:
            lock = self._locks[group_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def reload_configs(self) -> List[BotGroupConfig]:
        configs = await self.store.list()
        self._configs = {c.id: c for c in configs}
        return configs

    def get_config(self, group_id: str) -> Optional[BotGroupConfig]:
        """Live config reference used by the trade loops."""
        return self._configs.get(group_id)

    def list_configs(self) -> List[BotGroupConfig]:
        return sorted(self._configs.values(), key=lambda c: c.created_at)

    def get_runtime(self, group_id: str) -> BotGroupRuntime:
        return self.registry.get(group_id)

    def runtimes(self) -> Dict[str, BotGroupRuntime]:
        return {gid: self.registry.get(gid) for gid in self._configs}

    async def orphaned_wallet_ids(self, group_id: str) -> List[str]:
        config = self._require_config(group_id)
        wallets = await self.vault.list_wallets()
        known = {w.id for w in wallets}
        ids = [w.id for w in orphaned_wallets(config, wallets)]
        rt = self.registry.get(group_id)
        if rt.is_idle:
            ids += [wid for wid in rt.wallet_ids if wid in known and wid not in ids]
        return ids

    async def has_orphans(self, group_id: str) -> bool:
        rt = self.registry.get(group_id)
        if not rt.is_idle:
            return False
        return bool(await self.orphaned_wallet_ids(group_id))

    def _require_config(self, group_id: str) -> BotGroupConfig:
        config = self._configs.get(group_id)
        if config is None:
            raise ConfigError(f"Unknown bot group {group_id!r}")
        return config

    def _require_idle(self, config: BotGroupConfig, what: str) -> None:
        rt = self.registry.get(config.id)
        if not rt.is_idle:
            raise ConfigError(f"Cannot {what} {config.name} while it is {rt.status}")

    async def _require_no_orphans(self, config: BotGroupConfig, what: str) -> None:
        rt = self.registry.get(config.id)
        count = len(rt.wallet_ids) if rt.has_orphans else 0
        if self.vault is not None:
            count = max(count, len(orphaned_wallets(config, await self.vault.list_wallets())))
        if count:
            raise ConfigError(
                f"Cannot {what} {config.name} while it has {count} orphaned wallet(s); resume or clean up first"
            )

    # ------------------------------------------------------------------
    # Config operations
    # ------------------------------------------------------------------
    async def create_config(
        self,
        name: str,
        target_token: str,
        wallet_count: int,
        sol_per_wallet: float,
        *,
        pattern: str = "organic",
        intensity: str = "medium",
        **overrides: Any,
    ) -> LifecycleOutcome:
        outcome = LifecycleOutcome(action="create", group_id="")
        try:
            if len(self._configs) >= self.settings.max_groups:
                raise ConfigError(f"Maximum of {self.settings.max_groups} bot groups reached")
            config = build_config(
                name, target_token, wallet_count, sol_per_wallet,
                pattern=pattern, intensity=intensity, **overrides,
            )
            taken = {c.name.lower() for c in self._configs.values()}
            if config.name.lower() in taken:
                raise ConfigError(f"A bot group named {config.name!r} already exists")
            await self.store.save(config)
        except VolumeBotError as e:
            logger.warning("Create bot group rejected: %s", e)
            return outcome.fail(str(e))
        self._configs[config.id] = config
        outcome.group_id = config.id
        outcome.config = config
        outcome.note = f"Created bot group {config.name}"
        logger.info("Created bot group %s (%s) for %s", config.name, config.id, config.target_token)
        return outcome

    async def update_config(self, group_id: str, updates: Dict[str, Any]) -> LifecycleOutcome:
        outcome = LifecycleOutcome(action="update", group_id=group_id)
        async with self._lock(group_id):
            try:
                config = self._require_config(group_id)
                self._require_idle(config, "edit")
                updated = apply_config_updates(config, updates)
                await self.store.save(updated)
            except VolumeBotError as e:
                logger.warning("Update of bot group %s rejected: %s", group_id, e)
                return outcome.fail(str(e))
            self._configs[group_id] = updated
        outcome.config = updated
        outcome.note = f"Updated bot group {updated.name}"
        logger.info("Updated bot group %s: %s", updated.name, ", ".join(sorted(updates)))
        return outcome

    async def delete_config(self, group_id: str) -> LifecycleOutcome:
        outcome = LifecycleOutcome(action="delete", group_id=group_id)
        async with self._lock(group_id):
            try:
                config = self._require_config(group_id)
                self._require_idle(config, "delete")
                await self._require_no_orphans(config, "delete")
                await self.store.delete(group_id)
            except VolumeBotError as e:
                logger.warning("Delete of bot group %s rejected: %s", group_id, e)
                return outcome.fail(str(e))
            self._configs.pop(group_id, None)
            self.registry.forget(group_id)
        outcome.config = config
        outcome.note = f"Deleted bot group {config.name}"
        logger.info("Deleted bot group %s (%s)", config.name, group_id)
        return outcome

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------
    async def _run_lifecycle(self, action: str, group_id: str) -> LifecycleOutcome:
        async with self._lock(group_id):
            try:
                config = self._require_config(group_id)
                return await getattr(self.lifecycle, action)(config)
            except VolumeBotError as e:
                logger.warning("%s of bot group %s rejected: %s", action.capitalize(), group_id, e)
                return LifecycleOutcome(action=action, group_id=group_id).fail(str(e))

    async def start_group(self, group_id: str) -> LifecycleOutcome:
        return await self._run_lifecycle("start", group_id)

    async def stop_group(self, group_id: str) -> LifecycleOutcome:
        return await self._run_lifecycle("stop", group_id)

    async def resume_group(self, group_id: str) -> LifecycleOutcome:
        return await self._run_lifecycle("resume", group_id)

    async def cleanup_orphans(self, group_id: str) -> LifecycleOutcome:
        return await self._run_lifecycle("cleanup", group_id)


__all__ = ["BotGroupService"]
