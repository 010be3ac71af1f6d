# solana_volume_bot_bundle/volume_bot/lifecycle.py
"""
Lifecycle Manager: start / stop / resume / cleanup.

Teardown (shared by stop and cleanup) runs in this order:

    liquidate -> verify on-chain -> safety gate -> sweep -> safety gate -> delete

A wallet's key is removed from the vault only when the post-liquidation read
shows no non-dust token balance, the wallet is not a launch wallet, and its SOL
was swept back to the treasury. Everything else is kept so an operator can
retry with cleanup later.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from solders.keypair import Keypair

from solana_volume_bot_bundle.common.constants import LAMPORTS_PER_SOL, WSOL_MINT

from .engine import TradeExecutionEngine, read_holdings
from .errors import (
    ConfigError,
    InsufficientFundsError,
    SignerNotFoundError,
    VaultError,
    VerificationError,
    VaultLockedError,
)
from .interfaces import ChainClient, StealthFunder, Vault
from .models import BotGroupConfig, Error, LifecycleOutcome, TokenHolding, Wallet
from .registry import RuntimeRegistry
from .scheduler import TradeLoopScheduler
from .utils_exec import VolumeBotSettings, short_addr
from .wallet_safety import WalletSafetyPolicy

logger = logging.getLogger("VolumeBot")


@dataclass
class _TeardownState:
    wallets: Dict[str, Wallet]
    signers: Dict[str, Keypair]
    kept: List[str] = field(default_factory=list)
    protected: List[str] = field(default_factory=list)


def orphaned_wallets(config: BotGroupConfig, wallets: Sequence[Wallet]) -> List[Wallet]:
    """Burner wallets named ``<group name>-W<index>``."""
    prefix = config.burner_prefix
    return [
        w for w in wallets
        if w.type == "burner" and w.name.startswith(prefix) and w.name[len(prefix):].isdigit()
    ]


class LifecycleManager:
    def __init__(
        self,
        *,
        vault: Vault,
        chain: ChainClient,
        engine: TradeExecutionEngine,
        registry: RuntimeRegistry,
        scheduler: TradeLoopScheduler,
        safety: WalletSafetyPolicy,
        settings: VolumeBotSettings,
        stealth_funder: Optional[StealthFunder] = None,
    ):
        self.vault = vault
        self.chain = chain
        self.engine = engine
        self.registry = registry
        self.scheduler = scheduler
        self.safety = safety
        self.settings = settings
        self.stealth_funder = stealth_funder

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    def _require_password(self) -> str:
        password = None if self.vault.is_locked() else self.vault.get_password()
        if not password:
            raise VaultLockedError()
        return password

    @staticmethod
    def _treasury(wallets: Sequence[Wallet]) -> Wallet:
        for wallet_type in ("treasury", "primary"):
            for w in wallets:
                if w.type == wallet_type:
                    return w
        raise ConfigError("No treasury wallet found")

    async def _signer_for(self, wallet: Wallet) -> Keypair:
        for s in await self.vault.get_signers():
            if str(s.pubkey()) == wallet.address:
                return s
        raise SignerNotFoundError(wallet.id)

    def _required_sol(self, config: BotGroupConfig) -> float:
        return config.funding_required_sol(self.settings.per_wallet_fee_reserve_sol)

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------
    async def start(self, config: BotGroupConfig) -> LifecycleOutcome:
        rt = self.registry.get(config.id)
        if not rt.is_idle:
            raise ConfigError(f"Bot group {config.name} is already {rt.status}")
        password = self._require_password()
        wallets = await self.vault.list_wallets()
        orphans = orphaned_wallets(config, wallets)
        if orphans or rt.has_orphans:
            raise ConfigError(
                f"Bot group {config.name} has {max(len(orphans), len(rt.wallet_ids))} orphaned wallet(s); "
                "resume or clean up first"
            )
        treasury = self._treasury(wallets)

        required = self._required_sol(config)
        try:
            lamports = await self.chain.get_sol_balance(treasury.address)
        except Exception as e:
            raise ConfigError(f"Could not read treasury balance: {e}") from e
        available = lamports / LAMPORTS_PER_SOL
        if available < required:
            raise InsufficientFundsError(available, required)

        outcome = LifecycleOutcome(action="start", group_id=config.id)
        self.registry.mark_starting(config.id, name=config.name)
        logger.info(
            "Bot group %s: starting %d wallet(s) at %.4f SOL each (treasury %.4f SOL)",
            config.name, config.wallet_count, config.sol_per_wallet, available,
        )
        try:
            new_wallets = await self.vault.generate_wallets(config.wallet_count, config.burner_prefix, "burner", password)
            self.registry.record_wallets(config.id, [w.id for w in new_wallets])
            outcome.wallets_created = len(new_wallets)
            if len(new_wallets) != config.wallet_count:
                raise VaultError(f"Vault generated {len(new_wallets)} of {config.wallet_count} wallet(s)")

            treasury_signer = await self._signer_for(treasury)
            transfers = [(w.address, config.sol_per_wallet_lamports) for w in new_wallets]
            await self._fund(treasury_signer, transfers)
            outcome.wallets_funded = len(new_wallets)
        except Exception as e:
            self.registry.mark_error(config.id, str(e))
            logger.error("Bot group %s: start failed: %s", config.name, e)
            return outcome.fail(f"Start failed: {e}")

        wallet_ids = [w.id for w in new_wallets]
        self.registry.mark_running(config.id, wallet_ids, name=config.name)
        self.scheduler.arm_group(config.id, wallet_ids, require_buy_first=True)
        logger.info("Bot group %s: running with %d wallet(s)", config.name, len(wallet_ids))
        return outcome

    async def _fund(self, treasury_signer: Keypair, transfers: List[Tuple[str, int]]) -> None:
        funder = self.stealth_funder
        if self.settings.stealth_funding and funder is not None and funder.is_available():
            logger.info("Funding %d wallet(s) via stealth bridge", len(transfers))
            await funder.fund(treasury_signer, transfers)
            return
        await self.chain.transfer_sol_batch(treasury_signer, transfers)

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------
    async def stop(self, config: BotGroupConfig) -> LifecycleOutcome:
        rt = self.registry.get(config.id)
        if not (rt.is_running or isinstance(rt.state, Error)):
            raise ConfigError(f"Bot group {config.name} is not running")
        password = self._require_password()

        # out of Running before cancelling: arm() refuses groups that are not running
        self.registry.mark_stopping(config.id)
        in_flight = self.scheduler.cancel_group(config.id)
        await self.scheduler.drain(in_flight)

        outcome = LifecycleOutcome(action="stop", group_id=config.id)
        logger.info("Bot group %s: stopping %d wallet(s)", config.name, len(rt.owned_wallet_ids))
        return await self._teardown_and_settle(config, rt.owned_wallet_ids, password, outcome)

    # ------------------------------------------------------------------
    # cleanup
    # ------------------------------------------------------------------
    async def cleanup(self, config: BotGroupConfig) -> LifecycleOutcome:
        rt = self.registry.get(config.id)
        if not rt.is_idle:
            raise ConfigError(f"Bot group {config.name} is {rt.status}; stop it before cleaning up")
        password = self._require_password()
        wallets = await self.vault.list_wallets()
        known = {w.id for w in wallets}
        orphan_ids = [w.id for w in orphaned_wallets(config, wallets)]
        orphan_ids += [wid for wid in rt.wallet_ids if wid in known and wid not in orphan_ids]

        outcome = LifecycleOutcome(action="cleanup", group_id=config.id)
        if not orphan_ids:
            logger.info("Bot group %s: no orphaned wallets to clean up", config.name)
            return outcome

        self.registry.mark_stopping(config.id, wallet_ids=orphan_ids)
        logger.info("Bot group %s: cleaning up %d orphaned wallet(s)", config.name, len(orphan_ids))
        return await self._teardown_and_settle(config, orphan_ids, password, outcome)

    async def _teardown_and_settle(
        self, config: BotGroupConfig, wallet_ids: List[str], password: str, outcome: LifecycleOutcome
    ) -> LifecycleOutcome:
        try:
            wallets = await self.vault.list_wallets()
            treasury = self._treasury(wallets)
            carried = await self.teardown(config, wallet_ids, wallets, treasury, password, outcome)
        except Exception as e:
            self.registry.mark_error(config.id, str(e))
            logger.error("Bot group %s: %s failed: %s", config.name, outcome.action, e)
            return outcome.fail(f"{outcome.action.capitalize()} failed: {e}")

        error = f"{outcome.wallets_kept} wallet(s) still hold unsold tokens" if outcome.wallets_kept else None
        self.registry.mark_idle(config.id, carried, error=error)
        logger.info("Bot group %s: %s finished: %s", config.name, outcome.action, outcome.message)
        return outcome

    # ------------------------------------------------------------------
    # resume
    # ------------------------------------------------------------------
    async def resume(self, config: BotGroupConfig) -> LifecycleOutcome:
        rt = self.registry.get(config.id)
        if not rt.is_idle:
            raise ConfigError(f"Bot group {config.name} is already {rt.status}")
        if self.vault.is_locked():
            raise VaultLockedError()
        wallets = await self.vault.list_wallets()
        by_id = {w.id: w for w in wallets}
        orphans = orphaned_wallets(config, wallets)
        orphans += [by_id[wid] for wid in rt.wallet_ids if wid in by_id and by_id[wid] not in orphans]
        if not orphans:
            raise ConfigError(f"No orphaned wallets found to resume for {config.name}")

        signer_addrs = {str(s.pubkey()) for s in await self.vault.get_signers()}
        signable = [w.id for w in orphans if w.address in signer_addrs]
        unsignable = [w.id for w in orphans if w.address not in signer_addrs]
        if not signable:
            raise VaultError(f"No signers available for the {len(orphans)} orphaned wallet(s) of {config.name}")

        self.registry.mark_running(config.id, signable, unsignable_wallet_ids=unsignable, name=config.name)
        self.scheduler.arm_group(config.id, signable, require_buy_first=True)
        outcome = LifecycleOutcome(action="resume", group_id=config.id, wallets_resumed=len(signable))
        outcome.kept_wallet_ids = list(unsignable)
        for wid in unsignable:
            outcome.add_error(f"{by_id[wid].name}: signer not found; excluded from trading")
        logger.info(
            "Bot group %s: resumed %d wallet(s) (%d without signer)", config.name, len(signable), len(unsignable)
        )
        return outcome

    # ------------------------------------------------------------------
    # Teardown pipeline
    # ------------------------------------------------------------------
    async def teardown(
        self,
        config: BotGroupConfig,
        wallet_ids: Sequence[str],
        wallets: Sequence[Wallet],
        treasury: Wallet,
        password: str,
        outcome: LifecycleOutcome,
    ) -> List[str]:
        """
        Run the liquidation/verification/sweep/delete pipeline over ``wallet_ids``.
        Fills ``outcome`` and returns the wallet ids that must stay with the group.
        """
        st = _TeardownState(
            wallets={w.id: w for w in wallets},
            signers={str(s.pubkey()): s for s in await self.vault.get_signers()},
        )
        present: List[str] = []
        for wid in dict.fromkeys(wallet_ids):
            if wid in st.wallets:
                present.append(wid)
            else:
                outcome.missing_wallet_ids.append(wid)
                logger.warning("Bot group %s: wallet %s no longer in vault", config.name, wid)

        await self._liquidate(config, present, st, outcome)
        verified_empty = await self._verify(config, present, st, outcome)

        gate = await self.safety.partition(verified_empty, st.wallets)
        self._protect(gate.protected, gate.protected_details, st, outcome)

        swept = await self._sweep(gate.deletable, treasury, st, outcome)

        # last gate: a launch may have been recorded while we were sweeping
        final = await self.safety.partition(swept, st.wallets)
        self._protect(final.protected, final.protected_details, st, outcome)

        if final.deletable:
            try:
                outcome.wallets_deleted = int(await self.vault.remove_wallets(final.deletable, password))
                outcome.deleted_wallet_ids = list(final.deletable)
            except Exception as e:
                st.kept.extend(final.deletable)
                outcome.add_error(f"Failed to delete {len(final.deletable)} wallet(s): {e}")
                logger.error("Bot group %s: wallet deletion failed: %s", config.name, e)

        outcome.kept_wallet_ids = list(st.kept)
        outcome.wallets_kept = len(st.kept)
        outcome.protected_wallet_ids = list(st.protected)
        outcome.wallets_protected = len(st.protected)
        return list(st.kept) + [w for w in st.protected if w not in st.kept]

    async def _liquidate(self, config: BotGroupConfig, wallet_ids: List[str], st: _TeardownState, outcome: LifecycleOutcome) -> None:
        for wid in wallet_ids:
            wallet = st.wallets[wid]
            signer = st.signers.get(wallet.address)
            if signer is None:
                outcome.sell_errors += 1
                outcome.add_error(f"{wallet.name}: signer not found")
                continue
            res = await self.engine.liquidate_wallet(wallet, signer, group_id=config.id, mints=[config.target_token])
            outcome.tokens_sold += res.tokens_sold
            outcome.sell_errors += res.sell_errors
            outcome.errors.extend(res.errors)

    async def _read_holdings(self, config: BotGroupConfig, wallet: Wallet) -> List[TokenHolding]:
        try:
            return await read_holdings(self.chain, wallet.address, [config.target_token])
        except Exception as e:
            raise VerificationError(f"{wallet.name}: balance verification failed: {e}") from e

    async def _verify(
        self, config: BotGroupConfig, wallet_ids: List[str], st: _TeardownState, outcome: LifecycleOutcome
    ) -> List[str]:
        verified_empty: List[str] = []
        for wid in wallet_ids:
            wallet = st.wallets[wid]
            try:
                holdings = await self._read_holdings(config, wallet)
            except VerificationError as e:
                st.kept.append(wid)
                outcome.add_error(str(e))
                logger.warning("Could not verify %s; keeping it: %s", short_addr(wallet.address), e)
                continue
            remaining = [
                h for h in holdings
                if h.mint != WSOL_MINT and h.amount_raw > self.settings.dust_raw(h.decimals)
            ]
            if remaining:
                st.kept.append(wid)
                logger.warning(
                    "Keeping %s: still holds %d token(s) (%s)",
                    short_addr(wallet.address),
                    len(remaining),
                    ", ".join(h.mint[:8] for h in remaining),
                )
            else:
                verified_empty.append(wid)
        return verified_empty

    async def _sweep(self, wallet_ids: List[str], treasury: Wallet, st: _TeardownState, outcome: LifecycleOutcome) -> List[str]:
        swept: List[str] = []
        for wid in wallet_ids:
            wallet = st.wallets[wid]
            signer = st.signers.get(wallet.address)
            if signer is None:
                outcome.sweep_errors += 1
                st.kept.append(wid)
                outcome.add_error(f"{wallet.name}: cannot sweep, signer not found")
                continue
            try:
                balance = await self.chain.get_sol_balance(wallet.address)
                amount = balance - self.settings.sweep_fee_lamports
                if amount > 0:
                    await self.chain.transfer_sol_batch(signer, [(treasury.address, amount)])
                    outcome.wallets_swept += 1
                    logger.info(
                        "Swept %.6f SOL from %s to treasury", amount / LAMPORTS_PER_SOL, short_addr(wallet.address)
                    )
                swept.append(wid)
            except Exception as e:
                outcome.sweep_errors += 1
                st.kept.append(wid)
                outcome.add_error(f"{wallet.name}: sweep failed: {e}")
                logger.warning("Sweep failed for %s: %s", short_addr(wallet.address), e)
        return swept

    @staticmethod
    def _protect(ids: List[str], details: List[dict], st: _TeardownState, outcome: LifecycleOutcome) -> None:
        for wid, d in zip(ids, details):
            if wid not in st.protected:
                st.protected.append(wid)
                outcome.protected_details.append(d)


__all__ = ["orphaned_wallets", "LifecycleManager"]
