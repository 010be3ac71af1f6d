# solana_volume_bot_bundle/volume_bot/engine.py
"""
Trade Execution Engine.

``execute_trade`` performs exactly one buy-or-sell attempt for one wallet and
never raises: every failure is logged and returned as an unsuccessful
``TradeOutcome`` so the wallet's loop can reschedule regardless.

``liquidate_wallet`` is the sell-only mode used during stop/cleanup.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from solders.keypair import Keypair

from solana_volume_bot_bundle.common.constants import LAMPORTS_PER_SOL, WSOL_MINT

from .dex import route_for_mint
from .errors import NoExecutableTradeError, SignerNotFoundError, SwapError
from .interfaces import ChainClient, Ledger, SwapService, Vault, VenueDetector
from .models import BotGroupConfig, Quote, SwapResult, TokenHolding, TradeOutcome, TradeRecord, Wallet
from .registry import RuntimeRegistry
from .utils_exec import VolumeBotSettings, short_addr

logger = logging.getLogger("VolumeBot")


@dataclass(frozen=True)
class TradeDecision:
    trade_type: str  # buy | sell
    input_mint: str
    output_mint: str
    amount_raw: int


@dataclass
class LiquidationResult:
    tokens_sold: int = 0
    sell_errors: int = 0
    errors: List[str] = field(default_factory=list)


async def read_holdings(chain: ChainClient, owner: str, mints: Sequence[str] = ()) -> List[TokenHolding]:
    """
    Program-wide token listing of ``owner`` plus a by-mint read of each of
    ``mints`` the listing missed, so a balance under a token program the
    listing does not cover is still seen.
    """
    holdings = list(await chain.get_token_holdings(owner))
    seen = {h.mint for h in holdings}
    for mint in dict.fromkeys(mints):
        if mint in seen or mint == WSOL_MINT:
            continue
        extra = await chain.get_mint_holding(owner, mint)
        if extra is not None and extra.amount_raw > 0:
            holdings.append(extra)
    return holdings


def decide_trade(
    config: BotGroupConfig,
    sol_lamports: int,
    token_raw: int,
    *,
    require_buy_first: bool,
    settings: VolumeBotSettings,
    rng: random.Random,
) -> TradeDecision:
    spendable = max(0, int(sol_lamports) - settings.sol_reserve_lamports)
    min_buy = int(config.min_swap_sol * LAMPORTS_PER_SOL)
    max_buy = int(config.max_swap_sol * LAMPORTS_PER_SOL)
    can_buy = spendable >= min_buy
    prefer_buy = require_buy_first or rng.random() < settings.prefer_buy_probability

    def _buy() -> TradeDecision:
        desired = int(rng.uniform(min_buy, max_buy))
        amount = max(min_buy, min(desired, spendable))
        return TradeDecision("buy", WSOL_MINT, config.target_token, amount)

    if prefer_buy and can_buy:
        return _buy()
    if token_raw > 0:
        pct = rng.uniform(settings.sell_pct_min, settings.sell_pct_max)
        amount = min(int(token_raw), max(1, int(token_raw * pct)))
        return TradeDecision("sell", config.target_token, WSOL_MINT, amount)
    if can_buy:
        return _buy()
    raise NoExecutableTradeError()


class TradeExecutionEngine:
    def __init__(
        self,
        *,
        vault: Vault,
        chain: ChainClient,
        swap_service: SwapService,
        venue_detector: VenueDetector,
        ledger: Ledger,
        registry: RuntimeRegistry,
        settings: VolumeBotSettings,
        rng: Optional[random.Random] = None,
    ):
        self.vault = vault
        self.chain = chain
        self.swap_service = swap_service
        self.venue_detector = venue_detector
        self.ledger = ledger
        self.registry = registry
        self.settings = settings
        self.rng = rng or random.Random()

    def dex_config(self) -> Dict[str, Any]:
        return {"slippage_bps": self.settings.slippage_bps, "api_key": self.settings.jupiter_api_key}

    async def resolve_wallet(self, wallet_id: str) -> Tuple[Wallet, Keypair]:
        wallets = await self.vault.list_wallets()
        wallet = next((w for w in wallets if w.id == wallet_id), None)
        if wallet is None:
            raise SignerNotFoundError(wallet_id)
        signers = await self.vault.get_signers()
        signer = next((s for s in signers if str(s.pubkey()) == wallet.address), None)
        if signer is None:
            raise SignerNotFoundError(wallet_id)
        return wallet, signer

    async def _record(self, record: TradeRecord) -> None:
        try:
            await self.ledger.record_trade(record)
        except Exception as e:
            logger.error("Failed to record %s trade %s in ledger: %s", record.type, record.tx_hash, e)

    async def _swap(self, dex: str, signer: Keypair, input_mint: str, output_mint: str, amount: int) -> Tuple[Quote, SwapResult]:
        cfg = self.dex_config()
        quote = await self.swap_service.quote(dex, input_mint, output_mint, amount, cfg)
        result = await self.swap_service.execute(quote, signer, cfg)
        if not result.success:
            raise SwapError(result.error or f"{dex} swap failed", dex=dex)
        return quote, result

    # ------------------------------------------------------------------
    # Steady-state trading
    # ------------------------------------------------------------------
    async def execute_trade(self, config: BotGroupConfig, wallet_id: str, *, require_buy_first: bool) -> TradeOutcome:
        outcome = TradeOutcome(success=False, wallet_id=wallet_id)
        try:
            wallet, signer = await self.resolve_wallet(wallet_id)
        except SignerNotFoundError as e:
            outcome.signer_missing = True
            outcome.error = str(e)
            logger.warning("Bot group %s: %s", config.name, e)
            return outcome
        except Exception as e:
            outcome.error = str(e)
            logger.warning("Bot group %s: could not resolve wallet %s: %s", config.name, wallet_id, e)
            self.registry.record_failure(config.id)
            return outcome

        try:
            sol_balance, token_balance = await asyncio.gather(
                self.chain.get_sol_balance(wallet.address),
                self.chain.get_token_balance(wallet.address, config.target_token),
            )
            decision = decide_trade(
                config,
                sol_balance,
                token_balance,
                require_buy_first=require_buy_first,
                settings=self.settings,
                rng=self.rng,
            )
            dex, _alternate = await route_for_mint(self.venue_detector, config.target_token)
            outcome.trade_type = decision.trade_type
            outcome.dex = dex

            quote, result = await self._swap(dex, signer, decision.input_mint, decision.output_mint, decision.amount_raw)

            if decision.trade_type == "buy":
                volume_sol = decision.amount_raw / LAMPORTS_PER_SOL
            else:
                volume_sol = (result.output_amount or quote.output_amount) / LAMPORTS_PER_SOL

            outcome.success = True
            outcome.amount_raw = decision.amount_raw
            outcome.amount_sol = volume_sol
            outcome.tx_hash = result.tx_hash
            self.registry.record_swap(config.id, volume_sol)
            await self._record(TradeRecord(
                type=decision.trade_type,
                token_mint=config.target_token,
                amount=decision.amount_raw,
                amount_sol=volume_sol,
                wallet=wallet.address,
                tx_hash=result.tx_hash,
                dex=dex,
                group_id=config.id,
            ))
            logger.info(
                "Bot group %s: %s %s via %s (%.4f SOL) wallet=%s sig=%s",
                config.name,
                decision.trade_type,
                decision.amount_raw,
                dex,
                volume_sol,
                short_addr(wallet.address),
                result.tx_hash,
            )
        except Exception as e:
            outcome.error = str(e)
            self.registry.record_failure(config.id)
            logger.warning("Bot group %s: trade failed for wallet %s: %s", config.name, short_addr(wallet.address), e)
        return outcome

    # ------------------------------------------------------------------
    # Sell-only mode
    # ------------------------------------------------------------------
    async def sell_with_fallback(self, signer: Keypair, mint: str, amount: int) -> Tuple[str, Quote, SwapResult]:
        """
        Sell ``amount`` of ``mint`` for SOL on the venue the detector picks,
        retrying once on the alternate venue after any failure.
        """
        primary, alternate = await route_for_mint(self.venue_detector, mint)
        try:
            quote, result = await self._swap(primary, signer, mint, WSOL_MINT, amount)
            return primary, quote, result
        except Exception as e:
            logger.info("Sell of %s on %s failed (%s); trying %s", mint, primary, e, alternate)
        quote, result = await self._swap(alternate, signer, mint, WSOL_MINT, amount)
        return alternate, quote, result

    async def liquidate_wallet(
        self,
        wallet: Wallet,
        signer: Keypair,
        *,
        group_id: Optional[str] = None,
        mints: Sequence[str] = (),
    ) -> LiquidationResult:
        """
        Sell every non-SOL holding of ``wallet`` down to the dust threshold.
        ``mints`` (normally the group's target token) are read by mint as well.
        """
        res = LiquidationResult()
        try:
            holdings = await read_holdings(self.chain, wallet.address, mints)
        except Exception as e:
            res.sell_errors += 1
            res.errors.append(f"{wallet.name}: token scan failed: {e}")
            logger.warning("Token scan failed for %s: %s", short_addr(wallet.address), e)
            return res

        for h in holdings:
            if h.mint == WSOL_MINT:
                continue
            amount = h.amount_raw - self.settings.dust_raw(h.decimals)
            if amount <= 0:
                continue
            try:
                dex, quote, result = await self.sell_with_fallback(signer, h.mint, amount)
            except Exception as e:
                res.sell_errors += 1
                res.errors.append(f"{wallet.name}: sell of {h.mint[:8]} failed: {e}")
                logger.warning("Liquidation sell failed for %s mint=%s: %s", short_addr(wallet.address), h.mint, e)
                continue
            res.tokens_sold += 1
            sol_out = (result.output_amount or quote.output_amount) / LAMPORTS_PER_SOL
            await self._record(TradeRecord(
                type="sell",
                token_mint=h.mint,
                amount=amount,
                amount_sol=sol_out,
                wallet=wallet.address,
                tx_hash=result.tx_hash,
                dex=dex,
                group_id=group_id,
            ))
            logger.info("Liquidated %s of %s from %s via %s", amount, h.mint, short_addr(wallet.address), dex)
        return res


__all__ = ["TradeDecision", "LiquidationResult", "read_holdings", "decide_trade", "TradeExecutionEngine"]
