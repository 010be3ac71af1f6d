import asyncio
import random
from types import SimpleNamespace
from typing import Dict, List, Optional, Set, Tuple

import pytest
from solders.keypair import Keypair

from solana_volume_bot_bundle.common.constants import LAMPORTS_PER_SOL, WSOL_MINT
from solana_volume_bot_bundle.volume_bot.errors import SwapError, VaultError
from solana_volume_bot_bundle.volume_bot.models import Quote, SwapResult, TokenHolding, Wallet, build_config
from solana_volume_bot_bundle.volume_bot.service import BotGroupService
from solana_volume_bot_bundle.volume_bot.utils_exec import VolumeBotSettings

TOKEN = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
TX_FEE = 5_000


class FakeVault:
    def __init__(self, *, locked=False, password="hunter2"):
        self.locked = locked
        self.password = password
        self.wallets: Dict[str, Wallet] = {}
        self.keys: Dict[str, Keypair] = {}
        self.removed: List[str] = []
        self.fail_remove = False
        self.generate_error = None
        self._n = 0

    def add_wallet(self, name, wallet_type="burner", *, signer=True) -> Wallet:
        kp = Keypair()
        self._n += 1
        w = Wallet(id=f"w{self._n}", name=name, address=str(kp.pubkey()), type=wallet_type)
        self.wallets[w.id] = w
        if signer:
            self.keys[w.address] = kp
        return w

    def signer(self, wallet: Wallet) -> Keypair:
        return self.keys[wallet.address]

    def is_locked(self):
        return self.locked

    def get_password(self):
        return self.password

    async def list_wallets(self):
        return list(self.wallets.values())

    async def get_signers(self):
        return list(self.keys.values())

    async def generate_wallets(self, count, name_prefix, wallet_type, password):
        if self.generate_error is not None:
            raise self.generate_error
        return [self.add_wallet(f"{name_prefix}{i + 1}", wallet_type) for i in range(count)]

    async def remove_wallets(self, wallet_ids, password):
        if self.fail_remove:
            raise VaultError("vault write failed")
        for wid in wallet_ids:
            w = self.wallets.pop(wid, None)
            if w is not None:
                self.keys.pop(w.address, None)
                self.removed.append(wid)
        return len(wallet_ids)


class FakeChain:
    def __init__(self):
        self.sol: Dict[str, int] = {}
        self.tokens: Dict[str, Dict[str, int]] = {}
        self.decimals = 6
        self.transfers: List[Tuple[str, List[Tuple[str, int]]]] = []
        self.fail_holdings: Set[str] = set()
        # mints left out of the program-wide listing, like a Token-2022 balance
        self.hidden_mints: Set[str] = set()
        self.fail_transfer_from: Set[str] = set()
        self.account_data: Dict[str, bytes] = {}

    def token_balance(self, address, mint=TOKEN):
        return self.tokens.get(address, {}).get(mint, 0)

    def set_tokens(self, address, amount, mint=TOKEN):
        self.tokens.setdefault(address, {})[mint] = amount

    async def get_sol_balance(self, address):
        return self.sol.get(address, 0)

    async def get_token_balance(self, owner, mint):
        return self.token_balance(owner, mint)

    async def get_token_holdings(self, owner):
        if owner in self.fail_holdings:
            raise RuntimeError("rpc unavailable")
        return [
            TokenHolding(mint, amount, self.decimals)
            for mint, amount in self.tokens.get(owner, {}).items()
            if amount > 0 and mint not in self.hidden_mints
        ]

    async def get_mint_holding(self, owner, mint):
        if owner in self.fail_holdings:
            raise RuntimeError("rpc unavailable")
        amount = self.token_balance(owner, mint)
        return TokenHolding(mint, amount, self.decimals) if amount > 0 else None

    async def transfer_sol_batch(self, signer, transfers):
        src = str(signer.pubkey())
        if src in self.fail_transfer_from:
            raise RuntimeError("blockhash not found")
        total = sum(lamports for _, lamports in transfers)
        self.sol[src] = self.sol.get(src, 0) - total - TX_FEE
        for dest, lamports in transfers:
            self.sol[dest] = self.sol.get(dest, 0) + lamports
        self.transfers.append((src, list(transfers)))
        return f"transfer-sig-{len(self.transfers)}"

    async def get_account_data(self, address):
        return self.account_data.get(address)


class FakeSwapService:
    """Swaps tokens 1:1 against lamports on the fake chain."""

    def __init__(self, chain: FakeChain):
        self.chain = chain
        self.fail_dex: Set[str] = set()
        self.fail_wallets: Set[str] = set()
        self.calls: List[Tuple[str, str, str, str, int]] = []
        self.hold: Optional[asyncio.Event] = None
        self.active: Dict[str, int] = {}
        self.max_active = 0

    async def quote(self, dex, input_mint, output_mint, amount_raw, config):
        if dex in self.fail_dex:
            raise SwapError(f"{dex} unavailable", dex=dex)
        return Quote(dex=dex, input_mint=input_mint, output_mint=output_mint,
                     input_amount=int(amount_raw), output_amount=int(amount_raw))

    async def execute(self, quote, signer, config):
        wallet = str(signer.pubkey())
        self.calls.append((quote.dex, wallet, quote.input_mint, quote.output_mint, quote.input_amount))
        self.active[wallet] = self.active.get(wallet, 0) + 1
        self.max_active = max(self.max_active, self.active[wallet])
        try:
            if self.hold is not None:
                await self.hold.wait()
            return self._settle(quote, wallet)
        finally:
            self.active[wallet] -= 1

    def _settle(self, quote, wallet):
        if wallet in self.fail_wallets:
            return SwapResult(success=False, error="slippage tolerance exceeded")
        amount = quote.input_amount
        if quote.input_mint == WSOL_MINT:
            self.chain.sol[wallet] = self.chain.sol.get(wallet, 0) - amount
            self.chain.set_tokens(wallet, self.chain.token_balance(wallet, quote.output_mint) + amount, quote.output_mint)
        else:
            self.chain.set_tokens(wallet, self.chain.token_balance(wallet, quote.input_mint) - amount, quote.input_mint)
            self.chain.sol[wallet] = self.chain.sol.get(wallet, 0) + amount
        return SwapResult(success=True, tx_hash=f"swap-sig-{len(self.calls)}",
                          input_amount=amount, output_amount=quote.output_amount)


class FakeStealthFunder:
    """Funds destinations straight from the treasury balance, recording each call."""

    def __init__(self, chain: FakeChain, available=True):
        self.chain = chain
        self.available = available
        self.calls: List[Tuple[str, List[Tuple[str, int]]]] = []

    def is_available(self):
        return self.available

    async def fund(self, treasury, destinations):
        src = str(treasury.pubkey())
        self.calls.append((src, list(destinations)))
        for dest, lamports in destinations:
            self.chain.sol[src] = self.chain.sol.get(src, 0) - lamports
            self.chain.sol[dest] = self.chain.sol.get(dest, 0) + lamports
        return [f"bridge-sig-{len(self.calls)}"]


class FakeVenue:
    def __init__(self, pre_graduation=False):
        self.pre_graduation = pre_graduation
        self.calls = 0

    async def is_pre_graduation(self, token_mint):
        self.calls += 1
        return self.pre_graduation


class FakeLedger:
    def __init__(self):
        self.trades = []

    async def record_trade(self, trade):
        self.trades.append(trade)


class FakeLaunchRegistry:
    def __init__(self):
        self.launches: Dict[str, List[dict]] = {}
        self.reads = 0

    def add(self, address, mint="LaunchMint111", symbol="LNCH"):
        self.launches.setdefault(address, []).append({"mint_address": mint, "symbol": symbol, "name": symbol})

    async def is_launch_wallet(self, address):
        return address in self.launches

    async def launch_wallet_addresses(self):
        self.reads += 1
        return {k: list(v) for k, v in self.launches.items()}


class MemoryConfigStore:
    def __init__(self):
        self.configs = {}

    async def get(self, group_id):
        return self.configs.get(group_id)

    async def list(self):
        return list(self.configs.values())

    async def save(self, config):
        self.configs[config.id] = config

    async def delete(self, group_id):
        return self.configs.pop(group_id, None) is not None


def make_config(name="Alpha", wallet_count=3, sol_per_wallet=0.1, **kw):
    return build_config(name, TOKEN, wallet_count, sol_per_wallet, **kw)


def make_service(h, settings, **kw):
    """Another service over the same fakes as ``h`` with different settings."""
    return BotGroupService(
        store=h.store,
        vault=h.vault,
        chain=h.chain,
        swap_service=h.swaps,
        venue_detector=h.venue,
        ledger=h.ledger,
        launch_registry=h.launches,
        settings=settings,
        rng=random.Random(7),
        persist_summary=kw.pop("persist_summary", False),
        **kw,
    )


@pytest.fixture
def settings():
    # loops stay asleep for the duration of a lifecycle test
    return VolumeBotSettings(
        stagger_base_s=(30.0, 30.0),
        stagger_step_s=(1.0, 2.0),
        drain_timeout_s=1.0,
    )


@pytest.fixture
def fast_settings():
    return VolumeBotSettings(
        stagger_base_s=(0.0, 0.01),
        stagger_step_s=(0.001, 0.005),
        watchdog_rearm_s=(0.0, 0.01),
        drain_timeout_s=1.0,
    )


@pytest.fixture
def harness(settings):
    vault = FakeVault()
    chain = FakeChain()
    swaps = FakeSwapService(chain)
    venue = FakeVenue()
    ledger = FakeLedger()
    launches = FakeLaunchRegistry()
    store = MemoryConfigStore()
    treasury = vault.add_wallet("Treasury", "treasury")
    chain.sol[treasury.address] = 10 * LAMPORTS_PER_SOL
    svc = BotGroupService(
        store=store,
        vault=vault,
        chain=chain,
        swap_service=swaps,
        venue_detector=venue,
        ledger=ledger,
        launch_registry=launches,
        settings=settings,
        rng=random.Random(7),
        persist_summary=False,
    )
    return SimpleNamespace(
        svc=svc,
        vault=vault,
        chain=chain,
        swaps=swaps,
        venue=venue,
        ledger=ledger,
        launches=launches,
        store=store,
        treasury=treasury,
    )
