# solana_volume_bot_bundle/volume_bot/interfaces.py
"""
Collaborator contracts consumed by the orchestrator.

Concrete implementations live elsewhere in the package (``chain``, ``dex``,
``database``) or are provided by the embedding application (the vault and the
stealth funder).
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from solders.keypair import Keypair

from .models import Quote, SwapResult, TokenHolding, TradeRecord, Wallet


class Vault(Protocol):
    """Encrypted wallet storage. Every method raises ``VaultLockedError`` while locked."""

    def is_locked(self) -> bool: ...

    def get_password(self) -> Optional[str]: ...

    async def list_wallets(self) -> List[Wallet]: ...

    async def get_signers(self) -> List[Keypair]: ...

    async def generate_wallets(self, count: int, name_prefix: str, wallet_type: str, password: str) -> List[Wallet]: ...

    async def remove_wallets(self, wallet_ids: Sequence[str], password: str) -> int: ...


class ChainClient(Protocol):
    """On-chain reads and SOL transfers. Reads are never cached."""

    async def get_sol_balance(self, address: str) -> int: ...

    async def get_token_balance(self, owner: str, mint: str) -> int: ...

    async def get_mint_holding(self, owner: str, mint: str) -> Optional[TokenHolding]: ...

    async def get_token_holdings(self, owner: str) -> List[TokenHolding]: ...

    async def transfer_sol_batch(self, signer: Keypair, transfers: Sequence[Tuple[str, int]]) -> str: ...

    async def get_account_data(self, address: str) -> Optional[bytes]: ...


class SwapService(Protocol):
    async def quote(self, dex: str, input_mint: str, output_mint: str, amount_raw: int, config: Dict[str, Any]) -> Quote: ...

    async def execute(self, quote: Quote, signer: Keypair, config: Dict[str, Any]) -> SwapResult: ...


class VenueDetector(Protocol):
    async def is_pre_graduation(self, token_mint: str) -> bool: ...


class Ledger(Protocol):
    async def record_trade(self, trade: TradeRecord) -> None: ...


class LaunchRegistry(Protocol):
    async def is_launch_wallet(self, address: str) -> bool: ...

    async def launch_wallet_addresses(self) -> Dict[str, List[Dict[str, Any]]]: ...


class StealthFunder(Protocol):
    """Funds destinations through an external bridge so they do not cluster on-chain."""

    def is_available(self) -> bool: ...

    async def fund(self, treasury: Keypair, destinations: Sequence[Tuple[str, int]]) -> List[str]: ...


class ConfigStore(Protocol):
    async def get(self, group_id: str) -> Optional[Any]: ...

    async def list(self) -> List[Any]: ...

    async def save(self, config: Any) -> None: ...

    async def delete(self, group_id: str) -> bool: ...


__all__ = [
    "Vault",
    "ChainClient",
    "SwapService",
    "VenueDetector",
    "Ledger",
    "LaunchRegistry",
    "StealthFunder",
    "ConfigStore",
]
