# solana_volume_bot_bundle/volume_bot/chain.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from solana_volume_bot_bundle.common.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, WSOL_MINT

from .confirmation import confirm_transaction
from .models import TokenHolding
from .utils_exec import VolumeBotSettings, short_addr

logger = logging.getLogger("VolumeBot")

TOKEN_PROGRAMS = (Pubkey.from_string(TOKEN_PROGRAM_ID), Pubkey.from_string(TOKEN_2022_PROGRAM_ID))


def _parse_token_account(keyed: Any) -> Optional[TokenHolding]:
    """Extract a TokenHolding from one jsonParsed token account entry."""
    try:
        parsed = keyed.account.data.parsed
        info = parsed["info"]
        amount = info["tokenAmount"]
        return TokenHolding(
            mint=str(info["mint"]),
            amount_raw=int(amount["amount"]),
            decimals=int(amount.get("decimals", 0)),
            token_account=str(keyed.pubkey),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        logger.debug("Unparseable token account entry: %s", e)
        return None


def _aggregate(accounts: List[TokenHolding]) -> List[TokenHolding]:
    by_mint: Dict[str, TokenHolding] = {}
    for h in accounts:
        if h.amount_raw <= 0:
            continue
        prev = by_mint.get(h.mint)
        if prev is None:
            by_mint[h.mint] = h
        else:
            by_mint[h.mint] = TokenHolding(h.mint, prev.amount_raw + h.amount_raw, h.decimals, prev.token_account)
    return list(by_mint.values())


class SolanaChain:
    """Uncached on-chain reads and SOL transfers over a solana-py AsyncClient."""

    def __init__(self, client: AsyncClient, *, confirm_timeout_s: float = 60.0):
        self.client = client
        self.confirm_timeout_s = float(confirm_timeout_s)

    @classmethod
    def from_settings(cls, settings: VolumeBotSettings) -> "SolanaChain":
        return cls(AsyncClient(settings.rpc_url, commitment=Confirmed), confirm_timeout_s=settings.confirm_timeout_s)

    async def close(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_sol_balance(self, address: str) -> int:
        resp = await self.client.get_balance(Pubkey.from_string(address), commitment=Confirmed)
        return int(resp.value)

    async def _token_accounts(self, owner: str, opts: TokenAccountOpts) -> List[TokenHolding]:
        resp = await self.client.get_token_accounts_by_owner_json_parsed(
            Pubkey.from_string(owner), opts, commitment=Confirmed
        )
        out: List[TokenHolding] = []
        for keyed in resp.value or []:
            h = _parse_token_account(keyed)
            if h is not None:
                out.append(h)
        return out

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """Raw balance of ``mint`` summed over every token account ``owner`` holds."""
        accounts = await self._token_accounts(owner, TokenAccountOpts(mint=Pubkey.from_string(mint)))
        return sum(h.amount_raw for h in accounts)

    async def get_mint_holding(self, owner: str, mint: str) -> Optional[TokenHolding]:
        """Balance of one mint, found by mint filter whichever token program owns it."""
        accounts = await self._token_accounts(owner, TokenAccountOpts(mint=Pubkey.from_string(mint)))
        merged = _aggregate(accounts)
        return merged[0] if merged else None

    async def get_token_holdings(self, owner: str) -> List[TokenHolding]:
        """Non-zero, non-WSOL balances under SPL Token and Token-2022, aggregated per mint."""
        accounts: List[TokenHolding] = []
        for program in TOKEN_PROGRAMS:
            accounts.extend(await self._token_accounts(owner, TokenAccountOpts(program_id=program)))
        return [h for h in _aggregate(accounts) if h.mint != WSOL_MINT]

    async def get_account_data(self, address: str) -> Optional[bytes]:
        resp = await self.client.get_account_info(Pubkey.from_string(address), commitment=Confirmed)
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def send_transaction(self, tx: VersionedTransaction) -> str:
        resp = await self.client.send_raw_transaction(
            bytes(tx),
            opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=3),
        )
        return str(resp.value)

    async def confirm(self, signature: str, last_valid_block_height: Optional[int] = None) -> str:
        return await confirm_transaction(
            self.client,
            signature,
            last_valid_block_height=last_valid_block_height,
            timeout_s=self.confirm_timeout_s,
        )

    async def transfer_sol_batch(self, signer: Keypair, transfers: Sequence[Tuple[str, int]]) -> str:
        """One transaction carrying every transfer; confirmed before returning."""
        if not transfers:
            raise ValueError("transfer_sol_batch requires at least one transfer")
        payer = signer.pubkey()
        ixs = [
            transfer(TransferParams(from_pubkey=payer, to_pubkey=Pubkey.from_string(dest), lamports=int(lamports)))
            for dest, lamports in transfers
        ]
        latest = await self.client.get_latest_blockhash(Confirmed)
        message = Message.new_with_blockhash(ixs, payer, latest.value.blockhash)
        tx = VersionedTransaction(message, [signer])
        signature = await self.send_transaction(tx)
        logger.info(
            "Sent %d SOL transfer(s) from %s sig=%s", len(ixs), short_addr(payer), signature
        )
        await self.confirm(signature, latest.value.last_valid_block_height)
        return signature


__all__ = ["SolanaChain"]
