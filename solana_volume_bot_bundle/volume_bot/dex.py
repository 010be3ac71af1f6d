# solana_volume_bot_bundle/volume_bot/dex.py
"""
Swap venues.

- ``JupiterSwapper``: Jupiter v1 quote/swap HTTP API; transactions are signed
  locally and confirmed through the confirmation protocol.
- ``DexRouter``: the swap service the engine talks to; dispatches by venue name
  and raises ``DexNotImplementedError`` for venues without a wired swapper.
- ``BondingCurveVenueDetector``: decides whether a mint still trades on the
  pump.fun bonding curve (pre-graduation) or on the open market.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from solana_volume_bot_bundle.common.constants import PUMPFUN_PROGRAM_ID

from .errors import DexNotImplementedError, SwapError
from .models import Quote, SwapResult
from .utils_exec import VolumeBotSettings, short_addr

logger = logging.getLogger("VolumeBot")

DEX_TYPES = ("jupiter", "pumpfun", "raydium", "meteora")

_RETRY_STATUSES = (429, 500, 502, 503, 504)

# -----------------------------------------------------------------------------
# Jupiter
# -----------------------------------------------------------------------------
class JupiterSwapper:
    name = "Jupiter"
    dex = "jupiter"

    def __init__(
        self,
        chain: Any,
        *,
        base_url: str = "https://api.jup.ag/swap/v1",
        api_key: Optional[str] = None,
        timeout_s: float = 20.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.chain = chain
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=float(timeout_s))
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, chain: Any, settings: VolumeBotSettings) -> "JupiterSwapper":
        return cls(
            chain,
            base_url=settings.jupiter_base_url,
            api_key=settings.jupiter_api_key,
            timeout_s=settings.jupiter_timeout_s,
        )

    def _headers(self, config: Dict[str, Any]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = config.get("api_key") or self.api_key
        if key:
            headers["x-api-key"] = key
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.5, max=8),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
    )
    async def _request_json(self, method: str, path: str, *, headers: Dict[str, str], **kw: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        async with self._get_session().request(method, url, headers=headers, **kw) as resp:
            if resp.status in _RETRY_STATUSES:
                resp.raise_for_status()
            if resp.status != 200:
                text = await resp.text()
                raise SwapError(f"Jupiter {path.strip('/')} failed ({resp.status}): {text[:300]}", dex=self.dex)
            return await resp.json(content_type=None)

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, config: Dict[str, Any]) -> Quote:
        slippage_bps = int(config.get("slippage_bps", 200))
        data = await self._request_json(
            "GET",
            "/quote",
            headers=self._headers(config),
            params={
                "inputMint": input_mint,
                "outputMint": output_mint,
                "amount": str(int(amount)),
                "slippageBps": str(slippage_bps),
            },
        )
        if "outAmount" not in data:
            raise SwapError(f"Jupiter quote missing outAmount: {str(data)[:200]}", dex=self.dex)
        return Quote(
            dex=self.dex,
            input_mint=input_mint,
            output_mint=output_mint,
            input_amount=int(data.get("inAmount") or amount),
            output_amount=int(data["outAmount"]),
            price_impact_pct=float(data.get("priceImpactPct") or 0.0),
            slippage_bps=slippage_bps,
            raw=data,
        )

    async def execute_swap(self, quote: Quote, signer: Keypair, config: Dict[str, Any]) -> SwapResult:
        wallet = str(signer.pubkey())
        try:
            data = await self._request_json(
                "POST",
                "/swap",
                headers=self._headers(config),
                json={
                    "quoteResponse": quote.raw,
                    "userPublicKey": wallet,
                    "wrapAndUnwrapSol": True,
                    "dynamicComputeUnitLimit": True,
                    "prioritizationFeeLamports": "auto",
                },
            )
            swap_tx = data.get("swapTransaction")
            if not swap_tx:
                raise SwapError("Jupiter swap response missing swapTransaction", dex=self.dex)
            raw_tx = VersionedTransaction.from_bytes(base64.b64decode(swap_tx))
            tx = VersionedTransaction(raw_tx.message, [signer])  # sign locally
            signature = await self.chain.send_transaction(tx)
        except Exception as e:
            logger.warning("Jupiter swap failed for %s: %s", short_addr(wallet), e)
            return SwapResult(success=False, error=str(e), wallet=short_addr(wallet), input_amount=quote.input_amount)

        try:
            await self.chain.confirm(signature, data.get("lastValidBlockHeight"))
        except Exception as e:
            logger.warning("Jupiter swap %s for %s not confirmed: %s", signature, short_addr(wallet), e)
            return SwapResult(
                success=False,
                tx_hash=signature,
                error=str(e),
                wallet=short_addr(wallet),
                input_amount=quote.input_amount,
            )

        return SwapResult(
            success=True,
            tx_hash=signature,
            input_amount=quote.input_amount,
            output_amount=quote.output_amount,
            wallet=short_addr(wallet),
        )

# -----------------------------------------------------------------------------
# Router
# -----------------------------------------------------------------------------
class DexRouter:
    """Swap service dispatching quotes and swaps to the wired venue swappers."""

    def __init__(self, swappers: Optional[Dict[str, Any]] = None):
        self._swappers: Dict[str, Any] = dict(swappers or {})

    def register(self, dex: str, swapper: Any) -> None:
        if dex not in DEX_TYPES:
            raise ValueError(f"Unknown DEX {dex!r}")
        self._swappers[dex] = swapper

    def is_implemented(self, dex: str) -> bool:
        return dex in self._swappers

    def _swapper(self, dex: str) -> Any:
        sw = self._swappers.get(dex)
        if sw is None:
            raise DexNotImplementedError(dex)
        return sw

    async def quote(self, dex: str, input_mint: str, output_mint: str, amount_raw: int, config: Dict[str, Any]) -> Quote:
        return await self._swapper(dex).get_quote(input_mint, output_mint, int(amount_raw), config)

    async def execute(self, quote: Quote, signer: Keypair, config: Dict[str, Any]) -> SwapResult:
        return await self._swapper(quote.dex).execute_swap(quote, signer, config)

    async def close(self) -> None:
        for sw in self._swappers.values():
            closer = getattr(sw, "close", None)
            if closer is not None:
                await closer()

# -----------------------------------------------------------------------------
# Venue detection
# -----------------------------------------------------------------------------
_PUMPFUN_PROGRAM = Pubkey.from_string(PUMPFUN_PROGRAM_ID)
_BONDING_CURVE_COMPLETE_OFFSET = 48


def bonding_curve_address(mint: str) -> Pubkey:
    pda, _bump = Pubkey.find_program_address(
        [b"bonding-curve", bytes(Pubkey.from_string(mint))],
        _PUMPFUN_PROGRAM,
    )
    return pda


def bonding_curve_complete(data: Optional[bytes]) -> Optional[bool]:
    """``complete`` flag of a bonding-curve account, or None when unreadable."""
    if data is None or len(data) <= _BONDING_CURVE_COMPLETE_OFFSET:
        return None
    return data[_BONDING_CURVE_COMPLETE_OFFSET] != 0


class BondingCurveVenueDetector:
    """Re-queried on every call; graduation must be picked up immediately."""

    def __init__(self, chain: Any):
        self.chain = chain

    async def is_pre_graduation(self, token_mint: str) -> bool:
        try:
            data = await self.chain.get_account_data(str(bonding_curve_address(token_mint)))
        except Exception as e:
            logger.debug("Bonding curve probe failed for %s: %s", token_mint, e)
            return False
        complete = bonding_curve_complete(data)
        return complete is False


async def route_for_mint(detector: Any, token_mint: str) -> Tuple[str, str]:
    """(primary, alternate) venue for ``token_mint``."""
    if await detector.is_pre_graduation(token_mint):
        return "pumpfun", "jupiter"
    return "jupiter", "pumpfun"


__all__ = [
    "DEX_TYPES",
    "JupiterSwapper",
    "DexRouter",
    "BondingCurveVenueDetector",
    "bonding_curve_address",
    "bonding_curve_complete",
    "route_for_mint",
]
