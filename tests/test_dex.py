import base64

import pytest
from unittest.mock import AsyncMock, MagicMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from solana_volume_bot_bundle.common.constants import PUMPFUN_PROGRAM_ID, WSOL_MINT
from solana_volume_bot_bundle.volume_bot.dex import (
    BondingCurveVenueDetector,
    DexRouter,
    JupiterSwapper,
    bonding_curve_address,
    bonding_curve_complete,
    route_for_mint,
)
from solana_volume_bot_bundle.volume_bot.errors import ConfirmationTimeoutError, DexNotImplementedError, SwapError
from solana_volume_bot_bundle.volume_bot.models import Quote, SwapResult

from .conftest import TOKEN, FakeChain, FakeVenue


def _curve(complete: bool, size: int = 49) -> bytes:
    data = bytearray(size)
    data[48] = 1 if complete else 0
    return bytes(data)


def test_bonding_curve_flag_parsing():
    assert bonding_curve_complete(None) is None
    assert bonding_curve_complete(bytes(48)) is None
    assert bonding_curve_complete(_curve(False)) is False
    assert bonding_curve_complete(_curve(True, size=151)) is True


def test_bonding_curve_address_is_the_program_pda():
    expected, _ = Pubkey.find_program_address(
        [b"bonding-curve", bytes(Pubkey.from_string(TOKEN))],
        Pubkey.from_string(PUMPFUN_PROGRAM_ID),
    )
    assert bonding_curve_address(TOKEN) == expected


@pytest.mark.asyncio
async def test_detector_reads_the_curve_every_time():
    chain = FakeChain()
    detector = BondingCurveVenueDetector(chain)
    pda = str(bonding_curve_address(TOKEN))

    assert await detector.is_pre_graduation(TOKEN) is False  # no curve account

    chain.account_data[pda] = _curve(False)
    assert await detector.is_pre_graduation(TOKEN) is True

    chain.account_data[pda] = _curve(True)
    assert await detector.is_pre_graduation(TOKEN) is False
    assert await route_for_mint(detector, TOKEN) == ("jupiter", "pumpfun")


@pytest.mark.asyncio
async def test_probe_errors_route_to_the_aggregator():
    chain = MagicMock()
    chain.get_account_data = AsyncMock(side_effect=ConnectionError("rpc down"))
    assert await BondingCurveVenueDetector(chain).is_pre_graduation(TOKEN) is False


@pytest.mark.asyncio
async def test_route_prefers_bonding_curve_before_graduation():
    assert await route_for_mint(FakeVenue(pre_graduation=True), TOKEN) == ("pumpfun", "jupiter")


@pytest.mark.asyncio
async def test_router_dispatches_by_venue():
    swapper = MagicMock()
    quote = Quote(dex="jupiter", input_mint=WSOL_MINT, output_mint=TOKEN, input_amount=10, output_amount=9)
    swapper.get_quote = AsyncMock(return_value=quote)
    swapper.execute_swap = AsyncMock(return_value=SwapResult(success=True, tx_hash="sig"))
    swapper.close = AsyncMock()
    router = DexRouter({"jupiter": swapper})

    assert router.is_implemented("jupiter")
    assert not router.is_implemented("pumpfun")
    assert await router.quote("jupiter", WSOL_MINT, TOKEN, 10, {}) is quote
    signer = Keypair()
    result = await router.execute(quote, signer, {})
    assert result.tx_hash == "sig"
    swapper.execute_swap.assert_awaited_once_with(quote, signer, {})

    with pytest.raises(DexNotImplementedError):
        await router.quote("pumpfun", TOKEN, WSOL_MINT, 10, {})
    with pytest.raises(ValueError):
        router.register("orca", swapper)

    await router.close()
    swapper.close.assert_awaited_once()


def _swap_tx_b64(signer: Keypair) -> str:
    ix = transfer(TransferParams(from_pubkey=signer.pubkey(), to_pubkey=Keypair().pubkey(), lamports=1))
    msg = Message.new_with_blockhash([ix], signer.pubkey(), Hash.default())
    return base64.b64encode(bytes(VersionedTransaction(msg, [signer]))).decode()


def _jupiter():
    chain = MagicMock()
    chain.send_transaction = AsyncMock(return_value="swap-sig")
    chain.confirm = AsyncMock(return_value="confirmed")
    return JupiterSwapper(chain, api_key="k3y"), chain


@pytest.mark.asyncio
async def test_jupiter_quote_request():
    swapper, _ = _jupiter()
    swapper._request_json = AsyncMock(return_value={"inAmount": "1000", "outAmount": "990", "priceImpactPct": "0.1"})

    quote = await swapper.get_quote(WSOL_MINT, TOKEN, 1000, {"slippage_bps": 150})

    assert quote.dex == "jupiter"
    assert quote.output_amount == 990
    assert quote.slippage_bps == 150
    method, path = swapper._request_json.call_args.args
    kwargs = swapper._request_json.call_args.kwargs
    assert (method, path) == ("GET", "/quote")
    assert kwargs["params"]["slippageBps"] == "150"
    assert kwargs["headers"]["x-api-key"] == "k3y"


@pytest.mark.asyncio
async def test_jupiter_quote_without_out_amount_fails():
    swapper, _ = _jupiter()
    swapper._request_json = AsyncMock(return_value={"error": "no route"})
    with pytest.raises(SwapError):
        await swapper.get_quote(WSOL_MINT, TOKEN, 1000, {})


@pytest.mark.asyncio
async def test_jupiter_swap_signs_locally_and_confirms():
    swapper, chain = _jupiter()
    signer = Keypair()
    swapper._request_json = AsyncMock(return_value={
        "swapTransaction": _swap_tx_b64(signer),
        "lastValidBlockHeight": 777,
    })
    quote = Quote(dex="jupiter", input_mint=WSOL_MINT, output_mint=TOKEN,
                  input_amount=1000, output_amount=990, raw={"outAmount": "990"})

    result = await swapper.execute_swap(quote, signer, {})

    assert result.success
    assert result.tx_hash == "swap-sig"
    assert result.output_amount == 990
    sent = chain.send_transaction.call_args.args[0]
    assert sent.signatures[0] != Signature.default()
    chain.confirm.assert_awaited_once_with("swap-sig", 777)
    body = swapper._request_json.call_args.kwargs["json"]
    assert body["userPublicKey"] == str(signer.pubkey())
    assert body["quoteResponse"] == {"outAmount": "990"}


@pytest.mark.asyncio
async def test_jupiter_unconfirmed_swap_keeps_signature():
    swapper, chain = _jupiter()
    signer = Keypair()
    swapper._request_json = AsyncMock(return_value={"swapTransaction": _swap_tx_b64(signer)})
    chain.confirm.side_effect = ConfirmationTimeoutError("swap-sig")
    quote = Quote(dex="jupiter", input_mint=WSOL_MINT, output_mint=TOKEN, input_amount=1000, output_amount=990)

    result = await swapper.execute_swap(quote, signer, {})

    assert not result.success
    assert result.tx_hash == "swap-sig"
    assert "explorer" in result.error


@pytest.mark.asyncio
async def test_jupiter_swap_request_failure_is_reported():
    swapper, chain = _jupiter()
    swapper._request_json = AsyncMock(return_value={})
    quote = Quote(dex="jupiter", input_mint=WSOL_MINT, output_mint=TOKEN, input_amount=1000, output_amount=990)

    result = await swapper.execute_swap(quote, Keypair(), {})

    assert not result.success
    assert "swapTransaction" in result.error
    chain.send_transaction.assert_not_awaited()


class _Resp:
    def __init__(self, status, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type=None):
        return self._payload

    async def text(self):
        return self._text

    def raise_for_status(self):
        raise AssertionError("not expected")


@pytest.mark.asyncio
async def test_request_json_surfaces_client_errors_without_retrying():
    session = MagicMock()
    session.closed = False
    session.request = MagicMock(return_value=_Resp(400, text="Bad amount"))
    swapper = JupiterSwapper(MagicMock(), session=session)

    with pytest.raises(SwapError, match="400"):
        await swapper._request_json("GET", "/quote", headers={})
    assert session.request.call_count == 1

    session.request = MagicMock(return_value=_Resp(200, payload={"outAmount": "1"}))
    assert await swapper._request_json("GET", "/quote", headers={}) == {"outAmount": "1"}
    url = session.request.call_args.args[1]
    assert url == "https://api.jup.ag/swap/v1/quote"
