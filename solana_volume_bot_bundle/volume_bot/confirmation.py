# solana_volume_bot_bundle/volume_bot/confirmation.py
"""
Transaction confirmation with fallbacks.

1. Confirm against the known blockhash expiry window, when one is known.
2. Otherwise, or when that fails, fetch a fresh blockhash and confirm once more.
3. Fall back to a direct signature status lookup (confirmed/finalized = landed).
4. Raise ``ConfirmationTimeoutError``; the transaction may still land later.

An on-chain execution error is a hard failure and is raised immediately as
``TransactionFailedError``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from solana.rpc.commitment import Commitment, Confirmed
from solders.signature import Signature

from .errors import ConfirmationTimeoutError, TransactionFailedError

logger = logging.getLogger("VolumeBot")

_LANDED = ("confirmed", "finalized")


def _status_name(confirmation_status: Any) -> str:
    # solders enums render as "TransactionConfirmationStatus.Confirmed"
    return str(confirmation_status or "").rsplit(".", 1)[-1].lower()


def _first_status(resp: Any) -> Any:
    value = getattr(resp, "value", None) or []
    return value[0] if value else None


def _check_error(signature: str, status: Any) -> None:
    err = getattr(status, "err", None) if status is not None else None
    if err is not None:
        raise TransactionFailedError(signature, err)


async def _confirm_with_expiry(
    client: Any,
    sig: Signature,
    signature: str,
    last_valid_block_height: int,
    commitment: Commitment,
    timeout_s: float,
    poll_s: float,
) -> None:
    resp = await asyncio.wait_for(
        client.confirm_transaction(
            sig,
            commitment,
            sleep_seconds=poll_s,
            last_valid_block_height=last_valid_block_height,
        ),
        timeout=timeout_s,
    )
    _check_error(signature, _first_status(resp))


async def confirm_transaction(
    client: Any,
    signature: str,
    *,
    last_valid_block_height: Optional[int] = None,
    commitment: Commitment = Confirmed,
    timeout_s: float = 60.0,
    poll_s: float = 0.5,
) -> str:
    """Return the landed confirmation status for ``signature`` or raise."""
    sig = Signature.from_string(str(signature))

    if last_valid_block_height is not None:
        try:
            await _confirm_with_expiry(client, sig, signature, int(last_valid_block_height), commitment, timeout_s, poll_s)
            return "confirmed"
        except TransactionFailedError:
            raise
        except Exception as e:
            logger.debug("Confirmation against known blockhash failed for %s: %s", signature, e)

    try:
        latest = await client.get_latest_blockhash(commitment)
        fresh_height = int(latest.value.last_valid_block_height)
        await _confirm_with_expiry(client, sig, signature, fresh_height, commitment, timeout_s, poll_s)
        return "confirmed"
    except TransactionFailedError:
        raise
    except Exception as e:
        logger.debug("Confirmation against fresh blockhash failed for %s: %s", signature, e)

    try:
        resp = await client.get_signature_statuses([sig], search_transaction_history=True)
        status = _first_status(resp)
    except Exception as e:
        logger.warning("Signature status lookup failed for %s: %s", signature, e)
        status = None

    if status is not None:
        _check_error(signature, status)
        name = _status_name(getattr(status, "confirmation_status", None))
        if name in _LANDED:
            logger.info("Transaction %s landed (%s) after confirmation timeout", signature, name)
            return name

    raise ConfirmationTimeoutError(str(signature))


__all__ = ["confirm_transaction"]
