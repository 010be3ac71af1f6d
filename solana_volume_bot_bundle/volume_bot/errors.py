# solana_volume_bot_bundle/volume_bot/errors.py
"""
Exception hierarchy for the volume bot.

Configuration and vault errors are precondition failures and propagate to the
caller. Execution, verification and confirmation errors are local to a single
wallet and are aggregated into outcome counts by the orchestrator.
"""
from __future__ import annotations

from typing import Optional


class VolumeBotError(Exception):
    """Base class for every error raised by the volume bot."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
class ConfigError(VolumeBotError):
    pass


class InsufficientFundsError(ConfigError):
    def __init__(self, available_sol: float, required_sol: float):
        self.available_sol = float(available_sol)
        self.required_sol = float(required_sol)
        super().__init__(
            f"Insufficient treasury funds: need {self.required_sol:.4f} SOL, "
            f"have {self.available_sol:.4f} SOL"
        )


class InvalidTransitionError(VolumeBotError):
    def __init__(self, group_id: str, current: str, target: str):
        self.group_id = group_id
        self.current = current
        self.target = target
        super().__init__(f"Bot group {group_id}: cannot move from {current} to {target}")


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------
class VaultError(VolumeBotError):
    pass


class VaultLockedError(VaultError):
    def __init__(self, message: str = "Vault is locked. Please unlock your vault first."):
        super().__init__(message)


class SignerNotFoundError(VaultError):
    def __init__(self, wallet_id: str):
        self.wallet_id = wallet_id
        super().__init__(f"Signer not found for wallet {wallet_id}")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------
class ExecutionError(VolumeBotError):
    pass


class NoExecutableTradeError(ExecutionError):
    def __init__(self, message: str = "No executable trade: insufficient SOL and no token holdings"):
        super().__init__(message)


class DexNotImplementedError(ExecutionError):
    def __init__(self, dex: str):
        self.dex = dex
        super().__init__(f"{dex} swaps are not implemented")


class SwapError(ExecutionError):
    def __init__(self, message: str, *, dex: Optional[str] = None):
        self.dex = dex
        super().__init__(message)


# ---------------------------------------------------------------------------
# Verification / confirmation
# ---------------------------------------------------------------------------
class VerificationError(VolumeBotError):
    pass


class ConfirmationTimeoutError(VolumeBotError):
    """The transaction may still land; callers must not treat this as a hard failure."""

    def __init__(self, signature: str):
        self.signature = signature
        super().__init__(f"Transaction not confirmed. Check signature {signature} on explorer.")


class TransactionFailedError(VolumeBotError):
    def __init__(self, signature: str, err: object):
        self.signature = signature
        self.err = err
        super().__init__(f"Transaction {signature} failed on-chain: {err}")


__all__ = [
    "VolumeBotError",
    "ConfigError",
    "InsufficientFundsError",
    "InvalidTransitionError",
    "VaultError",
    "VaultLockedError",
    "SignerNotFoundError",
    "ExecutionError",
    "NoExecutableTradeError",
    "DexNotImplementedError",
    "SwapError",
    "VerificationError",
    "ConfirmationTimeoutError",
    "TransactionFailedError",
]
