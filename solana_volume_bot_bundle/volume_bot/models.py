# solana_volume_bot_bundle/volume_bot/models.py
from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from solders.pubkey import Pubkey

from solana_volume_bot_bundle.common.constants import (
    BURNER_NAME_SUFFIX,
    INTENSITY_PRESETS,
    LAMPORTS_PER_SOL,
    MAX_WALLETS_PER_GROUP,
    TRADING_PATTERNS,
)

from .errors import ConfigError

# -----------------------------------------------------------------------------
# Group state (closed set of variants)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Idle:
    name: ClassVar[str] = "idle"
    status: ClassVar[str] = "idle"


@dataclass(frozen=True)
class IdleWithOrphans:
    """Idle, but burner wallets from an earlier run still exist and no loops are active."""
    wallet_ids: Tuple[str, ...]
    name: ClassVar[str] = "idle_with_orphans"
    status: ClassVar[str] = "idle"


@dataclass(frozen=True)
class Starting:
    name: ClassVar[str] = "starting"
    status: ClassVar[str] = "starting"


@dataclass(frozen=True)
class Running:
    name: ClassVar[str] = "running"
    status: ClassVar[str] = "running"


@dataclass(frozen=True)
class Stopping:
    name: ClassVar[str] = "stopping"
    status: ClassVar[str] = "stopping"


@dataclass(frozen=True)
class Error:
    reason: str
    name: ClassVar[str] = "error"
    status: ClassVar[str] = "error"


GroupState = Union[Idle, IdleWithOrphans, Starting, Running, Stopping, Error]

# -----------------------------------------------------------------------------
# Runtime
# -----------------------------------------------------------------------------
@dataclass
class RuntimeStats:
    swaps_executed: int = 0
    failed_trades: int = 0
    total_volume_sol: float = 0.0
    started_at: Optional[float] = None


@dataclass
class BotGroupRuntime:
    group_id: str
    state: GroupState = field(default_factory=Idle)
    wallet_ids: List[str] = field(default_factory=list)
    # wallets owned by the run whose signer could not be resolved; never traded, still accounted for
    unsignable_wallet_ids: List[str] = field(default_factory=list)
    stats: RuntimeStats = field(default_factory=RuntimeStats)
    error: Optional[str] = None

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def is_running(self) -> bool:
        return isinstance(self.state, Running)

    @property
    def is_idle(self) -> bool:
        return isinstance(self.state, (Idle, IdleWithOrphans))

    @property
    def has_orphans(self) -> bool:
        return isinstance(self.state, IdleWithOrphans)

    @property
    def owned_wallet_ids(self) -> List[str]:
        return list(self.wallet_ids) + [w for w in self.unsignable_wallet_ids if w not in self.wallet_ids]

    def copy(self) -> "BotGroupRuntime":
        return replace(
            self,
            wallet_ids=list(self.wallet_ids),
            unsignable_wallet_ids=list(self.unsignable_wallet_ids),
            stats=replace(self.stats),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "status": self.status,
            "state": self.state.name,
            "wallet_ids": list(self.wallet_ids),
            "unsignable_wallet_ids": list(self.unsignable_wallet_ids),
            "stats": asdict(self.stats),
            "error": self.error,
        }

# -----------------------------------------------------------------------------
# Bot group configuration
# -----------------------------------------------------------------------------
EDITABLE_FIELDS = frozenset({
    "sol_per_wallet",
    "pattern",
    "intensity",
    "min_swap_sol",
    "max_swap_sol",
    "min_interval_s",
    "max_interval_s",
})


def _base36(n: int) -> str:
    chars = string.digits + string.ascii_lowercase
    out = ""
    n = int(n)
    while True:
        n, r = divmod(n, 36)
        out = chars[r] + out
        if n == 0:
            return out


def new_config_id() -> str:
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    return f"bot_{_base36(int(time.time() * 1000))}{suffix}"


@dataclass
class BotGroupConfig:
    id: str
    name: str
    target_token: str
    wallet_count: int
    sol_per_wallet: float
    pattern: str = "organic"
    intensity: str = "medium"
    min_swap_sol: float = 0.01
    max_swap_sol: float = 0.1
    min_interval_s: float = 30.0
    max_interval_s: float = 120.0
    created_at: float = field(default_factory=time.time)

    @property
    def burner_prefix(self) -> str:
        """Vault name prefix for this group's burners; the vault appends the index."""
        return f"{self.name}{BURNER_NAME_SUFFIX}"

    def funding_required_sol(self, per_wallet_fee_reserve_sol: float) -> float:
        """Treasury SOL needed to start: each burner's stake plus its fee reserve."""
        return self.wallet_count * (self.sol_per_wallet + per_wallet_fee_reserve_sol)

    @property
    def sol_per_wallet_lamports(self) -> int:
        return int(round(self.sol_per_wallet * LAMPORTS_PER_SOL))

    def validate(self) -> "BotGroupConfig":
        if not (self.name or "").strip():
            raise ConfigError("Bot group name is required")
        if not (self.target_token or "").strip():
            raise ConfigError("Target token is required")
        try:
            Pubkey.from_string(self.target_token.strip())
        except ValueError as e:
            raise ConfigError(f"Invalid target token address {self.target_token!r}: {e}") from e
        if int(self.wallet_count) < 1:
            raise ConfigError("Wallet count must be at least 1")
        if int(self.wallet_count) > MAX_WALLETS_PER_GROUP:
            raise ConfigError(f"Wallet count cannot exceed {MAX_WALLETS_PER_GROUP}")
        if float(self.sol_per_wallet) <= 0:
            raise ConfigError("SOL per wallet must be positive")
        if self.pattern not in TRADING_PATTERNS:
            raise ConfigError(f"Unknown trading pattern {self.pattern!r}")
        if float(self.min_swap_sol) <= 0:
            raise ConfigError("Minimum swap size must be positive")
        if float(self.min_swap_sol) > float(self.max_swap_sol):
            raise ConfigError("Minimum swap size exceeds maximum swap size")
        if float(self.min_interval_s) <= 0:
            raise ConfigError("Minimum interval must be positive")
        if float(self.min_interval_s) > float(self.max_interval_s):
            raise ConfigError("Minimum interval exceeds maximum interval")
        return self

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BotGroupConfig":
        return cls(
            id=str(row["id"]),
            name=str(row["name"]),
            target_token=str(row["target_token"]),
            wallet_count=int(row["wallet_count"]),
            sol_per_wallet=float(row["sol_per_wallet"]),
            pattern=str(row["pattern"] or "organic"),
            intensity=str(row["intensity"] or "medium"),
            min_swap_sol=float(row["min_swap_sol"]),
            max_swap_sol=float(row["max_swap_sol"]),
            min_interval_s=float(row["min_interval_s"]),
            max_interval_s=float(row["max_interval_s"]),
            created_at=float(row["created_at"]),
        )


def build_config(
    name: str,
    target_token: str,
    wallet_count: int,
    sol_per_wallet: float,
    *,
    pattern: str = "organic",
    intensity: str = "medium",
    **overrides: Any,
) -> BotGroupConfig:
    """
    Build a validated config. Swap and interval bounds come from the intensity
    preset unless given explicitly in ``overrides``.
    """
    preset = INTENSITY_PRESETS.get(intensity)
    if preset is None:
        raise ConfigError(f"Unknown intensity {intensity!r}")
    values: Dict[str, Any] = dict(preset)
    for key, val in overrides.items():
        if val is None:
            continue
        if key not in EDITABLE_FIELDS:
            raise ConfigError(f"Unknown config field {key!r}")
        values[key] = val
    cfg = BotGroupConfig(
        id=new_config_id(),
        name=(name or "").strip(),
        target_token=(target_token or "").strip(),
        wallet_count=int(wallet_count),
        sol_per_wallet=float(sol_per_wallet),
        pattern=pattern,
        intensity=intensity,
        min_swap_sol=float(values["min_swap_sol"]),
        max_swap_sol=float(values["max_swap_sol"]),
        min_interval_s=float(values["min_interval_s"]),
        max_interval_s=float(values["max_interval_s"]),
    )
    return cfg.validate()


def apply_config_updates(config: BotGroupConfig, updates: Mapping[str, Any]) -> BotGroupConfig:
    """Return a copy of ``config`` with the editable fields in ``updates`` applied."""
    bad = [k for k in updates if k not in EDITABLE_FIELDS]
    if bad:
        raise ConfigError(f"Fields not editable: {', '.join(sorted(bad))}")
    clean = {k: v for k, v in updates.items() if v is not None}
    if "intensity" in clean and clean["intensity"] not in INTENSITY_PRESETS:
        raise ConfigError(f"Unknown intensity {clean['intensity']!r}")
    return replace(config, **clean).validate()

# -----------------------------------------------------------------------------
# Wallets / chain
# -----------------------------------------------------------------------------
@dataclass
class Wallet:
    id: str
    name: str
    address: str
    type: str = "burner"  # treasury | primary | burner
    balance_sol: float = 0.0


@dataclass(frozen=True)
class TokenHolding:
    mint: str
    amount_raw: int
    decimals: int
    token_account: Optional[str] = None

# -----------------------------------------------------------------------------
# Swaps / trades
# -----------------------------------------------------------------------------
@dataclass
class Quote:
    dex: str
    input_mint: str
    output_mint: str
    input_amount: int
    output_amount: int
    price_impact_pct: float = 0.0
    slippage_bps: int = 200
    raw: Any = None


@dataclass
class SwapResult:
    success: bool
    tx_hash: Optional[str] = None
    input_amount: int = 0
    output_amount: Optional[int] = None
    error: Optional[str] = None
    wallet: str = ""


@dataclass
class TradeRecord:
    type: str  # buy | sell
    token_mint: str
    amount: int  # raw input amount (lamports for buys, token base units for sells)
    amount_sol: float
    wallet: str
    tx_hash: Optional[str]
    status: str = "confirmed"
    dex: str = "jupiter"
    group_id: Optional[str] = None
    source: str = "volume"
    timestamp: float = field(default_factory=time.time)


@dataclass
class TradeOutcome:
    success: bool
    wallet_id: str
    trade_type: Optional[str] = None
    amount_raw: int = 0
    amount_sol: float = 0.0
    tx_hash: Optional[str] = None
    dex: Optional[str] = None
    error: Optional[str] = None
    signer_missing: bool = False

# -----------------------------------------------------------------------------
# Lifecycle outcome
# -----------------------------------------------------------------------------
@dataclass
class LifecycleOutcome:
    action: str
    group_id: str
    success: bool = True
    tokens_sold: int = 0
    sell_errors: int = 0
    wallets_swept: int = 0
    sweep_errors: int = 0
    wallets_deleted: int = 0
    wallets_protected: int = 0
    wallets_kept: int = 0
    wallets_created: int = 0
    wallets_funded: int = 0
    wallets_resumed: int = 0
    deleted_wallet_ids: List[str] = field(default_factory=list)
    kept_wallet_ids: List[str] = field(default_factory=list)
    protected_wallet_ids: List[str] = field(default_factory=list)
    protected_details: List[Dict[str, Any]] = field(default_factory=list)
    missing_wallet_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    config: Optional[BotGroupConfig] = None
    note: Optional[str] = None

    def add_error(self, msg: str) -> None:
        self.errors.append(str(msg))

    def fail(self, msg: str) -> "LifecycleOutcome":
        self.success = False
        self.add_error(msg)
        return self

    @property
    def message(self) -> str:
        parts: List[str] = []
        if self.note:
            parts.append(self.note)
        if self.wallets_created:
            parts.append(f"Created {self.wallets_created} wallet(s)")
        if self.wallets_funded:
            parts.append(f"Funded {self.wallets_funded} wallet(s)")
        if self.wallets_resumed:
            parts.append(f"Resumed {self.wallets_resumed} wallet(s)")
        if self.tokens_sold:
            parts.append(f"Sold {self.tokens_sold} token(s)")
        if self.sell_errors:
            parts.append(f"{self.sell_errors} sell error(s)")
        if self.wallets_swept:
            parts.append(f"Swept {self.wallets_swept} wallet(s)")
        if self.sweep_errors:
            parts.append(f"{self.sweep_errors} sweep error(s)")
        if self.wallets_deleted:
            parts.append(f"Deleted {self.wallets_deleted} wallet(s)")
        if self.wallets_protected:
            parts.append(f"{self.wallets_protected} launch wallet(s) protected")
        if self.wallets_kept:
            parts.append(f"{self.wallets_kept} wallet(s) kept (still hold tokens)")
        if not self.success and self.errors:
            parts.insert(0, self.errors[0])
        return " · ".join(parts) if parts else "Nothing to do"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["message"] = self.message
        return d


__all__ = [
    "Idle",
    "IdleWithOrphans",
    "Starting",
    "Running",
    "Stopping",
    "Error",
    "GroupState",
    "RuntimeStats",
    "BotGroupRuntime",
    "BotGroupConfig",
    "EDITABLE_FIELDS",
    "new_config_id",
    "build_config",
    "apply_config_updates",
    "Wallet",
    "TokenHolding",
    "Quote",
    "SwapResult",
    "TradeRecord",
    "TradeOutcome",
    "LifecycleOutcome",
]
