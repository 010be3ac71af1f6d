# solana_volume_bot_bundle/volume_bot/database.py
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

import aiosqlite

from solana_volume_bot_bundle.common.constants import db_path as _default_db_path

from .models import BotGroupConfig, TradeRecord

logger = logging.getLogger("VolumeBot")


# =========================
# Connection / Path helpers
# =========================
def _resolve_db_path(path: Optional[str] = None) -> str:
    p = path or str(_default_db_path())
    p = os.path.abspath(os.path.expanduser(os.path.expandvars(str(p))))
    os.makedirs(os.path.dirname(p), exist_ok=True)
    return p


class _ConnCtx:
    def __init__(self, path: str):
        self._path = path
        self._db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self) -> aiosqlite.Connection:
        self._db = await aiosqlite.connect(self._path)
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute("PRAGMA busy_timeout=30000;")
        await self._db.execute("PRAGMA synchronous=NORMAL;")
        self._db.row_factory = aiosqlite.Row
        # Ensure schema exists on every connection (idempotent)
        await _ensure_core_schema(self._db)
        return self._db

    async def __aexit__(self, exc_type, exc, tb):
        try:
            if self._db is not None:
                await self._db.close()
        finally:
            self._db = None


def _connect(dbp: Optional[str] = None) -> _ConnCtx:
    return _ConnCtx(_resolve_db_path(dbp))


async def _ensure_core_schema(db: aiosqlite.Connection) -> None:
    await db.execute("""
        CREATE TABLE IF NOT EXISTS bot_groups (
            id              TEXT PRIMARY KEY,
            name            TEXT NOT NULL UNIQUE,
            target_token    TEXT NOT NULL,
            wallet_count    INTEGER NOT NULL,
            sol_per_wallet  REAL NOT NULL,
            pattern         TEXT NOT NULL DEFAULT 'organic',
            intensity       TEXT NOT NULL DEFAULT 'medium',
            min_swap_sol    REAL NOT NULL,
            max_swap_sol    REAL NOT NULL,
            min_interval_s  REAL NOT NULL,
            max_interval_s  REAL NOT NULL,
            created_at      REAL NOT NULL
        );
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS trade_history (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp   REAL NOT NULL,
            type        TEXT NOT NULL,
            token_mint  TEXT NOT NULL,
            amount      INTEGER NOT NULL,
            amount_sol  REAL,
            wallet      TEXT NOT NULL,
            tx_hash     TEXT,
            status      TEXT NOT NULL,
            dex         TEXT,
            source      TEXT NOT NULL DEFAULT 'volume',
            group_id    TEXT
        );
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_trade_history_group ON trade_history(group_id, timestamp);")
    await db.execute("""
        CREATE TABLE IF NOT EXISTS launch_history (
            mint_address    TEXT PRIMARY KEY,
            name            TEXT,
            symbol          TEXT,
            creator_wallet  TEXT NOT NULL,
            timestamp       REAL NOT NULL
        );
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_launch_history_creator ON launch_history(creator_wallet);")
    await db.commit()


async def init_db(dbp: Optional[str] = None) -> None:
    async with _connect(dbp):
        logger.debug("Database schema ready at %s", _resolve_db_path(dbp))

# =========================
# Bot group configs
# =========================
_CONFIG_COLUMNS = (
    "id", "name", "target_token", "wallet_count", "sol_per_wallet", "pattern", "intensity",
    "min_swap_sol", "max_swap_sol", "min_interval_s", "max_interval_s", "created_at",
)


async def load_bot_configs(dbp: Optional[str] = None) -> List[BotGroupConfig]:
    async with _connect(dbp) as db:
        async with db.execute("SELECT * FROM bot_groups ORDER BY created_at ASC;") as cur:
            rows = await cur.fetchall()
    return [BotGroupConfig.from_row(dict(r)) for r in rows]


async def get_bot_config(group_id: str, dbp: Optional[str] = None) -> Optional[BotGroupConfig]:
    async with _connect(dbp) as db:
        async with db.execute("SELECT * FROM bot_groups WHERE id = ?;", (group_id,)) as cur:
            row = await cur.fetchone()
    return BotGroupConfig.from_row(dict(row)) if row else None


async def save_bot_config(config: BotGroupConfig, dbp: Optional[str] = None) -> None:
    row = config.to_row()
    cols = ", ".join(_CONFIG_COLUMNS)
    marks = ", ".join("?" for _ in _CONFIG_COLUMNS)
    updates = ", ".join(f"{c}=excluded.{c}" for c in _CONFIG_COLUMNS if c != "id")
    async with _connect(dbp) as db:
        await db.execute(
            f"INSERT INTO bot_groups ({cols}) VALUES ({marks}) ON CONFLICT(id) DO UPDATE SET {updates};",
            tuple(row[c] for c in _CONFIG_COLUMNS),
        )
        await db.commit()
    logger.debug("Saved bot group config %s (%s)", config.id, config.name)


async def delete_bot_config(group_id: str, dbp: Optional[str] = None) -> bool:
    async with _connect(dbp) as db:
        cur = await db.execute("DELETE FROM bot_groups WHERE id = ?;", (group_id,))
        await db.commit()
        return (cur.rowcount or 0) > 0

# =========================
# Trade ledger
# =========================
async def record_trade(trade: TradeRecord, dbp: Optional[str] = None) -> None:
    """Append one trade row to trade_history."""
    async with _connect(dbp) as db:
        await db.execute("""
            INSERT INTO trade_history (
                timestamp, type, token_mint, amount, amount_sol, wallet,
                tx_hash, status, dex, source, group_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """, (
            float(trade.timestamp),
            trade.type,
            trade.token_mint,
            int(trade.amount),
            float(trade.amount_sol),
            trade.wallet,
            trade.tx_hash,
            trade.status,
            trade.dex,
            trade.source,
            trade.group_id,
        ))
        await db.commit()
    logger.debug("Recorded %s trade for %s tx=%s", trade.type, trade.token_mint, trade.tx_hash)


async def list_trades(
    *,
    group_id: Optional[str] = None,
    source: Optional[str] = None,
    limit: int = 100,
    dbp: Optional[str] = None,
) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if group_id:
        clauses.append("group_id = ?")
        params.append(group_id)
    if source:
        clauses.append("source = ?")
        params.append(source)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(int(limit))
    async with _connect(dbp) as db:
        async with db.execute(
            f"SELECT * FROM trade_history {where} ORDER BY timestamp DESC, id DESC LIMIT ?;", tuple(params)
        ) as cur:
            rows = await cur.fetchall()
    return [dict(r) for r in rows]

# =========================
# Launch registry
# =========================
async def record_launch(
    mint_address: str,
    creator_wallet: str,
    *,
    name: Optional[str] = None,
    symbol: Optional[str] = None,
    timestamp: Optional[float] = None,
    dbp: Optional[str] = None,
) -> None:
    async with _connect(dbp) as db:
        await db.execute("""
            INSERT INTO launch_history (mint_address, name, symbol, creator_wallet, timestamp)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(mint_address) DO UPDATE SET
                name=excluded.name, symbol=excluded.symbol, creator_wallet=excluded.creator_wallet;
        """, (mint_address, name, symbol, creator_wallet, float(timestamp or time.time())))
        await db.commit()
    logger.info("Recorded launch of %s by %s", mint_address, creator_wallet[:8])


async def list_launches(dbp: Optional[str] = None) -> List[Dict[str, Any]]:
    async with _connect(dbp) as db:
        async with db.execute("SELECT * FROM launch_history ORDER BY timestamp DESC;") as cur:
            rows = await cur.fetchall()
    return [dict(r) for r in rows]

# =========================
# Store classes
# =========================
class SqliteConfigStore:
    def __init__(self, dbp: Optional[str] = None):
        self.dbp = dbp

    async def get(self, group_id: str) -> Optional[BotGroupConfig]:
        return await get_bot_config(group_id, self.dbp)

    async def list(self) -> List[BotGroupConfig]:
        return await load_bot_configs(self.dbp)

    async def save(self, config: BotGroupConfig) -> None:
        await save_bot_config(config, self.dbp)

    async def delete(self, group_id: str) -> bool:
        return await delete_bot_config(group_id, self.dbp)


class SqliteTradeLedger:
    def __init__(self, dbp: Optional[str] = None):
        self.dbp = dbp

    async def record_trade(self, trade: TradeRecord) -> None:
        await record_trade(trade, self.dbp)

    async def list_trades(self, *, group_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        return await list_trades(group_id=group_id, source="volume", limit=limit, dbp=self.dbp)


class SqliteLaunchRegistry:
    """Launch records keyed by creator wallet address. Never cached."""

    def __init__(self, dbp: Optional[str] = None):
        self.dbp = dbp

    async def record_launch(self, mint_address: str, creator_wallet: str, **kw: Any) -> None:
        await record_launch(mint_address, creator_wallet, dbp=self.dbp, **kw)

    async def launch_wallet_addresses(self) -> Dict[str, List[Dict[str, Any]]]:
        out: Dict[str, List[Dict[str, Any]]] = {}
        for row in await list_launches(self.dbp):
            out.setdefault(row["creator_wallet"], []).append(row)
        return out

    async def launches_for_wallet(self, address: str) -> List[Dict[str, Any]]:
        return (await self.launch_wallet_addresses()).get(address, [])

    async def is_launch_wallet(self, address: str) -> bool:
        return bool(await self.launches_for_wallet(address))


__all__ = [
    "init_db",
    "load_bot_configs",
    "get_bot_config",
    "save_bot_config",
    "delete_bot_config",
    "record_trade",
    "list_trades",
    "record_launch",
    "list_launches",
    "SqliteConfigStore",
    "SqliteTradeLedger",
    "SqliteLaunchRegistry",
]
