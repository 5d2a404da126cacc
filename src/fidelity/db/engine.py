"""SQLite async database: the shop ledger the bridge reads and mutates.

Provides:
- Users and their point balances
- Products
- Receipts awaiting approval
- Orders awaiting fulfilment
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from fidelity.models import LineItem, Order, OrderStatus, Product, Receipt, ReceiptStatus, User, total_points

logger = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    minecraft_name TEXT,
    points INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    points_cost INTEGER NOT NULL,
    in_stock INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS receipts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    image_url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    points_awarded INTEGER,
    metadata TEXT,
    discord_message_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    product_id TEXT NOT NULL,
    quantity INTEGER NOT NULL DEFAULT 1,
    total_points INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    discord_message_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (product_id) REFERENCES products(id)
);

CREATE INDEX IF NOT EXISTS idx_receipts_user ON receipts(user_id);
CREATE INDEX IF NOT EXISTS idx_receipts_status ON receipts(status);
CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id);
CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
"""


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Database:
    """Async SQLite database for the shop ledger."""

    def __init__(
        self,
        data_dir: str,
        journal_mode: str = "WAL",
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / "fidelity.db"
        self.journal_mode = journal_mode.upper()
        if self.journal_mode not in {"WAL", "DELETE"}:
            raise ValueError(f"Unsupported SQLite journal mode: {journal_mode}")
        self.busy_timeout_ms = int(busy_timeout_ms)
        self._conn: aiosqlite.Connection | None = None
        # One connection is shared by every request task; statements must not
        # interleave with an open transaction.
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the database and run migrations."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        # Autocommit: transactions are opened explicitly in transaction()
        self._conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        self._conn.row_factory = aiosqlite.Row

        # WAL may fail on network filesystems. Fall back to DELETE mode.
        try:
            await self._conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except Exception as exc:
            if self.journal_mode == "WAL":
                logger.warning(
                    "db.wal_unavailable_fallback",
                    path=str(self.db_path),
                    error=str(exc),
                )
                await self._conn.execute("PRAGMA journal_mode=DELETE")
            else:
                raise

        await self._conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        await self._conn.execute("PRAGMA foreign_keys=ON")

        await self._conn.executescript(SCHEMA)

        logger.info("db.initialized", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("db.closed")

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        assert self._conn, "Database not initialized"
        async with self._lock:
            return await self._conn.execute(sql, params)

    async def fetch_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Fetch a single row."""
        assert self._conn, "Database not initialized"
        async with self._lock:
            cursor = await self._conn.execute(sql, params)
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Fetch all rows."""
        assert self._conn, "Database not initialized"
        async with self._lock:
            cursor = await self._conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run statements in one IMMEDIATE transaction; rolls back on error."""
        assert self._conn, "Database not initialized"
        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            await self._conn.execute("COMMIT")

    async def ping(self) -> bool:
        row = await self.fetch_one("SELECT 1 AS ok")
        return bool(row and row["ok"] == 1)

    # ── Users ───────────────────────────────────────────────────────

    async def user_create(
        self,
        username: str,
        *,
        minecraft_name: str | None = None,
        points: int = 0,
    ) -> User:
        user = User(id=str(uuid.uuid4()), username=username, minecraft_name=minecraft_name, points=points)
        await self.execute(
            """INSERT INTO users (id, username, minecraft_name, points, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (user.id, user.username, user.minecraft_name, user.points, _now_iso()),
        )
        return user

    async def user_get(self, user_id: str) -> User | None:
        row = await self.fetch_one(
            "SELECT id, username, minecraft_name, points FROM users WHERE id = ?",
            (user_id,),
        )
        return User.from_row(row) if row else None

    async def user_increment_points(self, user_id: str, delta: int) -> bool:
        """Add ``delta`` (may be negative) to a user's balance."""
        cursor = await self.execute(
            "UPDATE users SET points = points + ? WHERE id = ?",
            (int(delta), user_id),
        )
        return cursor.rowcount == 1

    # ── Products ────────────────────────────────────────────────────

    async def product_create(self, name: str, points_cost: int, *, in_stock: bool = True) -> Product:
        product = Product(id=str(uuid.uuid4()), name=name, points_cost=points_cost, in_stock=in_stock)
        await self.execute(
            """INSERT INTO products (id, name, points_cost, in_stock, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (product.id, product.name, product.points_cost, 1 if in_stock else 0, _now_iso()),
        )
        return product

    async def product_get(self, product_id: str) -> Product | None:
        row = await self.fetch_one(
            "SELECT id, name, points_cost, in_stock FROM products WHERE id = ?",
            (product_id,),
        )
        return Product.from_row(row) if row else None

    async def product_get_many(self, product_ids: Iterable[str]) -> dict[str, Product]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = await self.fetch_all(
            f"SELECT id, name, points_cost, in_stock FROM products WHERE id IN ({placeholders})",
            tuple(ids),
        )
        return {row["id"]: Product.from_row(row) for row in rows}

    # ── Receipts ────────────────────────────────────────────────────

    async def receipt_create(self, user_id: str, image_url: str, line_items: list[LineItem]) -> Receipt:
        now = _now_iso()
        receipt_id = str(uuid.uuid4())
        metadata = json.dumps(
            {
                "products": [item.to_dict() for item in line_items],
                "total_potential_points": total_points(line_items),
            },
            ensure_ascii=False,
        )
        await self.execute(
            """INSERT INTO receipts
                    (id, user_id, image_url, status, metadata, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (receipt_id, user_id, image_url, ReceiptStatus.PENDING.value, metadata, now, now),
        )
        receipt = await self.receipt_get(receipt_id)
        assert receipt is not None
        return receipt

    async def receipt_get(self, receipt_id: str) -> Receipt | None:
        row = await self.fetch_one("SELECT * FROM receipts WHERE id = ?", (receipt_id,))
        return Receipt.from_row(row) if row else None

    async def receipt_delete(self, receipt_id: str) -> bool:
        cursor = await self.execute("DELETE FROM receipts WHERE id = ?", (receipt_id,))
        return cursor.rowcount > 0

    async def receipt_set_message_id(self, receipt_id: str, message_id: str) -> None:
        await self.execute(
            "UPDATE receipts SET discord_message_id = ?, updated_at = ? WHERE id = ?",
            (message_id, _now_iso(), receipt_id),
        )

    async def receipt_approve(self, receipt_id: str, points: int) -> bool:
        """Approve a pending receipt and credit its owner in one transaction.

        Returns False when the receipt is missing or no longer pending; nothing
        is written in that case.
        """
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE receipts
                   SET status = ?, points_awarded = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (
                    ReceiptStatus.APPROVED.value,
                    int(points),
                    _now_iso(),
                    receipt_id,
                    ReceiptStatus.PENDING.value,
                ),
            )
            if cursor.rowcount != 1:
                return False
            await conn.execute(
                """UPDATE users SET points = points + ?
                   WHERE id = (SELECT user_id FROM receipts WHERE id = ?)""",
                (int(points), receipt_id),
            )
        return True

    async def receipt_reject(self, receipt_id: str) -> bool:
        cursor = await self.execute(
            "UPDATE receipts SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (ReceiptStatus.REJECTED.value, _now_iso(), receipt_id, ReceiptStatus.PENDING.value),
        )
        return cursor.rowcount == 1

    # ── Orders ──────────────────────────────────────────────────────

    async def order_create(self, user_id: str, product_id: str, quantity: int, total_points: int) -> Order:
        now = _now_iso()
        order_id = str(uuid.uuid4())
        await self.execute(
            """INSERT INTO orders
                    (id, user_id, product_id, quantity, total_points, status, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (order_id, user_id, product_id, quantity, total_points, OrderStatus.PENDING.value, now, now),
        )
        order = await self.order_get(order_id)
        assert order is not None
        return order

    async def order_get(self, order_id: str) -> Order | None:
        row = await self.fetch_one("SELECT * FROM orders WHERE id = ?", (order_id,))
        return Order.from_row(row) if row else None

    async def order_set_message_id(self, order_id: str, message_id: str) -> None:
        await self.execute(
            "UPDATE orders SET discord_message_id = ?, updated_at = ? WHERE id = ?",
            (message_id, _now_iso(), order_id),
        )

    async def order_transition(
        self,
        order_id: str,
        status: OrderStatus,
        allowed_from: Iterable[OrderStatus],
    ) -> bool:
        """Move an order to ``status`` only if it is currently in ``allowed_from``."""
        sources = [s.value for s in allowed_from]
        placeholders = ", ".join("?" for _ in sources)
        cursor = await self.execute(
            f"""UPDATE orders SET status = ?, updated_at = ?
                WHERE id = ? AND status IN ({placeholders})""",
            (status.value, _now_iso(), order_id, *sources),
        )
        return cursor.rowcount == 1

    async def order_charge(self, order_id: str) -> bool:
        """Debit the order total from its owner if the balance still covers it."""
        async with self.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE users SET points = points - (SELECT total_points FROM orders WHERE id = ?)
                   WHERE id = (SELECT user_id FROM orders WHERE id = ?)
                     AND points >= (SELECT total_points FROM orders WHERE id = ?)""",
                (order_id, order_id, order_id),
            )
            return cursor.rowcount == 1
