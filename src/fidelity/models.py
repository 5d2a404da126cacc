"""Shop records the bridge works on, as plain dataclasses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ReceiptStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        return datetime.now(UTC)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class User:
    id: str
    username: str
    minecraft_name: str | None = None
    points: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> User:
        return cls(
            id=row["id"],
            username=row["username"],
            minecraft_name=row.get("minecraft_name"),
            points=int(row["points"]),
        )


@dataclass
class Product:
    id: str
    name: str
    points_cost: int
    in_stock: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Product:
        return cls(
            id=row["id"],
            name=row["name"],
            points_cost=int(row["points_cost"]),
            in_stock=bool(row["in_stock"]),
        )


@dataclass
class LineItem:
    """One product line of a multi-product receipt."""

    product_id: str
    name: str
    quantity: int
    points_cost: int

    @property
    def subtotal(self) -> int:
        return self.points_cost * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "points_cost": self.points_cost,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(
            product_id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            quantity=int(data.get("quantity", 1)),
            points_cost=int(data.get("points_cost", data.get("pointsCost", 0))),
        )


def total_points(items: list[LineItem]) -> int:
    return sum(item.subtotal for item in items)


def is_multi_product(items: list[LineItem]) -> bool:
    # counts units, so "3x the same product" gets the itemized buttons too
    return sum(item.quantity for item in items) > 1


@dataclass
class Receipt:
    id: str
    user_id: str
    image_url: str
    status: ReceiptStatus
    created_at: datetime
    line_items: list[LineItem] = field(default_factory=list)
    points_awarded: int | None = None
    discord_message_id: str | None = None

    @property
    def is_multi_product(self) -> bool:
        return is_multi_product(self.line_items)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Receipt:
        items: list[LineItem] = []
        raw_metadata = row.get("metadata")
        if raw_metadata:
            metadata = json.loads(raw_metadata)
            items = [LineItem.from_dict(item) for item in metadata.get("products", [])]
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            image_url=row["image_url"],
            status=ReceiptStatus(row["status"]),
            created_at=_parse_dt(row["created_at"]),
            line_items=items,
            points_awarded=row.get("points_awarded"),
            discord_message_id=row.get("discord_message_id"),
        )


@dataclass
class Order:
    id: str
    user_id: str
    product_id: str
    quantity: int
    total_points: int
    status: OrderStatus
    created_at: datetime
    discord_message_id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Order:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            product_id=row["product_id"],
            quantity=int(row["quantity"]),
            total_points=int(row["total_points"]),
            status=OrderStatus(row["status"]),
            created_at=_parse_dt(row["created_at"]),
            discord_message_id=row.get("discord_message_id"),
        )


Subject = Receipt | Order
