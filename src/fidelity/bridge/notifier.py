"""Approval announcements for new receipts and orders."""

from __future__ import annotations

import discord
import structlog

from fidelity.bridge.actions import Action, ActionButton, ActionKind, build_view, chunk_buttons
from fidelity.bridge.session import TRANSPORT_ERRORS, DiscordSession
from fidelity.config import DiscordConfig
from fidelity.db.engine import Database
from fidelity.models import LineItem, Order, Product, Receipt, Subject, User, is_multi_product, total_points

logger = structlog.get_logger()

RECEIPT_COLOR = 0x0099FF
MULTI_RECEIPT_COLOR = 0xFF9900
ORDER_COLOR = 0x00FF99

LINE_ITEMS_LIMIT = 1000
RECEIPT_FOOTER = "FidelityShop - Receipt approvals"
ORDER_FOOTER = "FidelityShop - Orders"


def resolve_image_url(image_url: str, public_url: str) -> str | None:
    """Absolute URL for a stored receipt image, or None if it cannot be reached."""
    url = (image_url or "").strip()
    if url.startswith(("http://", "https://")):
        return url
    base = public_url.strip().rstrip("/")
    if not url or not base:
        return None
    return f"{base}/{url.lstrip('/')}"


def format_line_items(items: list[LineItem], limit: int = LINE_ITEMS_LIMIT) -> str:
    text = "\n".join(f"• {item.name} x{item.quantity} ({item.subtotal} points)" for item in items)
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def _format_date(subject: Subject) -> str:
    return subject.created_at.strftime("%Y-%m-%d %H:%M UTC")


def _user_fields(embed: discord.Embed, user: User, subject: Subject) -> None:
    embed.add_field(name="👤 User", value=user.username, inline=True)
    embed.add_field(name="🎮 Minecraft name", value=user.minecraft_name or "Not set", inline=True)
    embed.add_field(name="📅 Date", value=_format_date(subject), inline=True)


def build_receipt_embed(
    receipt: Receipt,
    user: User,
    image_url: str,
    items: list[LineItem] | None = None,
    total: int | None = None,
) -> discord.Embed:
    multi = items is not None
    embed = discord.Embed(
        title="📝 New multi-product receipt" if multi else "📝 New receipt",
        colour=MULTI_RECEIPT_COLOR if multi else RECEIPT_COLOR,
        description=(
            f"{user.username} submitted a new proof of purchase.\n\n"
            f"**Image:** [Open full size]({image_url})"
        ),
        timestamp=receipt.created_at,
    )
    _user_fields(embed, user, receipt)
    if multi:
        embed.add_field(name="📋 Products", value=format_line_items(items or []) or "-", inline=False)
        embed.add_field(name="💰 Total", value=f"{total} points", inline=True)
        embed.add_field(name="🔢 Receipt ID", value=receipt.id, inline=True)
    else:
        embed.add_field(name="🔢 Receipt ID", value=receipt.id, inline=False)
    embed.set_image(url=image_url)
    embed.set_footer(text=RECEIPT_FOOTER)
    return embed


def build_order_embed(order: Order, user: User, product: Product) -> discord.Embed:
    embed = discord.Embed(
        title="🛒 New order",
        colour=ORDER_COLOR,
        description=f"{user.username} placed a new order.",
        timestamp=order.created_at,
    )
    _user_fields(embed, user, order)
    embed.add_field(name="🎁 Product", value=product.name, inline=True)
    embed.add_field(name="🔢 Quantity", value=str(order.quantity), inline=True)
    embed.add_field(name="💰 Points", value=str(order.total_points), inline=True)
    embed.add_field(name="🆔 Order ID", value=order.id, inline=False)
    embed.set_footer(text=ORDER_FOOTER)
    return embed


def single_receipt_buttons(receipt_id: str, points: int) -> list[ActionButton]:
    return [
        ActionButton(
            label=f"✅ Approve ({points} points)",
            action=Action(ActionKind.APPROVE, receipt_id, points),
            style=discord.ButtonStyle.success,
        ),
        ActionButton(
            label="❌ Reject",
            action=Action(ActionKind.REJECT, receipt_id),
            style=discord.ButtonStyle.danger,
        ),
    ]


def multi_receipt_buttons(receipt_id: str, total: int) -> list[ActionButton]:
    return [
        ActionButton(
            label=f"✅ Approve ({total} points)",
            action=Action(ActionKind.APPROVE_FULL, receipt_id, total),
            style=discord.ButtonStyle.success,
        ),
        ActionButton(
            label="⚙️ Custom points",
            action=Action(ActionKind.REQUEST_CUSTOM, receipt_id),
            style=discord.ButtonStyle.primary,
        ),
        ActionButton(
            label="❌ Reject",
            action=Action(ActionKind.REJECT, receipt_id),
            style=discord.ButtonStyle.danger,
        ),
    ]


def order_buttons(order_id: str) -> list[ActionButton]:
    return [
        ActionButton(
            label="🔄 Processing",
            action=Action(ActionKind.PROCESS, order_id),
            style=discord.ButtonStyle.primary,
        ),
        ActionButton(
            label="✅ Completed",
            action=Action(ActionKind.COMPLETE, order_id),
            style=discord.ButtonStyle.success,
        ),
    ]


def point_selection_rows(receipt_id: str, options: list[int]) -> list[list[ActionButton]]:
    """Point buttons, at most five per row, then a Cancel row."""
    buttons = [
        ActionButton(
            label=f"{points} points",
            action=Action(ActionKind.APPROVE_CUSTOM, receipt_id, points),
            style=discord.ButtonStyle.primary,
        )
        for points in options
    ]
    cancel = ActionButton(
        label="Cancel",
        action=Action(ActionKind.CANCEL_CUSTOM, receipt_id),
        style=discord.ButtonStyle.danger,
    )
    return [*chunk_buttons(buttons), [cancel]]


def point_selection_header(receipt_id: str) -> str:
    return f"**Custom points for receipt {receipt_id}**"


class Notifier:
    """Posts approval messages and records their ids on the subject."""

    def __init__(self, *, session: DiscordSession, db: Database, config: DiscordConfig) -> None:
        self.session = session
        self.db = db
        self.config = config

    async def notify(
        self,
        subject: Subject,
        products: list[LineItem] | None = None,
        total: int | None = None,
    ) -> str | None:
        """Announce a subject; returns the Discord message id or None on failure.

        Raises DiscordConfigError when the bridge is not configured.
        """
        kind = "order" if isinstance(subject, Order) else "receipt"
        if subject.discord_message_id:
            logger.warning(
                "notifier.already_notified",
                subject=kind,
                subject_id=subject.id,
                message_id=subject.discord_message_id,
            )
            return subject.discord_message_id

        if not await self.session.ensure_connected():
            logger.error("notifier.not_connected", subject=kind, subject_id=subject.id)
            return None

        user = await self.db.user_get(subject.user_id)
        if user is None:
            logger.error("notifier.user_missing", subject=kind, subject_id=subject.id, user_id=subject.user_id)
            return None

        if isinstance(subject, Order):
            message_id = await self._announce_order(subject, user)
        else:
            message_id = await self._announce_receipt(subject, user, products, total)
        if message_id is None:
            return None

        # Sent first, recorded second: an id is never stored for a message that does not exist
        if isinstance(subject, Order):
            await self.db.order_set_message_id(subject.id, message_id)
        else:
            await self.db.receipt_set_message_id(subject.id, message_id)
        subject.discord_message_id = message_id

        logger.info("notifier.sent", subject=kind, subject_id=subject.id, message_id=message_id)
        return message_id

    async def send_point_selection(self, receipt: Receipt, user: User) -> str | None:
        """Post the secondary message offering custom point amounts."""
        if not await self.session.ensure_connected():
            logger.error("notifier.not_connected", subject="point_selection", subject_id=receipt.id)
            return None

        rows = point_selection_rows(receipt.id, self.config.custom_point_options)
        content = (
            f"{point_selection_header(receipt.id)}\n"
            f"User: {user.username}\n"
            "Select the number of points to award:"
        )
        return await self._send(receipt.id, content=content, view=build_view(rows))

    async def _announce_receipt(
        self,
        receipt: Receipt,
        user: User,
        products: list[LineItem] | None,
        total: int | None,
    ) -> str | None:
        image_url = resolve_image_url(receipt.image_url, self.config.public_url)
        if image_url is None:
            logger.error("notifier.image_unreachable", subject_id=receipt.id, image_url=receipt.image_url)
            return None

        items = products if products is not None else receipt.line_items
        if is_multi_product(items):
            computed = total if total is not None else total_points(items)
            embed = build_receipt_embed(receipt, user, image_url, items, computed)
            buttons = multi_receipt_buttons(receipt.id, computed)
            preview_title = "🖼️ MULTI-PRODUCT RECEIPT"
        else:
            embed = build_receipt_embed(receipt, user, image_url)
            buttons = single_receipt_buttons(receipt.id, self.config.receipt_points)
            preview_title = "🖼️ RECEIPT"

        if self.config.post_image_preview:
            # Plain link first so Discord renders the picture at full width
            preview = await self._post(receipt.id, content=f"**{preview_title} - {user.username}**\n{image_url}")
            if preview is None:
                return None
            message = await self._post(receipt.id, embed=embed, view=build_view([buttons]))
            if message is None:
                await self._discard(receipt.id, preview)
                return None
            return str(message.id)

        return await self._send(receipt.id, embed=embed, view=build_view([buttons]))

    async def _announce_order(self, order: Order, user: User) -> str | None:
        product = await self.db.product_get(order.product_id)
        if product is None:
            logger.error("notifier.product_missing", subject_id=order.id, product_id=order.product_id)
            return None
        embed = build_order_embed(order, user, product)
        return await self._send(order.id, embed=embed, view=build_view([order_buttons(order.id)]))

    async def _send(self, subject_id: str, **payload) -> str | None:
        message = await self._post(subject_id, **payload)
        return str(message.id) if message is not None else None

    async def _post(self, subject_id: str, **payload):
        channel = await self.session.text_channel()
        if channel is None:
            logger.error("notifier.channel_missing", subject_id=subject_id)
            return None
        try:
            return await channel.send(**payload)
        except TRANSPORT_ERRORS as exc:
            logger.error("notifier.send_failed", subject_id=subject_id, error=str(exc) or type(exc).__name__)
            return None

    async def _discard(self, subject_id: str, message) -> None:
        """Delete a message left orphaned by a failed announcement."""
        try:
            await message.delete()
        except TRANSPORT_ERRORS as exc:
            logger.warning(
                "notifier.orphan_delete_failed",
                subject_id=subject_id,
                message_id=str(message.id),
                error=str(exc) or type(exc).__name__,
            )
            return
        logger.info("notifier.orphan_deleted", subject_id=subject_id, message_id=str(message.id))
