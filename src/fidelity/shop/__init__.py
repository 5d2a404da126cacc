"""Shop workflows that hand new subjects to the approval bridge."""

from fidelity.shop.orders import OrderService
from fidelity.shop.receipts import ReceiptService

__all__ = ["OrderService", "ReceiptService"]
