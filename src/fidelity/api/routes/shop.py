"""Receipt and order intake used by the web front end."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from fidelity.api.middleware.auth import verify_api_key
from fidelity.errors import FidelityError

router = APIRouter()


class ReceiptItem(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)


class ReceiptRequest(BaseModel):
    user_id: str
    image_url: str
    products: list[ReceiptItem] = Field(min_length=1)


class OrderRequest(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(default=1, ge=1)


@router.post("/api/receipts", status_code=201)
async def submit_receipt(
    request: Request,
    body: ReceiptRequest,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    try:
        receipt = await request.app.state.receipt_service.submit(
            body.user_id,
            body.image_url,
            [(item.product_id, item.quantity) for item in body.products],
        )
    except FidelityError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return {"message": "Receipt submitted", "receipt": asdict(receipt)}


@router.post("/api/orders", status_code=201)
async def place_order(
    request: Request,
    body: OrderRequest,
    _api_key: str | None = Depends(verify_api_key),
) -> dict:
    try:
        order = await request.app.state.order_service.place(body.user_id, body.product_id, body.quantity)
    except FidelityError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return {"message": "Order placed", "order": asdict(order), "discord_notification_sent": True}
