import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import BaseModel, Field, constr
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import PRICES
from ..db import get_db
from ..deps import current_user
from ..models import Purchase, Storybook, User
from ..services import cart, payments
from ..services.book_sizes import DEFAULT_TRIM, is_supported
from ..services.invoice_pdf import generate_invoice_pdf
from ..services.purchases import complete_checkout, invoice_for, owns_digital

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------- Models ----------
class CartAddRequest(BaseModel):
    storybookId: str
    productType: str = Field(..., pattern="^(digital|print)$")
    bookSize: Optional[str] = None


class CheckoutItem(BaseModel):
    storybookId: str
    type: str = Field(..., pattern="^(digital|print)$")
    bookSize: Optional[str] = None


class ShippingAddress(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=255)
    line1: constr(strip_whitespace=True, min_length=1, max_length=255)
    line2: Optional[str] = None
    city: constr(strip_whitespace=True, min_length=1, max_length=120)
    state: Optional[str] = None
    postal_code: constr(strip_whitespace=True, min_length=1, max_length=32)
    country: constr(strip_whitespace=True, min_length=2, max_length=2)


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = Field(default_factory=list)
    shipping: Optional[ShippingAddress] = None


class CreatePurchaseRequest(BaseModel):
    paymentIntentId: str


class CheckPurchaseRequest(BaseModel):
    storybookId: str


def _cart_item_out(item) -> Dict[str, Any]:
    return {
        "id": item.id,
        "storybookId": item.storybook_id,
        "productType": item.product_type,
        "bookSize": item.book_size or None,
        "price": PRICES[item.product_type],
        "title": item.storybook.title if item.storybook else None,
        "coverImageUrl": item.storybook.cover_image_url if item.storybook else None,
    }


def _purchase_out(p: Purchase) -> Dict[str, Any]:
    return {
        "id": p.id, "storybookId": p.storybook_id, "type": p.type, "price": p.price,
        "status": p.status, "bookSize": p.book_size, "paymentIntentId": p.payment_intent_id,
        "createdAt": p.created_at.isoformat() if p.created_at else None,
        "title": p.storybook.title if p.storybook else None,
    }


# ===== Cart =====
@router.get("/cart", tags=["Cart"])
def get_cart(user: User = Depends(current_user), db: Session = Depends(get_db)):
    items = cart.list_items(db, user.id)
    return {"items": [_cart_item_out(i) for i in items], "total": cart.cart_total(items)}


@router.post("/cart", tags=["Cart"])
def add_to_cart(req: CartAddRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    book = db.get(Storybook, req.storybookId)
    if book is None or book.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Storybook not found")
    try:
        item = cart.add_item(db, user.id, book.id, req.productType, req.bookSize)
    except cart.CartConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _cart_item_out(item)


@router.delete("/cart/{item_id}", tags=["Cart"])
def remove_from_cart(item_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    if not cart.remove_item(db, user.id, item_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return {"ok": True}


@router.delete("/cart", tags=["Cart"])
def clear_cart(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"ok": True, "removed": cart.clear(db, user.id)}


# ===== Checkout =====
@router.post("/checkout", tags=["Checkout"])
def checkout(req: CheckoutRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    if req.items:
        items = [i.model_dump() for i in req.items]
    else:
        items = [{"storybookId": i.storybook_id, "type": i.product_type, "bookSize": i.book_size or None}
                 for i in cart.list_items(db, user.id)]
    if not items:
        raise HTTPException(status_code=400, detail="Nothing to check out")

    for it in items:
        book = db.get(Storybook, it["storybookId"])
        if book is None or book.deleted_at is not None:
            raise HTTPException(status_code=404, detail=f"Storybook not found: {it['storybookId']}")
        if it["type"] == "print":
            it["bookSize"] = it.get("bookSize") or DEFAULT_TRIM
            if not is_supported(it["bookSize"]):
                raise HTTPException(status_code=400, detail=f"Unsupported book size: {it['bookSize']}")
        else:
            it.pop("bookSize", None)
    if any(it["type"] == "print" for it in items) and req.shipping is None:
        raise HTTPException(status_code=400, detail="Shipping address required for print orders")

    amount = sum(PRICES[it["type"]] for it in items)
    shipping = req.shipping.model_dump() if req.shipping else None
    try:
        intent = payments.create_payment_intent(amount, user.id, items, shipping)
    except Exception as e:
        logger.warning("⚠️ payment intent failed: %s", e)
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e}")
    return {"clientSecret": intent["client_secret"], "amount": amount, "paymentIntentId": intent["id"]}


def _items_from_metadata(metadata: Dict[str, Any]) -> tuple:
    try:
        items = json.loads(metadata.get("items") or "[]")
        shipping = json.loads(metadata["shipping"]) if metadata.get("shipping") else None
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed payment metadata")
    return items, shipping


# ===== Purchases =====
@router.post("/purchases/create", tags=["Purchases"])
def create_purchases(req: CreatePurchaseRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    try:
        pi = payments.retrieve_payment_intent(req.paymentIntentId)
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e}")
    if pi["status"] != "succeeded":
        raise HTTPException(status_code=400, detail=f"Payment not completed (status: {pi['status']})")
    if pi["metadata"].get("userId") != user.id:
        raise HTTPException(status_code=403, detail="Payment belongs to another user")
    items, shipping = _items_from_metadata(pi["metadata"])
    try:
        result = complete_checkout(db, user, req.paymentIntentId, items, shipping)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"purchases": [_purchase_out(p) for p in result.purchases], "created": len(result.created)}


def _record_paid_intent(db: Session, intent: Dict[str, Any]) -> None:
    metadata = intent.get("metadata") or {}
    user = db.get(User, metadata.get("userId") or "")
    if user is None:
        logger.warning("⚠️ payment %s has no known user", intent.get("id"))
        return
    items, shipping = _items_from_metadata(metadata)
    try:
        result = complete_checkout(db, user, intent["id"], items, shipping)
    except ValueError as e:
        logger.warning("⚠️ webhook purchase recording failed for %s: %s", intent.get("id"), e)
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("🪝 payment_intent.succeeded %s recorded %d new purchase(s)", intent["id"], len(result.created))


@router.post("/webhook/stripe", tags=["Webhooks"])
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    payload = await request.body()
    try:
        event = payments.construct_event(payload, stripe_signature or "")
    except Exception as e:
        logger.warning("⚠️ stripe webhook rejected: %s", e)
        raise HTTPException(status_code=400, detail="Invalid webhook")

    if event.get("type") != "payment_intent.succeeded":
        return {"received": True}
    intent = (event.get("data") or {}).get("object") or {}
    # recording renders PDFs and calls Stripe, Prodigi and Resend; keep it off the event loop
    await run_in_threadpool(_record_paid_intent, db, intent)
    return {"received": True}


@router.post("/purchases/check", tags=["Purchases"])
def check_purchase(req: CheckPurchaseRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"owned": owns_digital(db, user.id, req.storybookId)}


@router.get("/purchases", tags=["Purchases"])
def list_purchases(user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = db.scalars(select(Purchase).where(Purchase.user_id == user.id).order_by(Purchase.created_at.desc()))
    return [_purchase_out(p) for p in rows]


@router.get("/purchases/{payment_intent_id}/invoice", tags=["Purchases"])
def purchase_invoice(payment_intent_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = list(db.scalars(select(Purchase).where(
        Purchase.payment_intent_id == payment_intent_id, Purchase.user_id == user.id,
    )))
    if not rows:
        raise HTTPException(status_code=404, detail="Order not found")
    pdf = generate_invoice_pdf(invoice_for(rows, payment_intent_id))
    return Response(content=pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f'attachment; filename="invoice-{payment_intent_id[-8:].upper()}.pdf"'})
