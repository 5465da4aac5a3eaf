import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import current_user
from ..models import PrintOrder, User
from ..services.orders import apply_fulfillment_update

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def order_out(o: PrintOrder) -> Dict[str, Any]:
    return {
        "id": o.id,
        "orderReference": o.order_reference,
        "storybookId": o.storybook_id,
        "title": o.storybook.title if o.storybook else None,
        "bookSize": o.book_size,
        "status": o.status,
        "carrier": o.carrier,
        "trackingNumber": o.tracking_number,
        "trackingUrl": o.tracking_url,
        "errorMessage": o.error_message,
        "createdAt": o.created_at.isoformat() if o.created_at else None,
        "updatedAt": o.updated_at.isoformat() if o.updated_at else None,
    }


@router.get("/print-orders", tags=["Print Orders"])
def list_print_orders(user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = db.scalars(select(PrintOrder).where(PrintOrder.user_id == user.id).order_by(PrintOrder.created_at.desc()))
    return [order_out(o) for o in rows]


@router.get("/print-orders/{order_id}", tags=["Print Orders"])
def get_print_order(order_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    o = db.get(PrintOrder, order_id)
    if o is None or o.user_id != user.id:
        raise HTTPException(status_code=404, detail="Print order not found")
    out = order_out(o)
    out["history"] = [
        {"from": h.from_status, "to": h.to_status, "at": h.created_at.isoformat() if h.created_at else None}
        for h in o.history
    ]
    return out


def _apply_update(db: Session, body: Dict[str, Any]) -> Dict[str, Any]:
    remote = ((body.get("data") or {}).get("order")) or body.get("order") or body
    remote_id = remote.get("id")
    ref = remote.get("merchantReference")
    conds = [c for c in (
        PrintOrder.provider_order_id == remote_id if remote_id else None,
        PrintOrder.order_reference == ref if ref else None,
    ) if c is not None]
    order = db.scalars(select(PrintOrder).where(or_(*conds))).first() if conds else None
    if order is None:
        logger.warning("⚠️ fulfillment webhook for unknown order id=%s ref=%s", remote_id, ref)
        return {"received": True, "matched": False}
    apply_fulfillment_update(db, order, remote)
    logger.info("🪝 fulfillment update %s -> %s", order.order_reference, order.status)
    return {"received": True, "matched": True, "status": order.status}


@router.post("/webhook/prodigi", tags=["Webhooks"])
async def prodigi_webhook(request: Request, db: Session = Depends(get_db)):
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return await run_in_threadpool(_apply_update, db, body)
