import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, constr
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import current_admin
from ..models import AdminAuditLog, AdminUser, OrderNote, PrintOrder
from ..services.orders import STATUSES, InvalidTransition, transition
from ..services.stuck_orders import check_and_cancel_stuck_orders
from .print_orders import order_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


class StatusUpdateRequest(BaseModel):
    status: str
    reason: Optional[constr(max_length=500)] = None


class NoteRequest(BaseModel):
    body: constr(strip_whitespace=True, min_length=1, max_length=5000)


def audit(
    db: Session,
    admin: AdminUser,
    action: str,
    request: Request,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> None:
    db.add(AdminAuditLog(
        admin_id=admin.id, action=action, resource_type=resource_type, resource_id=resource_id,
        changes=changes, ip_address=request.client.host if request.client else None,
    ))


def _order(db: Session, order_id: str) -> PrintOrder:
    o = db.get(PrintOrder, order_id)
    if o is None:
        raise HTTPException(status_code=404, detail="Print order not found")
    return o


def _detail(o: PrintOrder) -> Dict[str, Any]:
    out = order_out(o)
    out.update({
        "providerOrderId": o.provider_order_id,
        "customer": {"id": o.user_id, "email": o.user.email if o.user else None,
                     "name": o.user.display_name if o.user else None},
        "shipping": {k: getattr(o, f"ship_{k}") for k in
                     ("name", "line1", "line2", "city", "state", "postal_code", "country")},
        "webhookData": o.webhook_data,
        "notes": [{"id": n.id, "adminId": n.admin_id, "body": n.body,
                   "createdAt": n.created_at.isoformat() if n.created_at else None} for n in o.notes],
        "history": [{"from": h.from_status, "to": h.to_status, "changedBy": h.changed_by, "reason": h.reason,
                     "createdAt": h.created_at.isoformat() if h.created_at else None} for h in o.history],
    })
    return out


@router.get("/orders")
def list_orders(
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin: AdminUser = Depends(current_admin),
    db: Session = Depends(get_db),
):
    stmt = select(PrintOrder).order_by(PrintOrder.created_at.desc()).limit(limit)
    if status:
        if status not in STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        stmt = stmt.where(PrintOrder.status == status)
    return [order_out(o) for o in db.scalars(stmt)]


@router.get("/orders/{order_id}")
def get_order(order_id: str, admin: AdminUser = Depends(current_admin), db: Session = Depends(get_db)):
    return _detail(_order(db, order_id))


@router.patch("/orders/{order_id}/status")
def update_status(
    order_id: str,
    req: StatusUpdateRequest,
    request: Request,
    admin: AdminUser = Depends(current_admin),
    db: Session = Depends(get_db),
):
    o = _order(db, order_id)
    before = o.status
    try:
        transition(db, o, req.status, changed_by=f"admin:{admin.id}", reason=req.reason)
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    audit(db, admin, "update_order_status", request, "print_order", o.id, {"from": before, "to": req.status})
    db.commit()
    return _detail(o)


@router.post("/orders/{order_id}/notes")
def add_note(
    order_id: str,
    req: NoteRequest,
    request: Request,
    admin: AdminUser = Depends(current_admin),
    db: Session = Depends(get_db),
):
    o = _order(db, order_id)
    note = OrderNote(print_order_id=o.id, admin_id=admin.id, body=req.body)
    db.add(note)
    audit(db, admin, "add_order_note", request, "print_order", o.id, {"note": req.body[:200]})
    db.commit()
    return {"id": note.id, "body": note.body, "createdAt": note.created_at.isoformat()}


@router.post("/stuck-orders/check")
def run_stuck_order_check(request: Request, admin: AdminUser = Depends(current_admin), db: Session = Depends(get_db)):
    result = check_and_cancel_stuck_orders(db)
    audit(db, admin, "check_stuck_orders", request, "print_order", None,
          {k: v for k, v in result.items() if k != "errors"})
    db.commit()
    return result


@router.get("/audit-logs")
def audit_logs(
    limit: int = Query(100, ge=1, le=500),
    admin: AdminUser = Depends(current_admin),
    db: Session = Depends(get_db),
):
    rows = db.scalars(select(AdminAuditLog).order_by(AdminAuditLog.created_at.desc()).limit(limit))
    return [{
        "id": r.id, "adminId": r.admin_id, "action": r.action, "resourceType": r.resource_type,
        "resourceId": r.resource_id, "changes": r.changes, "ipAddress": r.ip_address,
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    } for r in rows]
