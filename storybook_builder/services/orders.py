"""
Print order lifecycle.

    creating -> pending -> in_progress -> shipped -> delivered
                  any non-terminal state -> cancelled

Forward moves may skip steps (the fulfillment webhook can report "shipped"
for an order we last saw as "pending"); moves backwards never happen.
Every change appends an OrderStatusHistory row.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..models import OrderStatusHistory, PrintOrder
from . import fulfillment, storage
from .print_pdf import generate_print_pdf

logger = logging.getLogger(__name__)

PIPELINE = ("creating", "pending", "in_progress", "shipped", "delivered")
CANCELLED = "cancelled"
STATUSES = PIPELINE + (CANCELLED,)
TERMINAL = {"delivered", CANCELLED}


class InvalidTransition(ValueError):
    pass


def can_transition(current: str, target: str) -> bool:
    if target not in STATUSES or current in TERMINAL or current == target:
        return False
    if target == CANCELLED:
        return True
    return current in PIPELINE and PIPELINE.index(target) > PIPELINE.index(current)


def transition(
    db: Session,
    order: PrintOrder,
    to_status: str,
    changed_by: str = "system",
    reason: Optional[str] = None,
) -> PrintOrder:
    """Validate and apply a status change; caller commits."""
    if not can_transition(order.status, to_status):
        raise InvalidTransition(f"cannot move order {order.order_reference} from {order.status} to {to_status}")
    db.add(OrderStatusHistory(
        print_order_id=order.id,
        from_status=order.status,
        to_status=to_status,
        changed_by=changed_by,
        reason=reason,
    ))
    logger.info("🔁 Order %s %s -> %s by %s", order.order_reference, order.status, to_status, changed_by)
    order.status = to_status
    return order


def recipient_for(order: PrintOrder) -> Dict[str, Any]:
    return {
        "name": order.ship_name or (order.user.display_name if order.user else "Customer"),
        "email": order.user.email if order.user else None,
        "address": {
            "line1": order.ship_line1 or "",
            "line2": order.ship_line2,
            "postalOrZipCode": order.ship_postal_code or "",
            "countryCode": order.ship_country or "US",
            "townOrCity": order.ship_city or "",
            "stateOrCounty": order.ship_state,
        },
    }


def submit_print_order(
    db: Session,
    order: PrintOrder,
    render: Callable[..., bytes] = generate_print_pdf,
) -> PrintOrder:
    """Render the press file, hand it to the print partner, move creating -> pending.

    On failure the order stays in ``creating`` with ``error_message`` set.
    """
    try:
        pdf = render(order.storybook, order.book_size)
        pdf_url = storage.absolute_url(storage.put_pdf(pdf))
        remote = fulfillment.create_order(order.order_reference, recipient_for(order), order.book_size, pdf_url)
    except Exception as e:
        order.error_message = f"Submission failed: {e}"
        db.commit()
        logger.warning("⚠️ print order %s not submitted: %s", order.order_reference, e)
        return order
    order.provider_order_id = remote.get("id")
    order.error_message = None
    transition(db, order, "pending", reason="submitted to print partner")
    db.commit()
    return order


def apply_fulfillment_update(db: Session, order: PrintOrder, remote: Dict[str, Any]) -> PrintOrder:
    """Store the partner's order snapshot and follow its stage where that moves us forward."""
    order.webhook_data = remote
    order.provider_order_id = order.provider_order_id or remote.get("id")
    for k, v in fulfillment.first_shipment(remote).items():
        if v:
            setattr(order, k, v)
    target = fulfillment.status_for_stage((remote.get("status") or {}).get("stage"))
    if target and can_transition(order.status, target):
        transition(db, order, target, changed_by="fulfillment", reason="fulfillment webhook")
    db.commit()
    return order
