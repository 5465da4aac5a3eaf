"""
Hourly sweep for print orders the partner never picked up.

An order is stuck when it is older than STUCK_ORDER_MAX_AGE_MINUTES, not
finished, and the partner either never reported back or still reports
``downloadAssets: NotStarted``. Stuck orders are cancelled, refunded when
the payment went through, and the customer is told.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import STUCK_ORDER_MAX_AGE_MINUTES
from ..models import PrintOrder, utcnow
from . import fulfillment, mailer, payments
from .orders import TERMINAL, transition

logger = logging.getLogger(__name__)

CANCEL_MESSAGE = "Order cancelled - print partner could not download print files. PDF URLs may have expired."


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def is_stuck(order: PrintOrder, now: datetime, max_age: timedelta) -> bool:
    if order.status in TERMINAL:
        return False
    if order.created_at is None or _aware(order.created_at) > now - max_age:
        return False
    if not order.webhook_data:
        return True
    details = ((order.webhook_data.get("status") or {}).get("details") or {})
    return details.get("downloadAssets") == "NotStarted"


def _cancel_one(db: Session, order: PrintOrder, result: Dict[str, Any]) -> None:
    purchase, user = order.purchase, order.user

    order.error_message = CANCEL_MESSAGE
    transition(db, order, "cancelled", changed_by="system", reason="stuck order auto-cancelled")
    db.commit()
    result["cancelled"] += 1

    if order.provider_order_id:
        try:
            fulfillment.cancel_order(order.provider_order_id)
        except Exception as e:
            result["errors"].append(f"Partner cancel failed for {order.provider_order_id}: {e}")
            logger.warning("⚠️ partner cancel failed for %s: %s", order.provider_order_id, e)

    intent_id = purchase.payment_intent_id if purchase else None
    if intent_id:
        try:
            pi = payments.retrieve_payment_intent(intent_id)
            if pi["status"] == "succeeded" and pi["amount_received"] > 0:
                # only this order's line; other items on the same intent stay paid
                payments.refund(intent_id, {
                    "print_order_id": order.id,
                    "purchase_id": purchase.id,
                    "reason": "stuck_order_auto_cancelled",
                }, amount=min(purchase.price, pi["amount_received"]))
                purchase.status = "refunded"
                db.commit()
                result["refunded"] += 1
            else:
                logger.info("⏭️ intent %s not refundable: %s", intent_id, pi["status"])
        except Exception as e:
            result["errors"].append(f"Refund failed for {intent_id}: {e}")
            logger.warning("⚠️ refund failed for %s: %s", intent_id, e)

    try:
        mailer.send_order_cancelled_email(
            user.email or "unknown@email.com",
            user.display_name,
            order.storybook.title if order.storybook else "your storybook",
            order.order_reference,
            intent_id or "N/A",
        )
        result["emailsSent"] += 1
    except Exception as e:
        result["errors"].append(f"Email failed for {user.email}: {e}")
        logger.warning("⚠️ cancellation email failed for %s: %s", user.email, e)


def check_and_cancel_stuck_orders(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = _aware(now or utcnow())
    max_age = timedelta(minutes=STUCK_ORDER_MAX_AGE_MINUTES)
    result: Dict[str, Any] = {"checked": 0, "cancelled": 0, "refunded": 0, "emailsSent": 0, "errors": []}

    logger.info("🕐 Stuck order check starting")
    orders: List[PrintOrder] = list(db.scalars(
        select(PrintOrder).where(PrintOrder.status.not_in(TERMINAL)).order_by(PrintOrder.created_at)
    ))
    result["checked"] = len(orders)
    stuck = [o for o in orders if is_stuck(o, now, max_age)]
    logger.info("🕐 Found %d stuck order(s) of %d", len(stuck), len(orders))

    for order in stuck:
        try:
            _cancel_one(db, order, result)
        except Exception as e:
            db.rollback()
            result["errors"].append(f"Failed to process stuck order {order.id}: {e}")
            logger.warning("⚠️ stuck order %s: %s", order.id, e)

    logger.info("🕐 Stuck order check done: %s", result)
    return result
