"""
Turning a paid payment intent into purchases and print orders.

Both the client confirmation call and the payment webhook land here, in
either order and possibly more than once, so recording is idempotent: the
unique (payment_intent_id, storybook_id, type) constraint decides what is new.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import PRICES
from ..models import OrderStatusHistory, PrintOrder, Purchase, Storybook, User
from . import cart, mailer
from .book_sizes import DEFAULT_TRIM
from .invoice_pdf import InvoiceData, InvoiceItem, generate_invoice_pdf
from .order_reference import generate_order_reference
from .orders import submit_print_order
from .reader_pdf import generate_reader_pdf

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = ("name", "line1", "line2", "city", "state", "postal_code", "country")


@dataclass
class RecordResult:
    purchases: List[Purchase] = field(default_factory=list)
    created: List[Purchase] = field(default_factory=list)
    print_orders: List[PrintOrder] = field(default_factory=list)


def _existing(db: Session, payment_intent_id: str, storybook_id: str, type_: str) -> Optional[Purchase]:
    return db.scalars(select(Purchase).where(
        Purchase.payment_intent_id == payment_intent_id,
        Purchase.storybook_id == storybook_id,
        Purchase.type == type_,
    )).first()


def _insert_once(db: Session, row: Purchase) -> tuple:
    """Insert ``row``; on a unique violation return the row already stored. -> (purchase, created)"""
    db.add(row)
    try:
        db.commit()
        return row, True
    except IntegrityError:
        db.rollback()
        existing = _existing(db, row.payment_intent_id, row.storybook_id, row.type)
        if existing is None:
            raise
        return existing, False


def _new_print_order(db: Session, purchase: Purchase, shipping: Optional[Dict[str, Any]]) -> PrintOrder:
    shipping = shipping or {}
    for _ in range(5):
        ref = generate_order_reference()
        if not db.scalars(select(PrintOrder.id).where(PrintOrder.order_reference == ref)).first():
            break
    order = PrintOrder(
        order_reference=ref,
        purchase_id=purchase.id,
        user_id=purchase.user_id,
        storybook_id=purchase.storybook_id,
        book_size=purchase.book_size or DEFAULT_TRIM,
        status="creating",
        **{f"ship_{k}": shipping.get(k) for k in SHIPPING_FIELDS},
    )
    db.add(order)
    db.flush()
    db.add(OrderStatusHistory(print_order_id=order.id, from_status=None, to_status="creating", reason="print purchase recorded"))
    db.commit()
    logger.info("🖨️ Print order %s created for purchase %s", ref, purchase.id)
    return order


def _validated(db: Session, items: List[Dict[str, Any]]) -> List[tuple]:
    """Check every item up front so a bad one never leaves a partial order behind."""
    out = []
    for it in items:
        type_ = it.get("type") or it.get("productType")
        storybook_id = it.get("storybookId") or it.get("storybook_id")
        if type_ not in PRICES or not storybook_id:
            raise ValueError(f"invalid purchase item: {it}")
        if db.get(Storybook, storybook_id) is None:
            raise ValueError(f"unknown storybook: {storybook_id}")
        out.append((type_, storybook_id, (it.get("bookSize") or DEFAULT_TRIM) if type_ == "print" else None))
    return out


def record_purchases(
    db: Session,
    user_id: str,
    payment_intent_id: str,
    items: List[Dict[str, Any]],
    shipping: Optional[Dict[str, Any]] = None,
) -> RecordResult:
    """
    ``items``: ``[{"storybookId", "type", "bookSize"?}]``. Prices come from
    the server table. A print purchase also grants a free digital copy and
    opens a print order in ``creating``.
    """
    result = RecordResult()
    for type_, storybook_id, book_size in _validated(db, items):
        purchase, created = _insert_once(db, Purchase(
            user_id=user_id, storybook_id=storybook_id, type=type_, price=PRICES[type_],
            payment_intent_id=payment_intent_id, status="completed", book_size=book_size,
        ))
        result.purchases.append(purchase)
        if not created:
            logger.info("↩️ Purchase already recorded intent=%s book=%s type=%s", payment_intent_id, storybook_id, type_)
            continue
        result.created.append(purchase)

        if type_ == "print":
            digital, _ = _insert_once(db, Purchase(
                user_id=user_id, storybook_id=storybook_id, type="digital", price=0,
                payment_intent_id=payment_intent_id, status="completed",
            ))
            result.purchases.append(digital)
            result.print_orders.append(_new_print_order(db, purchase, shipping))
    return result


def owns_digital(db: Session, user_id: str, storybook_id: str) -> bool:
    return db.scalars(select(Purchase.id).where(
        Purchase.user_id == user_id,
        Purchase.storybook_id == storybook_id,
        Purchase.status == "completed",
    )).first() is not None


def invoice_for(purchases: List[Purchase], payment_intent_id: str) -> InvoiceData:
    paid = [p for p in purchases if p.price > 0] or purchases
    created = min((p.created_at for p in paid), default=None)
    return InvoiceData(
        order_id=payment_intent_id,
        order_date=f"{created:%B} {created.day}, {created.year}" if created else "",
        items=[InvoiceItem(
            title=p.storybook.title if p.storybook else "Storybook",
            size=p.type if p.type == "digital" else f"print-{p.book_size or DEFAULT_TRIM}",
            price=p.price,
        ) for p in paid],
    )


def complete_checkout(
    db: Session,
    user: User,
    payment_intent_id: str,
    items: List[Dict[str, Any]],
    shipping: Optional[Dict[str, Any]] = None,
) -> RecordResult:
    """Record, then the follow-ups: clear the cart, submit print orders, send emails.

    Follow-up failures are logged; the purchases stay recorded.
    """
    result = record_purchases(db, user.id, payment_intent_id, items, shipping)
    if not result.created:
        return result

    cart.clear(db, user.id, [p.storybook_id for p in result.created])
    for order in result.print_orders:
        submit_print_order(db, order)

    if not user.email:
        return result
    try:
        inv = invoice_for([p for p in result.purchases if p.payment_intent_id == payment_intent_id], payment_intent_id)
        mailer.send_invoice_email(user.email, user.display_name, payment_intent_id, generate_invoice_pdf(inv))
    except Exception as e:
        logger.warning("⚠️ invoice email failed for %s: %s", payment_intent_id, e)
    for order in result.print_orders:
        try:
            try:
                reader = generate_reader_pdf(order.storybook)
            except Exception as e:
                logger.warning("⚠️ reader PDF unavailable for %s: %s", order.storybook_id, e)
                reader = None
            mailer.send_print_purchase_email(user.email, user.display_name, order.storybook.title, reader)
        except Exception as e:
            logger.warning("⚠️ print purchase email failed for %s: %s", order.order_reference, e)
    return result
