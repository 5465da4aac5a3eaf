import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from storybook_builder.models import CartItem, OrderStatusHistory, PrintOrder, Purchase
from storybook_builder.services import cart, fulfillment, orders, purchases
from storybook_builder.services.order_reference import is_valid_order_reference

SHIPPING = {"name": "Ada Lovelace", "line1": "1 Analytical Way", "city": "London",
            "postal_code": "N1 9GU", "country": "GB"}


# ---------- cart ----------

def test_cart_add_and_dedupe(db, user, storybook):
    a = cart.add_item(db, user.id, storybook.id, "digital")
    b = cart.add_item(db, user.id, storybook.id, "digital")
    assert a.id == b.id
    assert len(cart.list_items(db, user.id)) == 1
    assert cart.cart_total(cart.list_items(db, user.id)) == 399


def test_cart_print_replaces_digital(db, user, storybook):
    cart.add_item(db, user.id, storybook.id, "digital")
    item = cart.add_item(db, user.id, storybook.id, "print", "8x10")
    items = cart.list_items(db, user.id)
    assert [i.id for i in items] == [item.id]
    assert item.book_size == "8x10"


def test_cart_digital_rejected_when_print_present(db, user, storybook):
    cart.add_item(db, user.id, storybook.id, "print")
    with pytest.raises(cart.CartConflict):
        cart.add_item(db, user.id, storybook.id, "digital")


def test_cart_print_sizes_are_separate_lines(db, user, storybook):
    cart.add_item(db, user.id, storybook.id, "print", "6x9")
    cart.add_item(db, user.id, storybook.id, "print", "8x10")
    assert len(cart.list_items(db, user.id)) == 2


def test_cart_rejects_unknown_size_and_type(db, user, storybook):
    with pytest.raises(cart.CartConflict):
        cart.add_item(db, user.id, storybook.id, "print", "12x12")
    with pytest.raises(cart.CartConflict):
        cart.add_item(db, user.id, storybook.id, "poster")


def test_cart_unique_constraint(db, user, storybook):
    db.add(CartItem(user_id=user.id, storybook_id=storybook.id, product_type="digital", book_size=""))
    db.commit()
    db.add(CartItem(user_id=user.id, storybook_id=storybook.id, product_type="digital", book_size=""))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_cart_print_still_replaces_digital_after_losing_a_race(db, user, storybook, monkeypatch):
    db.add_all([
        CartItem(user_id=user.id, storybook_id=storybook.id, product_type="digital", book_size=""),
        CartItem(user_id=user.id, storybook_id=storybook.id, product_type="print", book_size="6x9"),
    ])
    db.commit()
    real_list = cart.list_items
    # the print line landed after this request read the cart
    monkeypatch.setattr(cart, "list_items",
                        lambda db, user_id: [i for i in real_list(db, user_id) if i.product_type == "digital"])

    item = cart.add_item(db, user.id, storybook.id, "print", "6x9")

    assert item.product_type == "print"
    rows = db.scalars(select(CartItem).where(CartItem.user_id == user.id)).all()
    assert [(r.product_type, r.book_size) for r in rows] == [("print", "6x9")]


def test_cart_remove_and_clear(db, user, other_user, make_book, storybook):
    other_book = make_book(user, title="Second")
    item = cart.add_item(db, user.id, storybook.id, "digital")
    cart.add_item(db, user.id, other_book.id, "digital")
    assert not cart.remove_item(db, other_user.id, item.id)
    assert cart.remove_item(db, user.id, item.id)
    assert cart.clear(db, user.id) == 1
    assert cart.list_items(db, user.id) == []


# ---------- purchases ----------

def test_duplicate_purchase_insert_fails(db, user, storybook):
    row = dict(user_id=user.id, storybook_id=storybook.id, type="digital", price=399, payment_intent_id="pi_1")
    db.add(Purchase(**row))
    db.commit()
    db.add(Purchase(**row))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_record_purchases_is_idempotent(db, user, storybook):
    items = [{"storybookId": storybook.id, "type": "digital"}]
    first = purchases.record_purchases(db, user.id, "pi_1", items)
    second = purchases.record_purchases(db, user.id, "pi_1", items)
    assert len(first.created) == 1
    assert second.created == []
    assert second.purchases[0].id == first.purchases[0].id
    assert db.scalars(select(Purchase)).all() == first.purchases


def test_record_print_purchase_grants_digital_and_opens_order(db, user, storybook):
    result = purchases.record_purchases(
        db, user.id, "pi_2", [{"storybookId": storybook.id, "type": "print", "bookSize": "8x10"}], SHIPPING,
    )
    types = sorted((p.type, p.price) for p in result.purchases)
    assert types == [("digital", 0), ("print", 2499)]

    order = result.print_orders[0]
    assert order.status == "creating"
    assert order.book_size == "8x10"
    assert order.ship_city == "London"
    assert is_valid_order_reference(order.order_reference)
    history = db.scalars(select(OrderStatusHistory).where(OrderStatusHistory.print_order_id == order.id)).all()
    assert [h.to_status for h in history] == ["creating"]
    assert purchases.owns_digital(db, user.id, storybook.id)


def test_record_purchases_rejects_bad_items(db, user, storybook):
    with pytest.raises(ValueError):
        purchases.record_purchases(db, user.id, "pi_3", [{"storybookId": storybook.id, "type": "poster"}])
    with pytest.raises(ValueError):
        purchases.record_purchases(db, user.id, "pi_3", [{"storybookId": "nope", "type": "digital"}])


def test_record_purchases_checks_every_item_before_writing(db, user, storybook):
    items = [{"storybookId": storybook.id, "type": "print"}, {"storybookId": "nope", "type": "digital"}]
    with pytest.raises(ValueError):
        purchases.record_purchases(db, user.id, "pi_partial", items, SHIPPING)
    assert db.scalars(select(Purchase).where(Purchase.payment_intent_id == "pi_partial")).all() == []
    assert db.scalars(select(PrintOrder)).all() == []


def test_invoice_for_skips_free_digital(db, user, storybook):
    result = purchases.record_purchases(db, user.id, "pi_abcdefgh12", [{"storybookId": storybook.id, "type": "print"}])
    inv = purchases.invoice_for(result.purchases, "pi_abcdefgh12")
    assert [(i.title, i.size, i.price) for i in inv.items] == [("The Fox and the Lantern", "print-6x9", 2499)]
    assert inv.total == 2499


def test_complete_checkout_clears_cart_and_submits(db, user, storybook, monkeypatch):
    sent = []
    monkeypatch.setattr(purchases, "generate_reader_pdf", lambda book: b"%PDF-reader")
    monkeypatch.setattr(fulfillment, "create_order",
                        lambda ref, recipient, size, url: sent.append((ref, recipient, size, url)) or {"id": "ord_99"})
    cart.add_item(db, user.id, storybook.id, "print")

    result = purchases.complete_checkout(db, user, "pi_4", [{"storybookId": storybook.id, "type": "print"}], SHIPPING)

    assert cart.list_items(db, user.id) == []
    order = result.print_orders[0]
    assert order.status == "pending"
    assert order.provider_order_id == "ord_99"
    ref, recipient, size, url = sent[0]
    assert ref == order.order_reference
    assert recipient["address"]["countryCode"] == "GB"
    assert url.endswith(".pdf")


def test_complete_checkout_keeps_order_when_submission_fails(db, user, storybook, monkeypatch):
    monkeypatch.setattr(purchases, "generate_reader_pdf", lambda book: b"%PDF-reader")
    # no PRODIGI_API_KEY in tests, so the real client refuses
    result = purchases.complete_checkout(db, user, "pi_5", [{"storybookId": storybook.id, "type": "print"}], SHIPPING)
    order = result.print_orders[0]
    assert order.status == "creating"
    assert "PRODIGI_API_KEY" in order.error_message


# ---------- print order status machine ----------

@pytest.mark.parametrize("current,target,ok", [
    ("creating", "pending", True),
    ("pending", "in_progress", True),
    ("pending", "shipped", True),
    ("shipped", "delivered", True),
    ("in_progress", "cancelled", True),
    ("creating", "cancelled", True),
    ("shipped", "pending", False),
    ("delivered", "cancelled", False),
    ("cancelled", "pending", False),
    ("pending", "pending", False),
    ("pending", "lost", False),
])
def test_can_transition(current, target, ok):
    assert orders.can_transition(current, target) is ok


def _print_order(db, user, storybook, intent="pi_po"):
    result = purchases.record_purchases(db, user.id, intent, [{"storybookId": storybook.id, "type": "print"}], SHIPPING)
    return result.print_orders[0]


def test_transition_appends_history(db, user, storybook):
    order = _print_order(db, user, storybook)
    orders.transition(db, order, "pending", changed_by="admin:1", reason="manual")
    db.commit()
    rows = db.scalars(select(OrderStatusHistory).where(OrderStatusHistory.print_order_id == order.id)
                      .order_by(OrderStatusHistory.id)).all()
    assert [(r.from_status, r.to_status) for r in rows] == [(None, "creating"), ("creating", "pending")]
    assert rows[-1].changed_by == "admin:1"
    with pytest.raises(orders.InvalidTransition):
        orders.transition(db, order, "creating")


def test_fulfillment_update_follows_stage_and_tracking(db, user, storybook):
    order = _print_order(db, user, storybook)
    remote = {
        "id": "ord_1",
        "status": {"stage": "Complete", "details": {"downloadAssets": "Complete"}},
        "shipments": [{"carrier": {"name": "Royal Mail"},
                       "tracking": {"number": "RM123", "url": "https://track.example/RM123"}}],
    }
    orders.apply_fulfillment_update(db, order, remote)
    assert order.status == "shipped"
    assert order.carrier == "Royal Mail"
    assert order.tracking_number == "RM123"
    assert order.webhook_data == remote
    assert order.provider_order_id == "ord_1"


def test_fulfillment_update_never_moves_backwards(db, user, storybook):
    order = _print_order(db, user, storybook)
    orders.transition(db, order, "shipped")
    db.commit()
    orders.apply_fulfillment_update(db, order, {"id": "ord_1", "status": {"stage": "InProgress"}})
    assert order.status == "shipped"


def test_product_sku_and_stage_mapping():
    assert fulfillment.product_sku("6x9") == "BOOK-FE-A5-P-HARD-G"
    assert fulfillment.product_sku("8.5x11") == "BOOK-FE-A4-P-HARD-G"
    assert fulfillment.product_sku("8.5x8.5") == "BOOK-FE-A5-S-HARD-G"
    assert fulfillment.status_for_stage("InProgress") == "in_progress"
    assert fulfillment.status_for_stage("Cancelled") == "cancelled"
    assert fulfillment.status_for_stage(None) is None
    assert fulfillment.first_shipment({"shipments": []}) == {}


def test_print_order_reference_is_unique(db, user, storybook, make_book):
    a = _print_order(db, user, storybook, "pi_a")
    b = _print_order(db, user, make_book(user, title="Other"), "pi_b")
    assert a.order_reference != b.order_reference
    assert len(db.scalars(select(PrintOrder)).all()) == 2


def test_cancel_order_posts_cancel_action(monkeypatch):
    sent = []

    class Reply:
        status_code = 200
        content = b"{}"

        def json(self):
            return {}

    monkeypatch.setattr(fulfillment, "PRODIGI_API_KEY", "test-key")
    monkeypatch.setattr(fulfillment.requests, "request",
                        lambda method, url, **kw: sent.append((method, url, kw["headers"]["X-API-Key"])) or Reply())

    fulfillment.cancel_order("ord_77")

    assert sent == [("POST", f"{fulfillment.PRODIGI_BASE_URL}/orders/ord_77/actions/cancel", "test-key")]


def test_cancel_order_requires_key():
    with pytest.raises(fulfillment.FulfillmentError):
        fulfillment.cancel_order("ord_77")
