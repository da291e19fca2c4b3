from datetime import datetime, timezone

import pytest

from modernpos.extensions import db
from modernpos.models import ActivityEvent, Cart, Customer, Discount, InventoryMovement, Product, Shift, Transaction
from modernpos.services import cart_service, checkout_service, inventory_service, shift_service
from modernpos.services.checkout_service import CheckoutError, validate_payments

from conftest import make_discount


def _stock(product_id):
    return db.session.get(Product, product_id).stock


def _cart_with(product, quantity=2, **kwargs):
    cart = cart_service.create_cart(**kwargs)
    assert cart_service.add_to_cart(cart.id, product.id, quantity=quantity).ok
    return cart


def test_split_tender_covers_the_total(product):
    cart = _cart_with(product, cashier="alex")

    txn = checkout_service.complete_checkout(cart.id, [
        {"tender_type": "card", "amount_cents": 1000},
        {"tender_type": "cash", "amount_cents": 1160},
    ])

    assert txn.total_cents == 2160
    assert txn.total_paid_cents == 2160
    assert txn.change_due_cents == 0
    assert [(p.tender_type, p.amount_cents) for p in txn.payments] == [("card", 1000), ("cash", 1160)]
    assert txn.document_number.startswith("TXN-")


def test_cash_overpayment_becomes_change(product):
    cart = _cart_with(product)

    txn = checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 3000}])

    assert txn.total_paid_cents == 3000
    assert txn.change_due_cents == 840


@pytest.mark.parametrize("payments", [
    [{"tender_type": "card", "amount_cents": 2200}],
    [{"tender_type": "cash", "amount_cents": 2000}],
    [{"tender_type": "cash", "amount_cents": 0}],
    [{"tender_type": "voucher", "amount_cents": 2160}],
    [],
])
def test_bad_payments_roll_everything_back(product, payments):
    cart = _cart_with(product)

    with pytest.raises(CheckoutError):
        checkout_service.complete_checkout(cart.id, payments)

    assert db.session.get(Cart, cart.id).status == "open"
    assert _stock(product.id) == 10
    assert db.session.query(Transaction).count() == 0
    assert db.session.query(InventoryMovement).filter_by(type="out").count() == 0


def test_validate_payments_rejects_tendering_after_the_total_is_covered():
    with pytest.raises(CheckoutError):
        validate_payments([
            {"tender_type": "cash", "amount_cents": 500},
            {"tender_type": "card", "amount_cents": 100},
        ], 500)


def test_checkout_applies_every_side_effect(product, second_product, customer):
    discount = make_discount(code="SAVE20", usage_limit=5)
    shift = shift_service.start_shift("alex", starting_cash_cents=10000)
    cart = _cart_with(product, cashier="alex", customer_id=customer.id)
    cart_service.add_to_cart(cart.id, second_product.id, quantity=1)
    assert cart_service.apply_discount_code(cart.id, "SAVE20").ok

    txn = checkout_service.complete_checkout(cart.id, [{"tender_type": "card", "amount_cents": 2160}])

    assert (txn.subtotal_cents, txn.discount_cents, txn.tax_cents, txn.total_cents) == (2500, 500, 160, 2160)
    assert txn.discount_code == "SAVE20"
    assert txn.shift_id == shift.id
    assert [(l.product_id, l.quantity, l.line_total_cents) for l in txn.lines] == [
        (product.id, 2, 2000),
        (second_product.id, 1, 500),
    ]

    assert _stock(product.id) == 8
    assert _stock(second_product.id) == 19
    sale_movements = db.session.query(InventoryMovement).filter_by(reference=txn.document_number).all()
    assert sorted(m.quantity for m in sale_movements) == [1, 2]
    assert inventory_service.verify_stock_projection() == []

    buyer = db.session.get(Customer, customer.id)
    assert buyer.loyalty_points == 21
    assert buyer.total_spent_cents == 2160
    assert buyer.total_visits == 1
    assert buyer.last_visit_at is not None

    assert db.session.get(Discount, discount.id).usage_count == 1

    credited = db.session.get(Shift, shift.id)
    assert credited.total_sales_cents == 2160
    assert credited.total_transactions == 1

    assert db.session.get(Cart, cart.id).status == "checked_out"
    assert db.session.query(ActivityEvent).filter_by(action="Sale Completed").count() == 1


def test_receipt_is_not_changed_by_later_price_edits(product):
    cart = _cart_with(product)
    txn = checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 2160}])

    db.session.get(Product, product.id).price_cents = 9999
    db.session.commit()

    stored = checkout_service.get_transaction(txn.id)
    assert stored.lines[0].unit_price_cents == 1000
    assert stored.total_cents == 2160


def test_discount_that_stopped_validating_blocks_checkout(product):
    discount = make_discount(code="SAVE20")
    cart = _cart_with(product)
    cart_service.apply_discount_code(cart.id, "SAVE20")

    db.session.get(Discount, discount.id).is_active = False
    db.session.commit()

    with pytest.raises(CheckoutError) as exc:
        checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 5000}])

    assert exc.value.details["code"] == "inactive"
    assert db.session.get(Discount, discount.id).usage_count == 0
    assert _stock(product.id) == 10


def test_stock_is_rechecked_at_checkout(product):
    cart = _cart_with(product, quantity=5)
    inventory_service.apply_manual_removal(product.id, 8, "Damaged")

    with pytest.raises(CheckoutError) as exc:
        checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 10000}])

    assert exc.value.details["items"][0]["on_hand"] == 2
    assert _stock(product.id) == 2
    assert db.session.query(Transaction).count() == 0


def test_failed_checkout_does_not_consume_a_transaction_number(product):
    cart = _cart_with(product)
    with pytest.raises(CheckoutError):
        checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 1}])

    txn = checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 2160}])
    assert txn.document_number == "TXN-0001"


def test_empty_or_closed_carts_cannot_check_out(product):
    empty = cart_service.create_cart()
    with pytest.raises(CheckoutError):
        checkout_service.complete_checkout(empty.id, [{"tender_type": "cash", "amount_cents": 100}])

    cart = _cart_with(product)
    checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 2160}])
    with pytest.raises(CheckoutError):
        checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 2160}])


def test_list_transactions_filters_by_customer(product, customer):
    walk_in = _cart_with(product, quantity=1)
    checkout_service.complete_checkout(walk_in.id, [{"tender_type": "cash", "amount_cents": 1080}])
    known = _cart_with(product, quantity=1, customer_id=customer.id)
    txn = checkout_service.complete_checkout(known.id, [{"tender_type": "cash", "amount_cents": 1080}])

    assert [t.id for t in checkout_service.list_transactions(customer_id=customer.id)] == [txn.id]
    assert len(checkout_service.list_transactions()) == 2


def test_checkout_accepts_a_timezone_aware_clock(product):
    make_discount(code="SAVE20")
    cart = _cart_with(product)
    assert cart_service.apply_discount_code(cart.id, "SAVE20").ok

    txn = checkout_service.complete_checkout(
        cart.id,
        [{"tender_type": "cash", "amount_cents": 5000}],
        now=datetime.now(timezone.utc),
    )

    assert txn.discount_code == "SAVE20"
    assert txn.occurred_at.tzinfo is None
