import pytest

from modernpos.extensions import db
from modernpos.models import Cart, Discount, InventoryMovement
from modernpos.services import cart_service, checkout_service, inventory_service
from modernpos.services.cart_service import CartError

from conftest import make_discount, make_product, variant_stock


def _lines(cart_id):
    return [(l.product_id, l.variant_id, l.quantity) for l in db.session.get(Cart, cart_id).lines]


def test_adding_the_same_product_merges_into_one_line(product):
    cart = cart_service.create_cart(cashier="alex")

    assert cart_service.add_to_cart(cart.id, product.id, quantity=2).ok
    outcome = cart_service.add_to_cart(cart.id, product.id, quantity=3)

    assert outcome.ok
    assert outcome.details["quantity"] == 5
    assert _lines(cart.id) == [(product.id, None, 5)]


def test_insufficient_stock_leaves_the_cart_untouched(product):
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id, quantity=8)

    outcome = cart_service.add_to_cart(cart.id, product.id, quantity=3)

    assert not outcome.ok
    assert outcome.code == "insufficient_stock"
    assert outcome.details["requested_quantity"] == 11
    assert outcome.details["available"] == 10
    assert _lines(cart.id) == [(product.id, None, 8)]


def test_rejection_codes(db_session, variant_product):
    empty = make_product(sku="EMPTY", opening_stock=0)
    cart = cart_service.create_cart()

    assert cart_service.add_to_cart(cart.id, 999999).code == "product_not_found"
    assert cart_service.add_to_cart(cart.id, empty.id).code == "out_of_stock"
    assert cart_service.add_to_cart(cart.id, variant_product.id, variant_id=999999).code == "variant_not_found"
    assert _lines(cart.id) == []


def test_variant_stock_governs_variant_lines(variant_product, large_variant):
    cart = cart_service.create_cart()

    assert cart_service.add_to_cart(cart.id, variant_product.id, large_variant.id, 1).ok
    outcome = cart_service.add_to_cart(cart.id, variant_product.id, large_variant.id, 1)

    assert outcome.code == "insufficient_stock"
    assert outcome.details["variant_id"] == large_variant.id


def test_last_variant_unit_sells_then_blocks_the_next_cart(variant_product, large_variant):
    cart = cart_service.create_cart(cashier="alex")
    assert cart_service.add_to_cart(cart.id, variant_product.id, large_variant.id, 1).ok

    txn = checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 2000}])

    assert txn.total_cents == 1700 + 136
    assert variant_stock(large_variant.id) == 0
    movements_before = db.session.query(InventoryMovement).count()

    next_cart = cart_service.create_cart(cashier="alex")
    outcome = cart_service.add_to_cart(next_cart.id, variant_product.id, large_variant.id, 1)

    assert not outcome.ok
    assert outcome.code == "variant_out_of_stock"
    assert _lines(next_cart.id) == []
    assert db.session.query(InventoryMovement).count() == movements_before


def test_update_quantity_to_zero_removes_the_line(product, second_product):
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id, quantity=2)
    cart_service.add_to_cart(cart.id, second_product.id, quantity=1)

    outcome = cart_service.update_quantity(cart.id, product.id, None, 0)

    assert outcome.ok and outcome.details["removed"] is True
    assert _lines(cart.id) == [(second_product.id, None, 1)]


def test_update_quantity_of_missing_line_is_a_no_op(product):
    cart = cart_service.create_cart()

    outcome = cart_service.update_quantity(cart.id, product.id, None, 4)

    assert outcome.ok
    assert outcome.details["changed"] is False
    assert _lines(cart.id) == []


def test_update_quantity_checks_stock(product):
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id, quantity=1)

    assert cart_service.update_quantity(cart.id, product.id, None, 11).code == "insufficient_stock"
    assert cart_service.update_quantity(cart.id, product.id, None, 10).ok
    assert _lines(cart.id) == [(product.id, None, 10)]


def test_item_discount_is_priced_into_totals(product):
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id, quantity=2)

    cart_service.set_item_discount(cart.id, product.id, None, "percentage", 5000)
    totals = cart_service.cart_totals(cart.id)

    assert totals.subtotal_cents == 1000
    assert totals.tax_cents == 80

    cart_service.clear_item_discount(cart.id, product.id)
    assert cart_service.cart_totals(cart.id).subtotal_cents == 2000


def test_item_discount_rules(product):
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id)

    with pytest.raises(CartError):
        cart_service.set_item_discount(cart.id, product.id, None, "percentage", 10001)
    with pytest.raises(CartError):
        cart_service.set_item_discount(cart.id, product.id, None, "bogo", 100)


def test_applying_a_code_does_not_burn_usage(product):
    discount = make_discount(code="SAVE20", usage_limit=1)
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id, quantity=2)

    outcome = cart_service.apply_discount_code(cart.id, "save20")

    assert outcome.ok
    assert outcome.details["discount_cents"] == 400
    assert db.session.get(Discount, discount.id).usage_count == 0
    assert cart_service.cart_totals(cart.id).total_cents == 1600 + 128


def test_rejected_code_is_not_attached(product):
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id)

    outcome = cart_service.apply_discount_code(cart.id, "NOPE")

    assert outcome.code == "not_found"
    assert db.session.get(Cart, cart.id).discount_id is None


def test_totals_drop_a_discount_that_no_longer_validates(product):
    make_discount(code="BIG", discount_type="fixed", discount_value=500, min_purchase_cents=2000)
    cart = cart_service.create_cart()
    cart_service.add_to_cart(cart.id, product.id, quantity=2)
    assert cart_service.apply_discount_code(cart.id, "BIG").ok

    cart_service.update_quantity(cart.id, product.id, None, 1)
    totals = cart_service.cart_totals(cart.id)

    assert totals.discount_cents == 0
    assert totals.total_cents == 1080


def test_hold_and_recall(product, customer):
    cart = cart_service.create_cart(cashier="alex", customer_id=customer.id)
    cart_service.add_to_cart(cart.id, product.id, quantity=2)

    held = cart_service.hold_cart(cart.id)
    assert held.status == "held"
    assert [c.id for c in cart_service.list_held_carts()] == [cart.id]

    with pytest.raises(CartError):
        cart_service.add_to_cart(cart.id, product.id)

    recalled = cart_service.recall_held_cart(customer.id, cashier="blair")
    assert recalled.id == cart.id
    assert recalled.status == "open"
    assert recalled.cashier == "blair"
    assert _lines(cart.id) == [(product.id, None, 2)]
    assert cart_service.recall_held_cart(customer.id) is None


def test_newer_hold_replaces_the_older_one(product, customer):
    first = cart_service.create_cart(customer_id=customer.id)
    cart_service.add_to_cart(first.id, product.id)
    cart_service.hold_cart(first.id)
    first_id = first.id

    second = cart_service.create_cart(customer_id=customer.id)
    cart_service.add_to_cart(second.id, product.id, quantity=3)
    cart_service.hold_cart(second.id)

    assert db.session.get(Cart, first_id) is None
    assert [c.id for c in cart_service.list_held_carts()] == [second.id]


def test_hold_needs_a_customer_and_lines(product, customer):
    walk_in = cart_service.create_cart()
    cart_service.add_to_cart(walk_in.id, product.id)
    with pytest.raises(CartError):
        cart_service.hold_cart(walk_in.id)

    empty = cart_service.create_cart(customer_id=customer.id)
    with pytest.raises(CartError):
        cart_service.hold_cart(empty.id)


def test_clear_cart_drops_lines_customer_and_discount(product, customer):
    make_discount(code="SAVE20")
    cart = cart_service.create_cart(customer_id=customer.id)
    cart_service.add_to_cart(cart.id, product.id)
    cart_service.apply_discount_code(cart.id, "SAVE20")

    cleared = cart_service.clear_cart(cart.id)

    assert cleared.lines == []
    assert cleared.customer_id is None
    assert cleared.discount_id is None


def test_sold_out_variant_can_be_restocked_and_sold_again(variant_product, large_variant, supplier):
    cart = cart_service.create_cart(cashier="alex")
    assert cart_service.add_to_cart(cart.id, variant_product.id, large_variant.id, 1).ok
    checkout_service.complete_checkout(cart.id, [{"tender_type": "cash", "amount_cents": 2000}])
    assert variant_stock(large_variant.id) == 0

    inventory_service.apply_receipt_movement(
        supplier.id,
        [{"product_id": variant_product.id, "variant_id": large_variant.id, "quantity": 2, "unit_cost_cents": 700}],
    )

    next_cart = cart_service.create_cart(cashier="alex")
    assert cart_service.add_to_cart(next_cart.id, variant_product.id, large_variant.id, 2).ok
    assert variant_stock(large_variant.id) == 2
