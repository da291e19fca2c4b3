import pytest

from modernpos.extensions import db
from modernpos.models import ActivityEvent, InventoryMovement, Product
from modernpos.services import inventory_service
from modernpos.services.inventory_service import InventoryError

from conftest import make_product, variant_stock


def _stock(product_id):
    return db.session.get(Product, product_id).stock


def test_opening_stock_is_on_the_ledger(product):
    movements = inventory_service.list_movements(product_id=product.id)

    assert len(movements) == 1
    assert movements[0].type == "in"
    assert movements[0].reason == "Opening Stock"
    assert inventory_service.ledger_quantity(product.id) == product.stock == 10


def test_sale_movement_decrements_stock_and_appends_one_out(product):
    movements = inventory_service.apply_sale_movement(
        [{"product_id": product.id, "variant_id": None, "quantity": 3}],
        "TXN-000001",
        actor="cashier",
    )

    assert _stock(product.id) == 7
    assert len(movements) == 1
    assert movements[0].type == "out"
    assert movements[0].quantity == 3
    assert movements[0].reason == "Sale"
    assert movements[0].reference == "TXN-000001"


def test_sale_of_variant_moves_product_and_variant_stock(variant_product, large_variant):
    movements = inventory_service.apply_sale_movement(
        [{"product_id": variant_product.id, "variant_id": large_variant.id, "quantity": 1}],
        "TXN-000002",
    )

    assert movements[0].reason == "Sale - Large"
    assert movements[0].variant_id == large_variant.id
    assert variant_stock(large_variant.id) == 0
    assert _stock(variant_product.id) == 4


def test_lines_of_the_same_product_add_up(product):
    inventory_service.apply_sale_movement(
        [
            {"product_id": product.id, "quantity": 2},
            {"product_id": product.id, "quantity": 5},
        ],
        "TXN-000003",
    )

    assert _stock(product.id) == 3
    assert len(inventory_service.list_movements(product_id=product.id, movement_type="out")) == 2


def test_return_movement_increments_stock(product):
    movements = inventory_service.apply_return_movement(
        [{"product_id": product.id, "quantity": 4}],
        "Wrong size",
        transaction_ref="TXN-000009",
        actor="manager",
    )

    assert _stock(product.id) == 14
    assert movements[0].type == "return"
    assert movements[0].reason == "Return: Wrong size"
    assert db.session.query(ActivityEvent).filter_by(action="Return Processed").count() == 1


def test_return_requires_a_reason(product):
    with pytest.raises(InventoryError):
        inventory_service.apply_return_movement([{"product_id": product.id, "quantity": 1}], "  ")


def test_receipt_updates_cost_price_to_last_unit_cost(product, supplier):
    movements = inventory_service.apply_receipt_movement(
        supplier.id,
        [{"product_id": product.id, "quantity": 6, "unit_cost_cents": 420}],
    )

    refreshed = db.session.get(Product, product.id)
    assert refreshed.stock == 16
    assert refreshed.cost_price_cents == 420
    assert movements[0].reason == "Stock Receiving"
    assert movements[0].reference.startswith("RCV-")
    assert movements[0].notes == "Received from Northwind Traders"


def test_receipt_with_unknown_product_changes_nothing(product):
    with pytest.raises(InventoryError):
        inventory_service.apply_receipt_movement(
            None,
            [
                {"product_id": product.id, "quantity": 6, "unit_cost_cents": 420},
                {"product_id": 999999, "quantity": 1, "unit_cost_cents": 100},
            ],
        )

    assert _stock(product.id) == 10
    assert db.session.query(InventoryMovement).filter_by(reason="Stock Receiving").count() == 0


def test_manual_removal_reason_carries_unit_label(product):
    movement = inventory_service.apply_manual_removal(
        product.id,
        2,
        "Damaged",
        unit_type="box",
        unit_option="crushed",
        actor="clerk",
    )

    assert movement.reason == "Damaged (box: crushed)"
    assert _stock(product.id) == 8
    assert db.session.query(ActivityEvent).filter_by(action="Stock Removed").count() == 1


def test_manual_removal_cannot_go_below_zero(product):
    with pytest.raises(InventoryError):
        inventory_service.apply_manual_removal(product.id, 11, "Theft")
    assert _stock(product.id) == 10


def test_removal_movements_are_listed_by_removal_type(product):
    inventory_service.create_removal_type(name="Expired")
    inventory_service.apply_manual_removal(product.id, 1, "Expired")
    inventory_service.apply_sale_movement([{"product_id": product.id, "quantity": 1}], "TXN-000010")

    removals = inventory_service.list_removal_movements()
    assert [m.reason for m in removals] == ["Expired"]


def test_stock_adjustment_posts_the_difference(product):
    down = inventory_service.apply_stock_adjustment(product.id, 7, reason="Cycle count")
    assert down.type == "out" and down.quantity == 3
    up = inventory_service.apply_stock_adjustment(product.id, 12)
    assert up.type == "in" and up.quantity == 5 and up.reason == "Stock Adjustment"
    assert inventory_service.apply_stock_adjustment(product.id, 12) is None
    assert _stock(product.id) == 12


def test_projection_matches_ledger_after_mixed_activity(product, second_product, supplier):
    inventory_service.apply_sale_movement([{"product_id": product.id, "quantity": 4}], "TXN-000011")
    inventory_service.apply_return_movement([{"product_id": product.id, "quantity": 1}], "Changed mind")
    inventory_service.apply_receipt_movement(supplier.id, [{"product_id": second_product.id, "quantity": 9}])
    inventory_service.apply_manual_removal(second_product.id, 2, "Damaged")

    assert inventory_service.verify_stock_projection() == []
    assert inventory_service.ledger_quantity(product.id) == 7
    assert inventory_service.ledger_quantity(second_product.id) == 27


def test_verify_reports_stock_written_outside_the_ledger(product):
    db.session.get(Product, product.id).stock = 99
    db.session.commit()

    mismatches = inventory_service.verify_stock_projection()
    assert mismatches == [{"product_id": product.id, "sku": "SKU-1", "stock": 99, "ledger_quantity": 10}]


def test_low_stock_products(db_session):
    low = make_product(sku="LOW", opening_stock=2, min_stock=5)
    make_product(sku="OK", opening_stock=20, min_stock=5)

    assert [p.id for p in inventory_service.low_stock_products()] == [low.id]


def test_removal_type_names_match_whole_reasons_only(product):
    inventory_service.create_removal_type(name="Stock")
    inventory_service.create_removal_type(name="50%_off")
    inventory_service.apply_stock_adjustment(product.id, 9)
    inventory_service.apply_manual_removal(product.id, 1, "Stock", unit_type="box", unit_option="crushed")
    inventory_service.apply_manual_removal(product.id, 1, "50%_off")
    inventory_service.apply_manual_removal(product.id, 1, "500 off")
    inventory_service.apply_manual_removal(product.id, 1, "Stocktake")

    removals = inventory_service.list_removal_movements()

    assert sorted(m.reason for m in removals) == ["50%_off", "Stock (box: crushed)"]


def test_variant_stock_adjustment_moves_variant_and_product(variant_product, large_variant):
    movement = inventory_service.apply_stock_adjustment(
        variant_product.id, 3, reason="Recount", variant_id=large_variant.id,
    )

    assert movement.type == "in" and movement.quantity == 2
    assert movement.variant_id == large_variant.id
    assert movement.reason == "Recount - Large"
    assert variant_stock(large_variant.id) == 3
    assert _stock(variant_product.id) == 7
    assert inventory_service.apply_stock_adjustment(variant_product.id, 3, variant_id=large_variant.id) is None
    assert inventory_service.verify_stock_projection() == []


def test_variant_stock_adjustment_rejects_a_foreign_variant(product, variant_product, large_variant):
    with pytest.raises(InventoryError):
        inventory_service.apply_stock_adjustment(product.id, 5, variant_id=large_variant.id)

    assert variant_stock(large_variant.id) == 1
    assert _stock(product.id) == 10


def test_receipt_naming_a_variant_restocks_it(variant_product, large_variant, supplier):
    movements = inventory_service.apply_receipt_movement(
        supplier.id,
        [{"product_id": variant_product.id, "variant_id": large_variant.id, "quantity": 4, "unit_cost_cents": 700}],
    )

    assert movements[0].variant_id == large_variant.id
    assert movements[0].reason == "Stock Receiving - Large"
    assert variant_stock(large_variant.id) == 5
    assert _stock(variant_product.id) == 9
    assert inventory_service.verify_stock_projection() == []
