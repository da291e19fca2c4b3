import pytest

from modernpos.extensions import db
from modernpos.models import ActivityEvent, InventoryMovement, Product, PurchaseOrder
from modernpos.services import purchase_order_service
from modernpos.services.purchase_order_service import PurchaseOrderError


def _stock(product_id):
    return db.session.get(Product, product_id).stock


def _order(supplier, product, second_product, **kwargs):
    return purchase_order_service.create_purchase_order(
        supplier_id=supplier.id,
        items=[
            {"product_id": product.id, "quantity": 5, "unit_cost_cents": 400},
            {"product_id": second_product.id, "quantity": 5, "unit_cost_cents": 250},
        ],
        actor="buyer",
        **kwargs,
    )


def test_create_sends_and_totals_the_lines(supplier, product, second_product):
    po = _order(supplier, product, second_product)

    assert po.status == "sent"
    assert po.kind == "standard"
    assert po.total_cost_cents == 5 * 400 + 5 * 250
    assert po.document_number.startswith("PO-")
    assert _stock(product.id) == 10


def test_receive_now_posts_everything(supplier, product, second_product):
    po = _order(supplier, product, second_product, receive_now=True, payment_mode="pay_now")

    assert po.status == "received"
    assert all(item.received_qty == item.quantity for item in po.items)
    assert _stock(product.id) == 15
    assert _stock(second_product.id) == 25
    movements = db.session.query(InventoryMovement).filter_by(reference=po.document_number).all()
    assert len(movements) == 2


def test_partial_receipt_with_damage_spawns_one_replacement(supplier, product, second_product):
    po = _order(supplier, product, second_product)

    result = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 5, "damaged_qty": 0},
        {"product_id": second_product.id, "received_qty": 3, "damaged_qty": 2},
    ])

    assert result.purchase_order.status == "partial"
    line2 = result.purchase_order.find_item(second_product.id)
    assert line2.received_qty == 3
    assert line2.damaged_qty == 2
    assert line2.replacement_pending_qty == 2

    replacement = result.replacement
    assert replacement is not None
    assert replacement.kind == "replacement"
    assert replacement.parent_id == po.id
    assert replacement.status == "sent"
    assert replacement.id != po.id
    assert [(i.product_id, i.quantity, i.unit_cost_cents) for i in replacement.items] == [(second_product.id, 2, 250)]

    assert _stock(product.id) == 15
    assert _stock(second_product.id) == 23
    assert db.session.query(PurchaseOrder).filter_by(kind="replacement").count() == 1


def test_replacement_receipt_settles_the_parent(supplier, product, second_product):
    po = _order(supplier, product, second_product)
    first = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 5},
        {"product_id": second_product.id, "received_qty": 3, "damaged_qty": 2},
    ])

    purchase_order_service.receive_partial(first.replacement.id, [
        {"product_id": second_product.id, "received_qty": 2},
    ])

    parent = db.session.get(PurchaseOrder, po.id)
    line2 = parent.find_item(second_product.id)
    assert line2.replacement_pending_qty == 0
    assert line2.received_qty == 5
    assert parent.status == "received"
    assert db.session.get(PurchaseOrder, first.replacement.id).status == "received"
    assert _stock(second_product.id) == 25


def test_over_receipt_is_rejected_and_tallies_stay_put(supplier, product, second_product):
    po = _order(supplier, product, second_product)
    purchase_order_service.receive_partial(po.id, [{"product_id": product.id, "received_qty": 5}])

    with pytest.raises(PurchaseOrderError):
        purchase_order_service.receive_partial(po.id, [{"product_id": product.id, "received_qty": 5}])

    line = db.session.get(PurchaseOrder, po.id).find_item(product.id)
    assert line.received_qty == 5
    assert _stock(product.id) == 15


def test_untouched_lines_stay_untouched(supplier, product, second_product):
    po = _order(supplier, product, second_product)
    purchase_order_service.receive_partial(po.id, [{"product_id": product.id, "received_qty": 5}])

    result = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 0, "damaged_qty": 0},
        {"product_id": second_product.id, "received_qty": 1},
    ])

    assert result.purchase_order.find_item(product.id).received_qty == 5
    assert result.purchase_order.find_item(second_product.id).received_qty == 1
    assert result.replacement is None


def test_unknown_product_in_receipt_is_rejected(supplier, product, second_product):
    po = purchase_order_service.create_purchase_order(
        supplier_id=supplier.id,
        items=[{"product_id": product.id, "quantity": 5, "unit_cost_cents": 400}],
    )
    with pytest.raises(PurchaseOrderError):
        purchase_order_service.receive_partial(po.id, [{"product_id": second_product.id, "received_qty": 1}])


def test_receive_full_posts_only_what_is_outstanding(supplier, product, second_product):
    po = _order(supplier, product, second_product)
    first = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 2},
        {"product_id": second_product.id, "received_qty": 3, "damaged_qty": 2},
    ])

    result = purchase_order_service.receive_full(po.id)

    assert result.purchase_order.status == "received"
    assert all(
        (i.received_qty, i.damaged_qty, i.replacement_pending_qty) == (i.quantity, 0, 0)
        for i in result.purchase_order.items
    )
    assert _stock(product.id) == 15
    assert _stock(second_product.id) == 25
    assert db.session.get(PurchaseOrder, first.replacement.id).status == "cancelled"


def test_draft_must_be_sent_before_receipt(supplier, product, second_product):
    po = _order(supplier, product, second_product, as_draft=True)
    assert po.status == "draft"

    with pytest.raises(PurchaseOrderError):
        purchase_order_service.receive_full(po.id)

    assert purchase_order_service.send_purchase_order(po.id).status == "sent"
    assert purchase_order_service.receive_full(po.id).purchase_order.status == "received"


def test_cancel_rules(supplier, product, second_product):
    open_po = _order(supplier, product, second_product)
    assert purchase_order_service.cancel_purchase_order(open_po.id).status == "cancelled"

    done = _order(supplier, product, second_product, receive_now=True)
    with pytest.raises(PurchaseOrderError):
        purchase_order_service.cancel_purchase_order(done.id)


def test_receipt_activity_is_recorded(supplier, product, second_product):
    po = _order(supplier, product, second_product)
    purchase_order_service.receive_partial(po.id, [{"product_id": second_product.id, "received_qty": 4, "damaged_qty": 1}])

    actions = {e.action for e in db.session.query(ActivityEvent).all()}
    assert {"PO Created", "PO Partially Received", "Replacement Invoice Created"} <= actions


def test_receive_full_closes_partially_received_replacements_at_every_depth(supplier, product):
    po = purchase_order_service.create_purchase_order(
        supplier_id=supplier.id,
        items=[{"product_id": product.id, "quantity": 5, "unit_cost_cents": 400}],
    )
    first = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 3, "damaged_qty": 2},
    ])
    second = purchase_order_service.receive_partial(first.replacement.id, [
        {"product_id": product.id, "received_qty": 1, "damaged_qty": 1},
    ])
    assert second.purchase_order.status == "partial"
    assert _stock(product.id) == 14

    purchase_order_service.receive_full(po.id)

    assert _stock(product.id) == 15
    assert db.session.get(PurchaseOrder, first.replacement.id).status == "cancelled"
    assert db.session.get(PurchaseOrder, second.replacement.id).status == "cancelled"
    for child_id in (first.replacement.id, second.replacement.id):
        with pytest.raises(PurchaseOrderError):
            purchase_order_service.receive_partial(child_id, [{"product_id": product.id, "received_qty": 1}])
        with pytest.raises(PurchaseOrderError):
            purchase_order_service.receive_full(child_id)
    assert _stock(product.id) == 15


def test_cancelling_an_order_cancels_its_open_replacements(supplier, product):
    po = purchase_order_service.create_purchase_order(
        supplier_id=supplier.id,
        items=[{"product_id": product.id, "quantity": 4, "unit_cost_cents": 400}],
    )
    first = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 2, "damaged_qty": 2},
    ])

    purchase_order_service.cancel_purchase_order(po.id)

    assert db.session.get(PurchaseOrder, first.replacement.id).status == "cancelled"
    with pytest.raises(PurchaseOrderError):
        purchase_order_service.receive_full(first.replacement.id)
    assert _stock(product.id) == 12


def test_replacement_of_a_closed_order_is_not_receivable(supplier, product):
    po = purchase_order_service.create_purchase_order(
        supplier_id=supplier.id,
        items=[{"product_id": product.id, "quantity": 4, "unit_cost_cents": 400}],
    )
    first = purchase_order_service.receive_partial(po.id, [
        {"product_id": product.id, "received_qty": 2, "damaged_qty": 2},
    ])
    parent = db.session.get(PurchaseOrder, po.id)
    parent.status = "received"
    db.session.commit()

    with pytest.raises(PurchaseOrderError) as exc:
        purchase_order_service.receive_partial(first.replacement.id, [{"product_id": product.id, "received_qty": 2}])
    assert exc.value.details["parent_id"] == po.id
    with pytest.raises(PurchaseOrderError):
        purchase_order_service.receive_full(first.replacement.id)
    assert _stock(product.id) == 12
