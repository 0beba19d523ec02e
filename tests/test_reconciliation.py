import pytest

import database
import reconciliation
from errors import ConflictError, NotFoundError
from schemas import OrderStatus, Payment, PaymentStatus


@pytest.mark.parametrize(
    "payment_status,order_status",
    [
        (PaymentStatus.completed, OrderStatus.processing),
        (PaymentStatus.failed, OrderStatus.pending),
        (PaymentStatus.processing, OrderStatus.processing),
        (PaymentStatus.pending, None),
        (PaymentStatus.refunded, None),
    ],
)
def test_transition_table(payment_status, order_status):
    assert reconciliation.order_status_for_payment(payment_status) == order_status


def test_completed_payment_moves_order_to_processing(db, order):
    updated = reconciliation.apply_payment_outcome(str(order["_id"]), "completed")
    assert updated["status"] == "processing"
    assert updated["version"] == order["version"] + 1


def test_pending_payment_leaves_order_alone(db, order):
    assert reconciliation.apply_payment_outcome(str(order["_id"]), "pending") is None
    assert db["order"].find_one({"_id": order["_id"]})["version"] == 0


def test_failed_payment_resets_order_to_pending(db, order):
    reconciliation.set_order_status(str(order["_id"]), OrderStatus.processing)
    updated = reconciliation.apply_payment_outcome(str(order["_id"]), "failed")
    assert updated["status"] == "pending"


def test_stale_version_is_rejected(db, order):
    reconciliation.set_order_status(str(order["_id"]), OrderStatus.shipped, expected_version=0)
    with pytest.raises(ConflictError):
        reconciliation.set_order_status(str(order["_id"]), OrderStatus.cancelled, expected_version=0)
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "shipped"


def test_missing_order(db):
    with pytest.raises(NotFoundError):
        reconciliation.get_order("not-an-object-id")


@pytest.mark.parametrize("status", ["failed", "refunded", "processing", "pending"])
def test_callback_only_acts_on_completed(db, order, status):
    assert reconciliation.apply_status_callback(str(order["_id"]), status) is None
    assert db["order"].find_one({"_id": order["_id"]})["status"] == "pending"


def test_record_payment_writes_payment_then_order(db, order):
    payment = Payment(order_id=str(order["_id"]), amount=49900, method="cash_on_delivery", status="processing")
    payment_id, updated = reconciliation.record_payment(payment)
    stored = db["payment"].find_one({"_id": database.to_object_id(payment_id)})
    assert stored["status"] == "processing"
    assert stored["currency"] == "INR"
    assert updated["status"] == "processing"


def test_update_payment_status_with_stale_version(db, order):
    payment = Payment(order_id=str(order["_id"]), amount=100, method="paypal", status="pending")
    payment_id, _ = reconciliation.record_payment(payment)
    reconciliation.update_payment_status(payment_id, "processing", expected_version=0)
    with pytest.raises(ConflictError):
        reconciliation.update_payment_status(payment_id, "completed", expected_version=0)
