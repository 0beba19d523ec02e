"""
Order/payment reconciliation.

A payment attempt is written first, then the order it belongs to is moved to
the status implied by the payment outcome:

    completed  -> processing
    failed     -> pending
    processing -> processing
    pending, refunded -> (no change)

Both writes share a transaction when MONGO_TRANSACTIONS is on. Every order
and payment status write is guarded by the document's ``version`` counter.
"""
import logging
from typing import Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from pymongo import ReturnDocument

import config
import database
import payments
from errors import ConflictError, NotFoundError, ValidationError
from schemas import OrderStatus, Payment, PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)

PAYMENT_TO_ORDER = {
    PaymentStatus.completed: OrderStatus.processing,
    PaymentStatus.failed: OrderStatus.pending,
    PaymentStatus.processing: OrderStatus.processing,
}


def order_status_for_payment(status: PaymentStatus) -> Optional[OrderStatus]:
    return PAYMENT_TO_ORDER.get(PaymentStatus(status))


def get_order(order_id: str, session=None) -> dict:
    order = database.collection("order").find_one(
        {"_id": database.to_object_id(order_id, "Order")}, **database.session_kwargs(session)
    )
    if not order:
        raise NotFoundError("Order")
    return order


def get_payment(payment_id: str, session=None) -> dict:
    payment = database.collection("payment").find_one(
        {"_id": database.to_object_id(payment_id, "Payment")}, **database.session_kwargs(session)
    )
    if not payment:
        raise NotFoundError("Payment")
    return payment


def _versioned_update(collection_name: str, doc: dict, changes: dict, session=None) -> Optional[dict]:
    return database.collection(collection_name).find_one_and_update(
        {"_id": doc["_id"], "version": doc.get("version", 0)},
        {"$set": {**changes, "updated_at": database.now()}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
        **database.session_kwargs(session),
    )


def set_order_status(order_id: str, status: OrderStatus, expected_version: Optional[int] = None, session=None) -> dict:
    """
    Write ``status`` onto an order.

    With ``expected_version`` the write happens only if nobody changed the order
    since the caller read it. Without it the latest version is re-read and the
    write retried up to RECONCILE_MAX_ATTEMPTS times.
    """
    status = OrderStatus(status)
    attempts = 1 if expected_version is not None else max(config.RECONCILE_MAX_ATTEMPTS, 1)
    for _ in range(attempts):
        order = get_order(order_id, session=session)
        if expected_version is not None and order.get("version", 0) != expected_version:
            break
        updated = _versioned_update("order", order, {"status": status.value}, session=session)
        if updated is not None:
            logger.info("Order %s: %s -> %s", order_id, order.get("status"), status.value)
            return updated
        logger.warning("Order %s changed concurrently while setting %s", order_id, status.value)
    raise ConflictError(f"Order {order_id} was modified concurrently")


def apply_payment_outcome(order_id: str, payment_status: PaymentStatus, session=None) -> Optional[dict]:
    target = order_status_for_payment(payment_status)
    if target is None:
        return None
    return set_order_status(order_id, target, session=session)


def apply_status_callback(order_id: str, payment_status: PaymentStatus, session=None) -> Optional[dict]:
    """
    Order side of an administrative/webhook payment status change.

    Only a completed payment advances the order; failed and refunded callbacks
    leave it where it is.
    """
    if PaymentStatus(payment_status) != PaymentStatus.completed:
        return None
    try:
        get_order(order_id, session=session)
    except NotFoundError:
        logger.warning("Payment callback for missing order %s", order_id)
        return None
    return set_order_status(order_id, OrderStatus.processing, session=session)


def record_payment(payment: Payment) -> Tuple[str, Optional[dict]]:
    """
    Persist a processed payment and reconcile its order.

    Once the payment is written it stays written: if the order keeps changing
    under us the conflict is logged and the order is left for the next
    reconciliation, so a client retry never duplicates a settled payment.
    """
    with database.transaction() as session:
        payment_id = database.create_document("payment", payment, session=session)
        try:
            order = apply_payment_outcome(payment.order_id, payment.status, session=session)
        except ConflictError:
            logger.error(
                "Payment %s recorded as %s but order %s could not be updated",
                payment_id,
                payment.status,
                payment.order_id,
            )
            order = None
    return payment_id, order


def update_payment_status(
    payment_id: str,
    status: PaymentStatus,
    transaction_id: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> dict:
    status = PaymentStatus(status)
    with database.transaction() as session:
        payment = get_payment(payment_id, session=session)
        if expected_version is not None and payment.get("version", 0) != expected_version:
            raise ConflictError(f"Payment {payment_id} was modified concurrently")
        changes = {"status": status.value}
        if transaction_id:
            changes["transaction_id"] = transaction_id
        updated = _versioned_update("payment", payment, changes, session=session)
        if updated is None:
            raise ConflictError(f"Payment {payment_id} was modified concurrently")
        logger.info("Payment %s: %s -> %s", payment_id, payment.get("status"), status.value)
        apply_status_callback(payment["order_id"], status, session=session)
    return updated


def _store_verification(payment: dict, details: payments.VerificationDetails, result: payments.GatewayResult) -> dict:
    with database.transaction() as session:
        payment_details = dict(payment.get("payment_details") or {})
        payment_details.update(
            {
                "verificationId": result.verification_id,
                "verifiedAt": result.verified_at,
                "transferDate": details.transfer_date,
                "verifiedReference": details.reference_number,
            }
        )
        updated = _versioned_update(
            "payment",
            payment,
            {"status": result.status, "payment_details": payment_details},
            session=session,
        )
        if updated is None:
            raise ConflictError(f"Payment {payment['_id']} was modified concurrently")
        apply_payment_outcome(payment["order_id"], result.status, session=session)
    return updated


async def confirm_bank_transfer(payment_id: str, details: payments.VerificationDetails) -> Tuple[dict, payments.GatewayResult]:
    """Manual confirmation of a bank transfer by an admin."""
    payment = await run_in_threadpool(get_payment, payment_id)
    if payment.get("method") != PaymentMethod.bank_transfer.value:
        raise ValidationError("Only bank transfers can be verified", code="NOT_A_BANK_TRANSFER")
    if payment.get("status") != PaymentStatus.pending.value:
        raise ValidationError(f"Payment is already {payment.get('status')}", code="PAYMENT_NOT_PENDING")

    result = await payments.verify_bank_transfer(payment_id, details)
    if not result.success:
        return payment, result

    updated = await run_in_threadpool(_store_verification, payment, details, result)
    return updated, result
