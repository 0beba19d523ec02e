"""
Simulated payment gateways.

No real provider is called: each method validates the shape of what the buyer
sent, waits PAYMENT_PROCESSING_DELAY seconds to stand in for the gateway round
trip, and reports an outcome. Failures are deterministic from the input alone.
"""
import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

import config
from errors import ValidationError
from schemas import CamelModel, PaymentStatus

logger = logging.getLogger(__name__)

BANK_DETAILS = {
    "accountNumber": "1234567890",
    "ifscCode": "ABCD0001234",
    "bankName": "National Bank",
    "accountName": "Organic Marketplace",
}


def _millis() -> int:
    return int(time.time() * 1000)


async def _gateway_delay():
    await asyncio.sleep(config.PAYMENT_PROCESSING_DELAY)


# Method inputs

class CardDetails(CamelModel):
    number: Optional[str] = None
    expiry: Optional[str] = None
    cvv: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None


class PayPalDetails(CamelModel):
    email: Optional[str] = None


class BankTransferDetails(CamelModel):
    order_id: str
    customer_name: str = "Customer"


class CodDetails(CamelModel):
    cod_fee: int = Field(default=0, ge=0)


class VerificationDetails(CamelModel):
    reference_number: Optional[str] = None
    transfer_date: Optional[str] = None


class _PaymentRequest(CamelModel):
    order_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)


class CreditCardPayment(_PaymentRequest):
    method: Literal["credit_card"]
    card_details: CardDetails = Field(default_factory=CardDetails)


class PayPalPayment(_PaymentRequest):
    method: Literal["paypal"]
    paypal_details: PayPalDetails = Field(default_factory=PayPalDetails)


class BankTransferPayment(_PaymentRequest):
    method: Literal["bank_transfer"]
    customer_name: Optional[str] = None


class CashOnDeliveryPayment(_PaymentRequest):
    method: Literal["cash_on_delivery"]
    cod_fee: int = Field(default=0, ge=0)


PaymentRequest = Annotated[
    Union[CreditCardPayment, PayPalPayment, BankTransferPayment, CashOnDeliveryPayment],
    Field(discriminator="method"),
]


class GatewayResult(CamelModel):
    success: bool
    status: PaymentStatus
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    reference_number: Optional[str] = None
    instructions: Optional[Dict[str, str]] = None
    total_amount: Optional[int] = None
    cod_fee: Optional[int] = None
    verified: Optional[bool] = None
    verification_id: Optional[str] = None
    verified_at: Optional[str] = None


def _failed(error: str, status: PaymentStatus = PaymentStatus.failed, **extra) -> GatewayResult:
    return GatewayResult(success=False, status=status, error=error, **extra)


# Gateways

async def process_credit_card_payment(amount: int, card: CardDetails) -> GatewayResult:
    if card.number:
        valid = 13 <= len(card.number) <= 19 and bool(card.expiry) and bool(card.cvv)
        if not valid:
            return _failed("Invalid card details")

    await _gateway_delay()
    return GatewayResult(success=True, status=PaymentStatus.completed, transaction_id=f"cc_{_millis()}")


async def process_paypal_payment(amount: int, paypal: PayPalDetails) -> GatewayResult:
    if paypal.email:
        if "@" not in paypal.email or "." not in paypal.email:
            return _failed("Invalid PayPal account details")

    await _gateway_delay()
    return GatewayResult(success=True, status=PaymentStatus.completed, transaction_id=f"pp_{_millis()}")


async def process_bank_transfer(amount: int, transfer: BankTransferDetails) -> GatewayResult:
    # Settled out of band; stays pending until an admin verifies the transfer
    await _gateway_delay()
    stamp = _millis()
    return GatewayResult(
        success=True,
        status=PaymentStatus.pending,
        transaction_id=f"bt_{stamp}",
        reference_number=f"BT{str(stamp)[-8:]}{random.randint(0, 999)}",
        instructions=dict(BANK_DETAILS),
    )


async def process_cash_on_delivery(amount: int, cod: CodDetails) -> GatewayResult:
    await _gateway_delay()
    return GatewayResult(
        success=True,
        status=PaymentStatus.processing,
        transaction_id=f"cod_{_millis()}",
        total_amount=amount + cod.cod_fee,
        cod_fee=cod.cod_fee,
    )


async def verify_bank_transfer(payment_id: str, details: VerificationDetails) -> GatewayResult:
    if not details.reference_number or not details.transfer_date:
        return _failed("Incomplete verification details", status=PaymentStatus.pending, verified=False)

    await _gateway_delay()
    logger.info("Bank transfer for payment %s verified (ref %s)", payment_id, details.reference_number)
    return GatewayResult(
        success=True,
        verified=True,
        status=PaymentStatus.completed,
        verification_id=f"verify_{_millis()}",
        verified_at=datetime.now(timezone.utc).isoformat(),
    )


def generate_receipt(payment_id: str) -> dict:
    return {
        "receiptId": f"rcpt_{_millis()}",
        "paymentId": payment_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "receiptUrl": f"/receipts/{payment_id}.pdf",
    }


# Dispatch

def check_card_details(request) -> None:
    """Reject partially filled card forms before they reach the gateway."""
    if not isinstance(request, CreditCardPayment):
        return
    card = request.card_details
    if card.number and not (card.expiry and card.cvv and card.name):
        raise ValidationError("Incomplete card details provided", code="INCOMPLETE_CARD_DETAILS")


async def _credit_card(request: CreditCardPayment) -> Tuple[GatewayResult, Dict[str, Any]]:
    card = request.card_details
    result = await process_credit_card_payment(request.amount, card)
    details = {}
    if result.success:
        details = {
            "lastFour": card.number[-4:] if card.number else "xxxx",
            "cardType": card.type or "Unknown",
        }
    return result, details


async def _paypal(request: PayPalPayment) -> Tuple[GatewayResult, Dict[str, Any]]:
    return await process_paypal_payment(request.amount, request.paypal_details), {}


async def _bank_transfer(request: BankTransferPayment) -> Tuple[GatewayResult, Dict[str, Any]]:
    result = await process_bank_transfer(
        request.amount,
        BankTransferDetails(order_id=request.order_id, customer_name=request.customer_name or "Customer"),
    )
    if not result.success:
        return result, {"error": result.error}
    return result, {
        "instructions": (
            f"Please transfer to account #{BANK_DETAILS['accountNumber']}, "
            f"IFSC Code: {BANK_DETAILS['ifscCode']}"
        ),
        **BANK_DETAILS,
        "reference": f"Order-{request.order_id}",
        "referenceNumber": result.reference_number,
        "note": "Please include your Order ID as reference when making the transfer",
        "verificationRequired": True,
    }


async def _cash_on_delivery(request: CashOnDeliveryPayment) -> Tuple[GatewayResult, Dict[str, Any]]:
    result = await process_cash_on_delivery(request.amount, CodDetails(cod_fee=request.cod_fee))
    if not result.success:
        return result, {"error": result.error}
    return result, {
        "codFee": result.cod_fee,
        "payableAmount": result.total_amount,
        "instructions": "Payment will be collected at the time of delivery",
        "note": "Please keep exact change ready for a smooth delivery experience",
        "deliveryVerification": "Signature required on delivery",
    }


HANDLERS = {
    "credit_card": _credit_card,
    "paypal": _paypal,
    "bank_transfer": _bank_transfer,
    "cash_on_delivery": _cash_on_delivery,
}


async def process_payment(request) -> Tuple[GatewayResult, Dict[str, Any]]:
    """
    Run the gateway for ``request.method``.

    Returns the gateway result and the ``paymentDetails`` to store. Unexpected
    errors inside a gateway are reported as a failed payment carrying the
    error message; the payment record is still written by the caller.
    """
    handler = HANDLERS.get(request.method)
    if handler is None:
        raise ValidationError("Invalid payment method", code="INVALID_PAYMENT_METHOD")
    try:
        result, details = await handler(request)
    except Exception as exc:
        logger.exception("Payment processing error for order %s (%s)", request.order_id, request.method)
        return _failed(str(exc)), {"error": str(exc)}

    logger.info(
        "Payment for order %s via %s -> %s%s",
        request.order_id,
        request.method,
        result.status,
        f" ({result.error})" if result.error else "",
    )
    return result, details


_request_adapter = TypeAdapter(PaymentRequest)


def parse_payment_request(body: dict):
    """Validate a raw ``POST /api/payments`` body into its method-specific model."""
    method = body.get("method")
    if not isinstance(method, str) or method not in HANDLERS:
        raise ValidationError("Invalid payment method", code="INVALID_PAYMENT_METHOD")
    try:
        return _request_adapter.validate_python(body)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        where = ".".join(str(part) for part in first["loc"][1:]) or "body"
        raise ValidationError(f"{where}: {first['msg']}")


def require_payment_fields(body: dict) -> None:
    if not isinstance(body, dict) or not all(body.get(f) for f in ("orderId", "method", "amount")):
        raise ValidationError("Missing required payment information", code="MISSING_PAYMENT_FIELDS")
