"""eSewa ePay v2: signed form for checkout, base64 JSON callback for verification."""
import base64
import binascii
import hashlib
import hmac
import json
import logging
from decimal import Decimal

from pydantic import ValidationError

from coursepay.core.config import settings
from coursepay.schemas.payment import EsewaCallbackPayload

from .errors import MalformedPayload, ProviderVerificationFailed
from .types import PAYMENT_COMPLETED, VerifiedPayment, to_paisa

log = logging.getLogger("coursepay.esewa")

ESEWA_STATUS_COMPLETE = "COMPLETE"
SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"
_URLSAFE_TO_STD = str.maketrans("-_", "+/")


def generate_signature(message: str, secret_key: str) -> str:
    """Base64 HMAC-SHA256, as eSewa expects it in `signature`."""
    digest = hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def signature_message(total_amount: str, transaction_uuid: str, product_code: str) -> str:
    return f"total_amount={total_amount},transaction_uuid={transaction_uuid},product_code={product_code}"


def format_amount(amount: Decimal) -> str:
    """1500.00 -> "1500", 1500.50 -> "1500.5" (the exact text is part of the signed message)."""
    return format(Decimal(amount).normalize(), "f")


def _b64decode(data: str) -> bytes:
    # A literal "+" turns into a space when the redirect query is URL-decoded
    s = data.replace(" ", "+").strip()
    # URL-safe alphabet goes through the same strict decoder
    s = s.translate(_URLSAFE_TO_STD)
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s, validate=True)


def decode_callback(data: str) -> EsewaCallbackPayload:
    if not isinstance(data, str) or not data.strip():
        raise MalformedPayload("No payment data received")
    try:
        decoded = json.loads(_b64decode(data).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        log.warning("eSewa data could not be decoded: %s", e)
        raise MalformedPayload("Payment data could not be decoded")
    if not isinstance(decoded, dict):
        raise MalformedPayload("Payment data could not be decoded")
    try:
        return EsewaCallbackPayload.model_validate(decoded)
    except ValidationError as e:
        log.warning("eSewa payload failed validation: %s", e.errors())
        raise MalformedPayload("Payment data is incomplete")


def signature_matches(payload: EsewaCallbackPayload, secret_key: str, product_code: str) -> bool:
    message = signature_message(payload.total_amount, payload.transaction_uuid, product_code)
    expected = generate_signature(message, secret_key)
    return hmac.compare_digest(expected.encode(), payload.signature.strip().encode())


def verify_callback(
    data: str,
    *,
    secret_key: str | None = None,
    product_code: str | None = None,
    strict: bool | None = None,
) -> VerifiedPayment:
    """
    Decode and verify the eSewa success redirect.

    The provider `status` is authoritative: a signature mismatch is only logged
    unless strict verification is on.
    """
    secret_key = settings.esewa_secret_key if secret_key is None else secret_key
    product_code = settings.esewa_product_code if product_code is None else product_code
    strict = settings.payment_strict_verification if strict is None else strict

    payload = decode_callback(data)
    valid = signature_matches(payload, secret_key, product_code)
    if not valid:
        log.warning(
            "eSewa signature mismatch: transaction_uuid=%s transaction_code=%s",
            payload.transaction_uuid,
            payload.transaction_code,
        )
        if strict:
            raise ProviderVerificationFailed("Payment signature could not be verified")

    if payload.status != ESEWA_STATUS_COMPLETE:
        log.info("eSewa payment not complete: transaction_uuid=%s status=%s", payload.transaction_uuid, payload.status)
        raise ProviderVerificationFailed("Payment not completed")

    return VerifiedPayment(
        provider="esewa",
        status=PAYMENT_COMPLETED,
        amount=to_paisa(payload.amount),
        provider_reference=payload.transaction_code,
        correlation_key=payload.transaction_uuid,
        batch_key=payload.transaction_uuid,
        signature_valid=valid,
    )


def build_form(
    *,
    total_amount: Decimal,
    transaction_uuid: str,
    success_url: str,
    failure_url: str,
    secret_key: str | None = None,
    product_code: str | None = None,
) -> dict[str, str]:
    """Form fields the browser POSTs to the eSewa payment URL."""
    secret_key = settings.esewa_secret_key if secret_key is None else secret_key
    product_code = settings.esewa_product_code if product_code is None else product_code
    amount = format_amount(total_amount)
    return {
        "amount": amount,
        "tax_amount": "0",
        "total_amount": amount,
        "transaction_uuid": transaction_uuid,
        "product_code": product_code,
        "product_service_charge": "0",
        "product_delivery_charge": "0",
        "success_url": success_url,
        "failure_url": failure_url,
        "signed_field_names": SIGNED_FIELD_NAMES,
        "signature": generate_signature(signature_message(amount, transaction_uuid, product_code), secret_key),
    }
