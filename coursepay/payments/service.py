"""Verification entrypoint: adapter -> correlation resolver -> reconciler."""
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from coursepay.models import AuditLog, CourseOrder

from . import esewa
from .errors import MalformedPayload, NoMatchingOrder, PartialSettlementWarning, SettlementFailed, Unauthorized
from .khalti import KhaltiClient, verify_payment_index
from .reconciler import reconcile
from .resolver import resolve_orders
from .types import PAYMENT_COMPLETED, Provider, ReconcileResult, RecoveryContext, VerificationResult, VerifiedPayment

log = logging.getLogger("coursepay.payments")

SUPPORTED_METHODS = ("esewa", "khalti")
_KHALTI_KEYS = ("pidx", "purchase_order_id", "transaction_id")


def normalize_redirect_params(params: Mapping[str, str]) -> tuple[str | None, str | dict[str, Any] | None]:
    """
    Provider redirect query -> (method, raw_data).

    eSewa sometimes lands as `?method=esewa?data=...`, i.e. `data` ends up
    inside the `method` value; that variant is unpacked here.
    """
    method = (params.get("method") or "").strip()
    data = params.get("data")
    if "?" in method:
        method, _, nested = method.partition("?")
        nested_params = parse_qs(nested, keep_blank_values=True)
        if not data and nested_params.get("data"):
            data = nested_params["data"][0]
        for key in _KHALTI_KEYS:
            if key in nested_params and not params.get(key):
                params = {**params, key: nested_params[key][0]}
    method = method.lower() or None

    if method == "khalti" or (method is None and params.get("pidx")):
        return "khalti", {k: params.get(k) for k in _KHALTI_KEYS if params.get(k)}
    return method, data


def detect_method(
    method: str | None,
    raw_data: str | dict[str, Any] | None,
    recovery: RecoveryContext | None,
) -> Provider:
    m = (method or "").strip().lower()
    if not m and recovery and recovery.payment_method:
        m = recovery.payment_method
    if not m:
        if (isinstance(raw_data, dict) and raw_data.get("pidx")) or (recovery and recovery.khalti_pidx):
            m = "khalti"
        elif (isinstance(raw_data, str) and raw_data.strip()) or (isinstance(raw_data, dict) and raw_data.get("data")):
            m = "esewa"
    if not m:
        raise MalformedPayload("Payment method not detected")
    if m not in SUPPORTED_METHODS:
        raise MalformedPayload("Invalid payment method")
    return m  # type: ignore[return-value]


async def _verify_with_provider(
    method: Provider,
    raw_data: str | dict[str, Any] | None,
    recovery: RecoveryContext | None,
    khalti_client: KhaltiClient | None,
) -> VerifiedPayment:
    if method == "esewa":
        data = raw_data.get("data") if isinstance(raw_data, dict) else raw_data
        return esewa.verify_callback(data)

    raw = raw_data if isinstance(raw_data, dict) else {}
    pidx = raw.get("pidx") or (raw_data if isinstance(raw_data, str) and raw_data.strip() else None)
    if not pidx and recovery and recovery.khalti_pidx:
        log.info("Khalti pidx missing from redirect, using recovered pidx")
        pidx = recovery.khalti_pidx
    purchase_order_id = raw.get("purchase_order_id") or raw.get("purchaseOrderId")
    return await verify_payment_index(khalti_client or KhaltiClient(), pidx, purchase_order_id)


def _audit(db: Session, event: str, user_id: str | None, detail: str | None) -> None:
    try:
        db.add(AuditLog(event=event, user_id=user_id, detail=(detail or "")[:255] or None))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("AuditLog write failed: %s", e)


def _success_message(result: ReconcileResult) -> str:
    if result.newly_completed == 0:
        return "Payment already verified. You are enrolled."
    if len(result.course_ids) == 1:
        return "Payment verified and enrollment created"
    return f"Payment verified. You are now enrolled in {len(result.course_ids)} courses."


async def verify_payment(
    db: Session,
    user_id: str | None,
    method: str | None,
    raw_data: str | dict[str, Any] | None,
    recovery: RecoveryContext | None = None,
    khalti_client: KhaltiClient | None = None,
) -> VerificationResult:
    """
    Verify a provider redirect and settle the orders it pays for.

    Hard failures raise a PaymentError subclass before any order is touched
    (NoMatchingOrder included). Already completed orders count as success, so
    reloading the success page is harmless.
    """
    if not user_id:
        raise Unauthorized("Unauthorized")
    if method and "?" in method:
        method, nested = normalize_redirect_params({"method": method})
        if raw_data is None:
            raw_data = nested

    provider = detect_method(method, raw_data, recovery)
    payment = await _verify_with_provider(provider, raw_data, recovery, khalti_client)

    warnings: list[PartialSettlementWarning] = []
    if payment.signature_valid is False:
        warnings.append(
            PartialSettlementWarning(
                kind="signature_mismatch",
                message=f"eSewa signature mismatch for transaction {payment.correlation_key}",
            )
        )
    resolution = resolve_orders(db, user_id, payment, recovery=recovery)
    warnings.extend(resolution.warnings)

    result = reconcile(db, user_id, payment, resolution.orders)
    warnings.extend(result.warnings)
    if not result.course_ids:
        raise SettlementFailed(
            "Payment was verified but enrollment could not be completed. Reload this page or contact support."
        )

    _audit(db, "payment_verified", user_id, f"{payment.provider}:{payment.provider_reference}")
    return VerificationResult(
        success=True,
        course_ids=result.course_ids,
        message=_success_message(result),
        warnings=warnings,
    )


def grant_orders(
    db: Session,
    *,
    transaction_uuid: str | None = None,
    order_id: str | None = None,
    provider_reference: str | None = None,
    granted_by: str | None = None,
) -> ReconcileResult:
    """Support path for a payment that never made it back: settle by batch key or order id through the reconciler."""
    if transaction_uuid:
        stmt = select(CourseOrder).where(CourseOrder.transaction_uuid == transaction_uuid)
    elif order_id:
        stmt = select(CourseOrder).where(CourseOrder.id == order_id)
    else:
        raise MalformedPayload("transaction_uuid or order_id is required")
    orders = list(db.exec(stmt.order_by(col(CourseOrder.created_at))).all())
    if not orders:
        raise NoMatchingOrder("Order not found.")

    key = transaction_uuid or order_id or ""
    result = ReconcileResult()
    by_user: dict[str, list[CourseOrder]] = {}
    for order in orders:
        by_user.setdefault(order.user_id, []).append(order)
    for user_id, user_orders in by_user.items():
        payment = VerifiedPayment(
            provider=user_orders[0].payment_method,  # type: ignore[arg-type]
            status=PAYMENT_COMPLETED,
            amount=None,
            provider_reference=provider_reference or user_orders[0].payment_reference or f"manual-{key}",
            correlation_key=key,
            batch_key=transaction_uuid,
        )
        partial = reconcile(db, user_id, payment, user_orders)
        result.course_ids.extend(c for c in partial.course_ids if c not in result.course_ids)
        result.enrolled_count += partial.enrolled_count
        result.settlements.extend(partial.settlements)
        result.warnings.extend(partial.warnings)
        _audit(db, "payment_grant", user_id, f"{key} by {granted_by or 'admin'}")
    return result
