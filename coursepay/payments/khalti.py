"""Khalti ePayment: server-side initiate and lookup keyed by the payment index (pidx)."""
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from coursepay.core.config import settings
from coursepay.schemas.payment import KhaltiInitiateResponse, KhaltiLookupResponse

from .errors import MalformedPayload, ProviderVerificationFailed
from .types import PAYMENT_COMPLETED, VerifiedPayment

log = logging.getLogger("coursepay.khalti")

KHALTI_STATUS_COMPLETED = "Completed"


class KhaltiClient:
    """Thin async client; one AsyncClient per call, no retries (the success page reload is the retry)."""

    def __init__(
        self,
        secret_key: str | None = None,
        *,
        lookup_url: str | None = None,
        initiate_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.secret_key = settings.khalti_secret_key if secret_key is None else secret_key
        self.lookup_url = lookup_url or settings.khalti_lookup_url
        self.initiate_url = initiate_url or settings.khalti_initiate_url
        self.timeout = settings.khalti_timeout_seconds if timeout is None else timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.secret_key}", "Content-Type": "application/json"}

    async def _post(self, url: str, payload: dict[str, Any]) -> tuple[httpx.Response, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException:
            log.warning("Khalti request timed out: url=%s", url)
            raise ProviderVerificationFailed("Payment provider did not respond in time", status_code=504)
        except httpx.HTTPError as e:
            log.warning("Khalti request failed: url=%s error=%s", url, e)
            raise ProviderVerificationFailed("Payment provider could not be reached", status_code=502)
        try:
            body = resp.json()
        except ValueError:
            body = None
        return resp, body

    async def lookup(self, pidx: str) -> KhaltiLookupResponse:
        resp, body = await self._post(self.lookup_url, {"pidx": pidx})
        if not resp.is_success or not isinstance(body, dict):
            log.warning("Khalti lookup failed: pidx=%s status_code=%s body=%s", pidx, resp.status_code, body)
            raise ProviderVerificationFailed("Payment verification failed")
        try:
            return KhaltiLookupResponse.model_validate(body)
        except ValidationError as e:
            log.warning("Khalti lookup response failed validation: pidx=%s errors=%s", pidx, e.errors())
            raise ProviderVerificationFailed("Payment verification failed")

    async def initiate(self, payload: dict[str, Any]) -> KhaltiInitiateResponse:
        resp, body = await self._post(self.initiate_url, payload)
        if not resp.is_success or not isinstance(body, dict):
            detail = body.get("detail") if isinstance(body, dict) else None
            log.error("Khalti initiate failed: status_code=%s body=%s", resp.status_code, body)
            raise ProviderVerificationFailed(detail or "Khalti payment initiation failed", status_code=502)
        try:
            return KhaltiInitiateResponse.model_validate(body)
        except ValidationError:
            log.error("No pidx in Khalti initiate response: %s", body)
            raise ProviderVerificationFailed("Khalti did not return a payment ID (pidx)", status_code=502)


async def verify_payment_index(
    client: KhaltiClient,
    pidx: str | None,
    purchase_order_id: str | None = None,
) -> VerifiedPayment:
    """Look the pidx up and normalize a Completed payment. Anything else raises."""
    if not pidx:
        raise MalformedPayload("Payment method not detected")
    lookup = await client.lookup(pidx)
    if lookup.status != KHALTI_STATUS_COMPLETED:
        log.info("Khalti payment not completed: pidx=%s status=%s", pidx, lookup.status)
        raise ProviderVerificationFailed("Payment verification failed")
    return VerifiedPayment(
        provider="khalti",
        status=PAYMENT_COMPLETED,
        amount=lookup.total_amount,
        provider_reference=lookup.transaction_id or pidx,
        correlation_key=pidx,
        batch_key=purchase_order_id or None,
    )
