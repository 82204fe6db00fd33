import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .breaker import CircuitBreaker, CircuitBreakerOpen
from .errors import PaymentGatewayError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
STATEMENT_DESCRIPTOR = "Vehicle Booking"


@dataclass(frozen=True)
class RedirectUrls:
    success: str
    failure: str


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    status: Optional[str] = None
    redirect_url: Optional[str] = None


def _provider_detail(resp: httpx.Response) -> str:
    try:
        return resp.json()["errors"][0]["detail"]
    except (ValueError, KeyError, IndexError, TypeError):
        return resp.text


def _to_intent(body: dict) -> PaymentIntent:
    data = body.get("data") or {}
    intent_id = data.get("id")
    if not intent_id:
        raise PaymentGatewayError("Payment gateway returned no payment intent id.")

    attributes = data.get("attributes") or {}
    next_action = attributes.get("next_action") or {}
    redirect = next_action.get("redirect") or {}
    return PaymentIntent(
        intent_id=intent_id,
        status=attributes.get("status"),
        redirect_url=redirect.get("url"),
    )


class PaymentGatewayClient:
    """
    PayMongo payment-intent client. Amounts are in minor currency units.
    Every failure, including an open breaker, surfaces as PaymentGatewayError.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._breaker = breaker
        self._transport = transport

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        description: str,
        payment_method_type: str,
        redirect: RedirectUrls,
        metadata: dict,
    ) -> PaymentIntent:
        payload = {
            "data": {
                "attributes": {
                    "amount": amount_minor,
                    "currency": currency,
                    "payment_method_allowed": [payment_method_type],
                    "description": description,
                    "statement_descriptor": STATEMENT_DESCRIPTOR,
                    "return_url": {"success": redirect.success, "failure": redirect.failure},
                    "metadata": {k: str(v) for k, v in metadata.items()},
                }
            }
        }
        body = await self._call("POST", "/payment_intents", payload)
        intent = _to_intent(body)
        if not intent.redirect_url and payment_method_type != "card":
            logger.info(
                "payment intent %s for %s has no redirect url yet",
                intent.intent_id,
                payment_method_type,
            )
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        body = await self._call("GET", f"/payment_intents/{intent_id}", None)
        return _to_intent(body)

    async def _call(self, method: str, path: str, payload: Optional[dict]) -> dict:
        if self._breaker:
            try:
                await self._breaker.allow_request()
            except CircuitBreakerOpen as e:
                raise PaymentGatewayError("Payment gateway is temporarily unavailable.", str(e))

        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                auth=(self._secret_key, ""),
                transport=self._transport,
            ) as client:
                resp = await client.request(method=method, url=url, json=payload)
                resp.raise_for_status()
        except httpx.TimeoutException as e:
            await self._record_failure()
            logger.error("payment gateway timeout: %s %s", method, url)
            raise PaymentGatewayError("Payment gateway timed out.", str(e)) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = _provider_detail(e.response)
            # 4xx means the gateway is healthy and rejected this request
            if status >= 500:
                await self._record_failure()
            else:
                await self._record_success()
            logger.error("payment gateway rejected %s %s (%s): %s", method, url, status, detail)
            raise PaymentGatewayError(
                f"Payment intent request failed: {detail}", detail
            ) from e
        except httpx.HTTPError as e:
            await self._record_failure()
            logger.error("payment gateway unreachable: %s %s: %s", method, url, e)
            raise PaymentGatewayError("Payment gateway is unreachable.", str(e)) from e

        await self._record_success()
        try:
            return resp.json()
        except ValueError as e:
            raise PaymentGatewayError("Payment gateway returned malformed JSON.", resp.text) from e

    async def _record_success(self):
        if self._breaker:
            await self._breaker.record_success()

    async def _record_failure(self):
        if self._breaker:
            await self._breaker.record_failure()
