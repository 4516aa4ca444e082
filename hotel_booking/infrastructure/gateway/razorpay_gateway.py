# hotel_booking/infrastructure/gateway/razorpay_gateway.py

from dataclasses import dataclass
import logging
from typing import Protocol

import razorpay
import requests

from hotel_booking.domain.exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)

# Razorpay caps `receipt` at 40 characters.
_RECEIPT_MAX_LENGTH = 40


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    amount: int
    currency: str


class PaymentGateway(Protocol):
    """What the booking core needs from a payment provider."""

    key_id: str

    def create_order(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder:
        ...

    def verify_signature(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> bool:
        ...


def idempotency_key_for(booking_id: str) -> str:
    return f"bk_{booking_id.replace('-', '')}"[:_RECEIPT_MAX_LENGTH]


class RazorpayGateway:

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str | None = None,
        timeout_seconds: float = 10.0,
        client: razorpay.Client | None = None,
    ):
        self.key_id = key_id
        self.timeout_seconds = timeout_seconds

        if client is None:
            options = {"base_url": base_url} if base_url else {}
            client = razorpay.Client(auth=(key_id, key_secret), **options)
        self.client = client

    def create_order(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder:
        try:
            existing = self._find_live_order(idempotency_key, amount, currency)
            if existing:
                logger.info(
                    "Reusing live gateway order. receipt=%s order_id=%s",
                    idempotency_key,
                    existing.order_id,
                )
                return existing

            order = self.client.order.create(
                data={
                    "amount": amount,
                    "currency": currency,
                    "receipt": idempotency_key,
                    "notes": notes or {},
                },
                timeout=self.timeout_seconds,
            )
        except (
            requests.RequestException,
            razorpay.errors.BadRequestError,
            razorpay.errors.GatewayError,
            razorpay.errors.ServerError,
        ) as exc:
            logger.warning(
                "Gateway order creation failed. receipt=%s error=%s",
                idempotency_key,
                exc,
            )
            raise GatewayUnavailableError("Payment gateway unavailable") from exc

        return GatewayOrder(
            order_id=order["id"],
            amount=int(order.get("amount", amount)),
            currency=order.get("currency", currency),
        )

    def verify_signature(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> bool:
        # HMAC-SHA256 over "order_id|payment_id", compared with hmac.compare_digest.
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError:
            return False
        except (TypeError, ValueError):
            # compare_digest refuses non-ASCII str input.
            logger.warning(
                "Malformed gateway signature. order_id=%s payment_id=%s",
                order_id,
                payment_id,
            )
            return False
        return True

    def _find_live_order(
        self,
        receipt: str,
        amount: int,
        currency: str,
    ) -> GatewayOrder | None:
        response = self.client.order.all(
            {"receipt": receipt},
            timeout=self.timeout_seconds,
        )
        for item in response.get("items", []):
            if (
                item.get("status") in {"created", "attempted"}
                and int(item.get("amount", -1)) == amount
                and item.get("currency") == currency
            ):
                return GatewayOrder(
                    order_id=item["id"],
                    amount=amount,
                    currency=currency,
                )
        return None
