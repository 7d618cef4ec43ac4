# trainhub/services/checkout.py
"""
Payment checkout.

Flow:
1. Pre-generate the booking id and build the success URL
   ({public_base_url}/success?trainer=..&booking=true&booking_id=..)
2. Ask the checkout gateway for a hosted checkout session in the trainer's
   price mode; a one-time attempt rejected because the price is recurring
   is retried once in subscription mode
3. Record the booking as pending with the provider session id
4. The success landing (or the webhook) marks the booking completed
"""

import logging
import re
from typing import Optional
from urllib.parse import urlencode

import httpx

from ..exceptions import AuthError, PaymentProviderError
from ..schemas.payments import CheckoutResponse, CheckoutSession
from ..utils.clock import new_id
from .bookings import BookingManager, validate_student
from .trainers import TrainerCatalog

logger = logging.getLogger(__name__)

RECURRING_PRICE_ERROR = re.compile(
    r"recurring price|You specified `payment` mode but passed a recurring price",
    re.IGNORECASE,
)


class CheckoutClient:
    """Client for the hosted checkout function."""

    def __init__(
        self,
        url: str,
        price_map: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.price_map = dict(price_map or {})
        self.timeout = timeout
        self.transport = transport

    def resolve_price(self, price_key: str) -> str:
        """Friendly keys map to provider price ids; anything else passes through."""
        return self.price_map.get(price_key, price_key)

    async def create_checkout_session(
        self,
        price_key: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        auth_token: Optional[str] = None,
    ) -> CheckoutSession:
        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        payload = {
            "price_id": self.resolve_price(price_key),
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"Checkout gateway unreachable: {e}") from e

        if resp.status_code >= 400:
            raise PaymentProviderError(self._error_message(resp), details={"status": resp.status_code})

        try:
            return CheckoutSession.model_validate(resp.json())
        except ValueError as e:
            raise PaymentProviderError(f"Invalid checkout gateway response: {e}") from e

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text or "Failed to create checkout session"
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return str(body) or "Failed to create checkout session"


class CheckoutService:
    def __init__(
        self,
        client: CheckoutClient,
        bookings: BookingManager,
        catalog: TrainerCatalog,
        public_base_url: str,
    ):
        self.client = client
        self.bookings = bookings
        self.catalog = catalog
        self.public_base_url = public_base_url.rstrip("/")

    def success_url(self, trainer_id: str, booking_id: str) -> str:
        query = urlencode({"trainer": trainer_id, "booking": "true", "booking_id": booking_id})
        return f"{self.public_base_url}/success?{query}"

    def cancel_url(self, trainer_id: str) -> str:
        return f"{self.public_base_url}/booking/{trainer_id}"

    async def _create_with_fallback(self, price_key, mode, success_url, cancel_url, auth_token):
        try:
            return await self.client.create_checkout_session(
                price_key, mode, success_url, cancel_url, auth_token
            )
        except PaymentProviderError as e:
            if mode != "payment" or not RECURRING_PRICE_ERROR.search(e.message):
                raise
            logger.info(f"Price {price_key} is recurring, retrying checkout in subscription mode")
        return await self.client.create_checkout_session(
            price_key, "subscription", success_url, cancel_url, auth_token
        )

    async def begin(
        self,
        trainer_id: str,
        student_id: Optional[str],
        student_name: str,
        student_email: str,
        message: Optional[str] = None,
        auth_token: Optional[str] = None,
    ) -> CheckoutResponse:
        if not student_id and self.bookings.require_identity:
            raise AuthError("Sign in required to book a session")
        trainer = self.catalog.get(trainer_id)
        validate_student(student_name, student_email)

        booking_id = new_id()
        checkout = await self._create_with_fallback(
            trainer.price.price_key,
            trainer.price.mode.provider_mode,
            self.success_url(trainer_id, booking_id),
            self.cancel_url(trainer_id),
            auth_token,
        )

        booking = await self.bookings.create_booking(
            trainer_id,
            student_id,
            student_name,
            student_email,
            message,
            booking_id=booking_id,
            checkout_session_id=checkout.session_id,
        )
        logger.info(f"Checkout started: booking={booking.id} checkout={checkout.session_id}")
        return CheckoutResponse(
            booking_id=booking.id,
            checkout_session_id=checkout.session_id,
            redirect_url=checkout.url,
        )
