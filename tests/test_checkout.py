# tests/test_checkout.py

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from trainhub.exceptions import AuthError, PaymentProviderError
from trainhub.schemas.bookings import PaymentStatus
from trainhub.schemas.trainers import PriceDescriptor, PriceMode, Trainer
from trainhub.services.checkout import CheckoutClient, CheckoutService
from trainhub.services.remote import BOOKINGS_TABLE
from trainhub.services.trainers import TrainerCatalog

CHECKOUT_URL = "https://functions.example.com/stripe-checkout"


def one_time_catalog():
    return TrainerCatalog(
        [
            Trainer(
                id="7",
                name="Pat",
                price=PriceDescriptor(price_key="training_session", display_price=10, mode=PriceMode.ONE_TIME),
            )
        ]
    )


def make_service(handler, manager, catalog=None):
    client = CheckoutClient(
        CHECKOUT_URL,
        price_map={"training_session": "price_abc"},
        transport=httpx.MockTransport(handler),
    )
    return CheckoutService(client, manager, catalog or one_time_catalog(), "https://app.example.com/")


@pytest.mark.asyncio
async def test_begin_records_pending_booking(manager, remote):
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, json={"sessionId": "cs_1", "url": "https://pay.example.com/cs_1"})

    service = make_service(handler, manager)
    result = await service.begin("7", "user-1", "Ada", "ada@example.com", "hi", auth_token="tok")

    body = json.loads(requests[0].content)
    assert body["price_id"] == "price_abc"
    assert body["mode"] == "payment"
    assert body["cancel_url"] == "https://app.example.com/booking/7"
    assert requests[0].headers["Authorization"] == "Bearer tok"

    query = parse_qs(urlparse(body["success_url"]).query)
    assert query == {"trainer": ["7"], "booking": ["true"], "booking_id": [result.booking_id]}

    assert result.checkout_session_id == "cs_1"
    assert result.redirect_url == "https://pay.example.com/cs_1"
    row = remote.row(BOOKINGS_TABLE, result.booking_id)
    assert row["payment_status"] == "pending"
    assert row["checkout_session_id"] == "cs_1"

    completed = await manager.complete_checkout("7", booking_id=result.booking_id)
    assert completed.payment_status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_recurring_price_mismatch_retries_once_as_subscription(manager):
    modes = []

    def handler(request: httpx.Request):
        mode = json.loads(request.content)["mode"]
        modes.append(mode)
        if mode == "payment":
            return httpx.Response(
                400,
                json={"error": "You specified `payment` mode but passed a recurring price."},
            )
        return httpx.Response(200, json={"sessionId": "cs_2", "url": "https://pay.example.com/cs_2"})

    service = make_service(handler, manager)
    result = await service.begin("7", "user-1", "Ada", "ada@example.com")

    assert modes == ["payment", "subscription"]
    assert result.checkout_session_id == "cs_2"


@pytest.mark.asyncio
async def test_other_provider_errors_are_surfaced_verbatim(manager, remote):
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        return httpx.Response(402, json={"error": "Your card was declined."})

    service = make_service(handler, manager)
    with pytest.raises(PaymentProviderError) as exc_info:
        await service.begin("7", "user-1", "Ada", "ada@example.com")

    assert exc_info.value.message == "Your card was declined."
    assert len(calls) == 1
    assert remote.tables[BOOKINGS_TABLE] == {}


@pytest.mark.asyncio
async def test_recurring_trainer_starts_in_subscription_mode(manager):
    modes = []

    def handler(request: httpx.Request):
        modes.append(json.loads(request.content)["mode"])
        return httpx.Response(200, json={"sessionId": "cs_3", "url": "https://pay.example.com/cs_3"})

    service = make_service(handler, manager, catalog=TrainerCatalog())
    await service.begin("3", "user-1", "Ada", "ada@example.com")

    assert modes == ["subscription"]


@pytest.mark.asyncio
async def test_begin_requires_identity(manager):
    service = make_service(lambda request: httpx.Response(500), manager)

    with pytest.raises(AuthError):
        await service.begin("7", None, "Ada", "ada@example.com")


def test_unknown_price_key_passes_through():
    client = CheckoutClient(CHECKOUT_URL, price_map={"training_session": "price_abc"})
    assert client.resolve_price("price_raw") == "price_raw"
    assert client.resolve_price("training_session") == "price_abc"
