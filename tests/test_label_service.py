import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

import models
from crud import labels as labels_crud
from services import label_service
from services.couriers.common import Quote
from services.couriers.errors import (
    CarrierRequestError,
    DuplicatePurchaseError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from settings import SenderAddress
from tests.fake_carrier import reply, tracking_reply

SENDER = SenderAddress(
    name="Shopmi",
    phone="(19) 3333-4444",
    email="envios@shopmi.com.br",
    address="Avenida Brasil",
    number="500",
    district="Jardim",
    city="Piracicaba",
    postal_code="13802-170",
    state_abbr="SP",
    company_document="12.345.678/0001-90",
)


def _quote(price: str = "15.00", service_id: int = 2, **kwargs) -> Quote:
    return Quote(carrier_service_id=service_id, service_name="SEDEX", company_name="Correios", price=Decimal(price), estimated_days=5, **kwargs)


def _rate(service_id: int = 2, price: str = "15.00") -> dict:
    return {"id": service_id, "name": "SEDEX", "price": price, "currency": "R$", "delivery_time": 5, "company": {"name": "Correios"}}


def _carrier_buys(carrier, *cart_ids: str, tracking: str = "BR123"):
    carrier.on("POST", "/me/shipment/calculate", reply(200, _rate()))
    carrier.on("POST", "/me/cart", *(reply(201, {"id": cart_id, "protocol": f"ORD-{cart_id}", "status": "pending"}) for cart_id in cart_ids))
    carrier.on("POST", "/me/shipment/checkout", reply(200, {"purchase": {"id": "purchase-1", "status": "paid"}}))
    carrier.on("POST", "/me/shipment/generate", reply(200, {"status": True}))
    carrier.on("POST", "/me/shipment/tracking", tracking_reply("released", tracking))


@pytest.mark.asyncio
async def test_purchase_then_duplicate(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")

    label = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    assert label.status == models.LABEL_PURCHASED
    assert label.tracking_code == "BR123"
    assert label.carrier_order_id == "ord-1"
    assert label.price == Decimal("15.00")

    with pytest.raises(DuplicatePurchaseError):
        await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    assert carrier.calls("POST", "/me/cart") == 1
    assert carrier.calls("POST", "/me/shipment/checkout") == 1


@pytest.mark.asyncio
async def test_cart_item_describes_order(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")

    await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    item = json.loads(carrier.last("POST", "/me/cart").content)
    assert item["service"] == 2
    assert item["from"]["postal_code"] == "13802170"
    assert item["from"]["company_document"] == "12345678000190"
    assert "document" not in item["from"]
    assert item["to"]["document"] == "12345678909"
    assert item["to"]["address"] == "Rua das Flores"
    assert item["to"]["number"] == "120"
    assert item["to"]["complement"] == "Apto 3"
    assert item["products"] == [{"name": "Capinha", "quantity": 2, "unitary_value": 49.9}]
    assert item["options"]["insurance_value"] == 99.8
    assert json.loads(carrier.last("POST", "/me/shipment/checkout").content) == {"orders": ["ord-1"]}
    quoted = json.loads(carrier.last("POST", "/me/shipment/calculate").content)
    assert quoted["services"] == "2"
    assert quoted["from"]["postal_code"] == "13802170"


@pytest.mark.asyncio
async def test_concurrent_purchases_buy_one_label(session_factory, courier, carrier, order):
    _carrier_buys(carrier, "ord-1", "ord-2")

    async with session_factory() as first, session_factory() as second:
        results = await asyncio.gather(
            label_service.purchase_label(first, courier, 42, _quote(), SENDER),
            label_service.purchase_label(second, courier, 42, _quote(), SENDER),
            return_exceptions=True,
        )

    labels = [r for r in results if isinstance(r, models.Label)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(labels) == 1
    assert len(errors) == 1 and isinstance(errors[0], DuplicatePurchaseError)
    assert carrier.calls("POST", "/me/cart") == 1


@pytest.mark.asyncio
async def test_stale_quote_is_refused(db, courier, carrier, order):
    stale = _quote(quoted_at=datetime.now(timezone.utc) - timedelta(hours=2))

    with pytest.raises(ValidationError):
        await label_service.purchase_label(db, courier, 42, stale, SENDER)
    assert carrier.requests == []


@pytest.mark.asyncio
async def test_unknown_order(db, courier, carrier):
    with pytest.raises(NotFoundError):
        await label_service.purchase_label(db, courier, 999, _quote(), SENDER)
    assert carrier.requests == []


@pytest.mark.asyncio
async def test_missing_sender_fails_before_the_carrier(db, courier, carrier, order):
    with pytest.raises(ValidationError):
        await label_service.purchase_label(db, courier, 42, _quote(), None)
    assert carrier.requests == []


@pytest.mark.asyncio
async def test_failed_checkout_leaves_no_label(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    carrier.on("POST", "/me/shipment/checkout", reply(422, {"message": "Saldo insuficiente"}))
    carrier.on("DELETE", "/me/cart/ord-1", reply(200, {}))

    with pytest.raises(CarrierRequestError):
        await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    assert await db.get(models.Label, 1) is None
    assert carrier.calls("DELETE", "/me/cart/ord-1") == 1

    # The order can still be bought once the balance is fixed.
    _carrier_buys(carrier, "ord-2")
    label = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)
    assert label.carrier_order_id == "ord-2"


@pytest.mark.asyncio
async def test_paid_label_is_kept_when_generation_fails(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    carrier.on("POST", "/me/shipment/generate", reply(500, {"message": "Server Error"}))

    label = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    assert label.status == models.LABEL_PURCHASED
    assert label.tracking_code is None


def _held(response: httpx.Response):
    """A responder that parks the request until `release` is set."""
    entered, release = asyncio.Event(), asyncio.Event()

    async def responder(request: httpx.Request) -> httpx.Response:
        entered.set()
        await release.wait()
        return response
    return responder, entered, release


@pytest.mark.asyncio
async def test_cancelled_during_generation_keeps_paid_label(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1", "ord-2")
    responder, entered, _ = _held(httpx.Response(200, json={}))
    carrier.on("POST", "/me/shipment/generate", responder)

    task = asyncio.create_task(label_service.purchase_label(db, courier, 42, _quote(), SENDER))
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    label = await labels_crud.get_active_label_for_order(db, 42)
    assert label.status == models.LABEL_PURCHASED
    assert label.carrier_order_id == "ord-1"
    assert label.tracking_code is None

    with pytest.raises(DuplicatePurchaseError):
        await label_service.purchase_label(db, courier, 42, _quote(), SENDER)
    assert carrier.calls("POST", "/me/shipment/checkout") == 1


@pytest.mark.asyncio
async def test_cancelled_during_checkout_still_records_label(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    responder, entered, release = _held(httpx.Response(200, json={"purchase": {"id": "purchase-1", "status": "paid"}}))
    carrier.on("POST", "/me/shipment/checkout", responder)

    task = asyncio.create_task(label_service.purchase_label(db, courier, 42, _quote(), SENDER))
    await entered.wait()
    task.cancel()
    release.set()
    with pytest.raises(asyncio.CancelledError):
        await task

    label = await labels_crud.get_active_label_for_order(db, 42)
    assert label.carrier_order_id == "ord-1"
    assert carrier.calls("POST", "/me/shipment/generate") == 0


@pytest.mark.asyncio
async def test_label_keeps_the_carriers_price(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    carrier.on("POST", "/me/shipment/calculate", reply(200, _rate(price="17.40")))

    label = await label_service.purchase_label(db, courier, 42, _quote(price="0.01"), SENDER)

    assert label.price == Decimal("17.40")


@pytest.mark.asyncio
async def test_service_the_carrier_no_longer_offers_is_refused(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    carrier.on("POST", "/me/shipment/calculate", reply(200, {"id": 999, "name": "Inventado", "error": "Serviço indisponível"}))

    with pytest.raises(ValidationError):
        await label_service.purchase_label(db, courier, 42, _quote(service_id=999), SENDER)

    assert carrier.calls("POST", "/me/cart") == 0
    assert await labels_crud.get_active_label_for_order(db, 42) is None


@pytest.mark.asyncio
async def test_cancel_only_from_purchased(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1", "ord-2")
    carrier.on("POST", "/me/shipment/cancel", reply(200, {"ord-1": {"canceled": True}}))
    label = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    cancelled = await label_service.cancel_label(db, courier, label.id)

    assert cancelled.status == models.LABEL_CANCELLED
    assert cancelled.cancelled_at is not None
    body = json.loads(carrier.requests[-1].content)
    assert body["order"]["id"] == "ord-1"

    with pytest.raises(InvalidStateTransitionError):
        await label_service.cancel_label(db, courier, label.id)
    assert carrier.calls("POST", "/me/shipment/cancel") == 1

    # A cancelled label no longer blocks a new purchase.
    again = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)
    assert again.carrier_order_id == "ord-2"


@pytest.mark.asyncio
async def test_delivered_label_cannot_be_cancelled(db, courier, carrier, order):
    label = models.Label(order_id=42, carrier_order_id="ord-9", carrier_service_id=2, price=Decimal("15.00"), status=models.LABEL_DELIVERED)
    db.add(label)
    await db.commit()

    with pytest.raises(InvalidStateTransitionError):
        await label_service.cancel_label(db, courier, label.id)
    assert carrier.requests == []


@pytest.mark.asyncio
async def test_carrier_refusing_to_cancel_keeps_label(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    carrier.on("POST", "/me/shipment/cancel", reply(200, {"ord-1": {"canceled": False}}))
    label = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    with pytest.raises(CarrierRequestError):
        await label_service.cancel_label(db, courier, label.id)

    await db.refresh(label)
    assert label.status == models.LABEL_PURCHASED


@pytest.mark.asyncio
async def test_cancel_unknown_label(db, courier):
    with pytest.raises(NotFoundError):
        await label_service.cancel_label(db, courier, 123)


@pytest.mark.asyncio
async def test_print_url(db, courier, carrier, order):
    _carrier_buys(carrier, "ord-1")
    carrier.on("POST", "/me/shipment/print", reply(200, {"url": "https://melhorenvio.com.br/imprimir/abc"}))
    label = await label_service.purchase_label(db, courier, 42, _quote(), SENDER)

    url = await label_service.get_label_print_url(db, courier, label.id)

    assert url == "https://melhorenvio.com.br/imprimir/abc"
    assert json.loads(carrier.requests[-1].content) == {"mode": "private", "orders": ["ord-1"]}
