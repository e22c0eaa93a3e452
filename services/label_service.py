# services/label_service.py

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import models
from crud import labels as labels_crud
from crud import orders as orders_crud
from settings import settings, SenderAddress
from services import address_service, courier_service, label_state, quote_service
from services.couriers.common import Quote
from services.couriers.errors import (
    CarrierRequestError,
    DuplicatePurchaseError,
    InvalidStateTransitionError,
    NotFoundError,
    ShippingError,
    ValidationError,
)
from services.couriers.melhor_envio import MelhorEnvioCourierService


# One lock per order id: purchases and cancellations of the same order run one at a time.
_order_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

def _order_lock(order_id: int) -> asyncio.Lock:
    lock = _order_locks.get(order_id)
    if lock is None:
        lock = asyncio.Lock()
        _order_locks[order_id] = lock
    return lock


def _check_quote_age(quote: Quote):
    quoted_at = quote.quoted_at if quote.quoted_at.tzinfo else quote.quoted_at.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) - quoted_at > timedelta(minutes=settings.QUOTE_MAX_AGE_MINUTES):
        raise ValidationError("Quote has expired, request new rates before buying a label")


async def _discard_cart_item(courier: MelhorEnvioCourierService, carrier_order_id: str):
    try:
        await courier.remove_from_cart(carrier_order_id)
    except ShippingError as e:
        logging.warning(f"Could not remove {carrier_order_id} from the carrier cart: {e}")


async def _confirm_quote(courier: MelhorEnvioCourierService, order: models.Order, quote: Quote, from_postal_code: str) -> Quote:
    """Prices the chosen service again; a label is only bought at a price the carrier just returned."""
    request = address_service.shipment_request_from_order(order, from_postal_code).model_copy(
        update={"services": str(quote.carrier_service_id)}
    )
    quotes = await quote_service.get_quotes(courier, request)
    confirmed = next((q for q in quotes if q.carrier_service_id == quote.carrier_service_id), None)
    if confirmed is None:
        raise ValidationError(
            f"Service {quote.carrier_service_id} is not available for order {order.id}, request new rates",
            details={"carrier_service_id": quote.carrier_service_id, "available": [q.carrier_service_id for q in quotes]},
        )
    if confirmed.price != quote.price:
        logging.warning(f"Price of service {quote.carrier_service_id} for order {order.id} is now {confirmed.price} (quoted {quote.price})")
    return confirmed


async def _checkout_and_record(
    db: AsyncSession,
    courier: MelhorEnvioCourierService,
    order_id: int,
    carrier_order_id: str,
    quote: Quote,
) -> models.Label:
    try:
        await courier.checkout([carrier_order_id])
    except ShippingError:
        await _discard_cart_item(courier, carrier_order_id)
        raise

    # Paid from here on: the label row is written before anything else can fail.
    try:
        return await labels_crud.create_label(
            db,
            order_id=order_id,
            carrier_order_id=carrier_order_id,
            carrier_service_id=quote.carrier_service_id,
            service_name=quote.service_name,
            tracking_code=None,
            price=quote.price,
            currency=quote.currency,
            status=models.LABEL_PURCHASED,
        )
    except IntegrityError:
        await db.rollback()
        logging.error(f"Another process bought a label for order {order_id} first; cancelling {carrier_order_id}")
        try:
            await courier.cancel(carrier_order_id)
        except ShippingError as e:
            logging.error(f"Could not cancel duplicate shipment {carrier_order_id}: {e}")
        raise DuplicatePurchaseError(f"Order {order_id} already has an active label")


async def purchase_label(
    db: AsyncSession,
    courier: MelhorEnvioCourierService,
    order_id: int,
    quote: Quote,
    sender: Optional[SenderAddress] = None,
) -> models.Label:
    """
    Buys a label for `order_id` with a quote returned by the quote service.
    The service is priced again first and the label keeps the carrier's price.
    Fails with DuplicatePurchaseError while the order still has a label
    that was not cancelled.
    """
    _check_quote_age(quote)

    async with _order_lock(order_id):
        existing = await labels_crud.get_active_label_for_order(db, order_id)
        if existing:
            raise DuplicatePurchaseError(
                f"Order {order_id} already has label {existing.id} ({existing.status})",
                details={"order_id": order_id, "label_id": existing.id},
            )

        order = await orders_crud.get_order(db, order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")

        cart_item = address_service.cart_item_for_order(order, quote, sender)
        quote = await _confirm_quote(courier, order, quote, cart_item["from"]["postal_code"])

        cart = await courier.add_to_cart(cart_item)
        carrier_order_id = (cart or {}).get("id")
        if not carrier_order_id:
            raise CarrierRequestError("Carrier did not return a shipment id for the cart item", status_code=200, payload=cart)

        paid = asyncio.ensure_future(_checkout_and_record(db, courier, order_id, carrier_order_id, quote))
        try:
            label = await asyncio.shield(paid)
        except asyncio.CancelledError:
            # The carrier may charge anyway; let the checkout finish so the label gets recorded.
            await asyncio.wait([paid])
            if not paid.cancelled() and paid.exception() is not None:
                logging.error(f"Checkout of {carrier_order_id} for order {order_id} failed after cancellation: {paid.exception()}")
            raise

        try:
            await courier.generate([carrier_order_id])
            status = courier_service.parse_tracking(carrier_order_id, await courier.tracking([carrier_order_id]))
        except ShippingError as e:
            logging.warning(f"Label {label.id} was paid but generation/tracking failed, tracking sync will retry: {e}")
        else:
            if status and courier_service.apply_tracking_update(label, status):
                await db.commit()

        logging.info(f"Label {label.id} bought for order {order_id}: {quote.service_name} {quote.price} {quote.currency}, tracking {label.tracking_code}")
        return label


async def cancel_label(db: AsyncSession, courier: MelhorEnvioCourierService, label_id: int) -> models.Label:
    """Cancels a PURCHASED label at the carrier and locally."""
    label = await labels_crud.get_label(db, label_id)
    if not label:
        raise NotFoundError(f"Label {label_id} not found")

    async with _order_lock(label.order_id):
        await db.refresh(label)
        if not label_state.can_transition(label.status, models.LABEL_CANCELLED):
            raise InvalidStateTransitionError(
                f"Label {label.id} cannot be cancelled from {label.status}",
                details={"label_id": label.id, "from": label.status, "to": models.LABEL_CANCELLED},
            )

        data = await courier.cancel(label.carrier_order_id)
        result = (data or {}).get(label.carrier_order_id) if isinstance(data, dict) else None
        if isinstance(result, dict) and result.get("canceled") is False:
            raise CarrierRequestError(f"Carrier refused to cancel label {label.id}", status_code=200, payload=data)

        label_state.transition(label, models.LABEL_CANCELLED)
        await db.commit()
        await db.refresh(label)
        logging.info(f"Label {label.id} of order {label.order_id} cancelled")
        return label


async def get_label_print_url(db: AsyncSession, courier: MelhorEnvioCourierService, label_id: int) -> str:
    label = await labels_crud.get_label(db, label_id)
    if not label:
        raise NotFoundError(f"Label {label_id} not found")
    if label.status == models.LABEL_CANCELLED:
        raise ValidationError(f"Label {label_id} is cancelled")
    data = await courier.print_labels([label.carrier_order_id])
    url = (data or {}).get("url") if isinstance(data, dict) else None
    if not url:
        raise CarrierRequestError(f"Carrier did not return a print URL for label {label_id}", status_code=200, payload=data)
    return url


