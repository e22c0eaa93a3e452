# services/quote_service.py

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from settings import settings
from services import address_service
from services.couriers.common import Quote, ShipmentRequest
from services.couriers.errors import CarrierRequestError, ShippingError, ValidationError
from services.couriers.melhor_envio import MelhorEnvioCourierService
from services.utils import carrier_money, normalize_currency, normalize_postal_code, to_money


def validate_shipment_request(request: ShipmentRequest):
    """Rejects requests the carrier could never price. Runs before any network call."""
    if not request.packages:
        raise ValidationError("A shipment needs at least one package")
    normalize_postal_code(request.origin.postal_code)
    normalize_postal_code(request.destination.postal_code)
    for index, package in enumerate(request.packages):
        if package.weight <= 0:
            raise ValidationError(f"Package {index + 1} must have a positive weight", details={"package": index})
        for dimension in ("height", "width", "length"):
            if getattr(package, dimension) <= 0:
                raise ValidationError(f"Package {index + 1} has a non-positive {dimension}", details={"package": index})
        if package.insured_value < 0:
            raise ValidationError(f"Package {index + 1} has a negative insured value", details={"package": index})


def build_calculate_payload(request: ShipmentRequest) -> Dict[str, Any]:
    payload = {
        "from": {"postal_code": normalize_postal_code(request.origin.postal_code)},
        "to": {"postal_code": normalize_postal_code(request.destination.postal_code)},
        "volumes": [
            {
                "width": float(p.width),
                "height": float(p.height),
                "length": float(p.length),
                "weight": float(p.weight),
            }
            for p in request.packages
        ],
        "options": {
            "insurance_value": float(sum((p.insured_value for p in request.packages), Decimal("0"))),
            "receipt": request.receipt,
            "own_hand": request.own_hand,
        },
    }
    if request.services:
        payload["services"] = request.services
    return payload


def _delivery_days(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logging.warning(f"Unreadable delivery time from the carrier: {value!r}")
        return None


def normalize_quote(option: Dict[str, Any]) -> Optional[Quote]:
    """
    Turns one carrier rate into a Quote; returns None for services that cannot serve the route.
    Rates the carrier sent without a usable id or price raise CarrierRequestError.
    """
    if not isinstance(option, dict) or option.get("error") or option.get("price") in (None, ""):
        return None
    try:
        carrier_service_id = int(option["id"])
    except (KeyError, TypeError, ValueError):
        raise CarrierRequestError(f"Carrier rate without a valid service id: {option.get('id')!r}", status_code=200, payload=option)
    company = option.get("company") or {}
    return Quote(
        carrier_service_id=carrier_service_id,
        service_name=str(option.get("name") or carrier_service_id),
        company_name=company.get("name") if isinstance(company, dict) else None,
        price=carrier_money(option.get("custom_price") or option["price"], option),
        currency=normalize_currency(option.get("currency")),
        estimated_days=_delivery_days(option.get("custom_delivery_time", option.get("delivery_time"))),
    )


def sort_quotes(quotes: List[Quote]) -> List[Quote]:
    """Cheapest first; on equal prices the faster service wins. Unknown delivery times go last."""
    return sorted(
        quotes,
        key=lambda q: (q.price, q.estimated_days is None, q.estimated_days or 0, q.carrier_service_id),
    )


async def get_quotes(courier: MelhorEnvioCourierService, request: ShipmentRequest) -> List[Quote]:
    """
    Prices a shipment. An empty list means no service covers the route;
    failures always raise.
    """
    validate_shipment_request(request)
    payload = build_calculate_payload(request)
    logging.info(f"Quoting shipment {payload['from']['postal_code']} -> {payload['to']['postal_code']} ({len(payload['volumes'])} volume(s))")

    data = await courier.calculate(payload)

    if isinstance(data, dict):
        # Asked for a single service, the carrier answers with that rate alone.
        if data.get("id") is not None:
            data = [data]
        else:
            message = data.get("error") or data.get("message") or "unexpected response"
            raise CarrierRequestError(f"Carrier rejected the quote request: {message}", status_code=200, payload=data)
    if not isinstance(data, list):
        raise CarrierRequestError("Unexpected quote response from the carrier", status_code=200, payload=data)

    quotes: List[Quote] = []
    malformed = 0
    for option in data:
        try:
            quote = normalize_quote(option)
        except CarrierRequestError as e:
            logging.warning(f"Skipping carrier rate: {e}")
            malformed += 1
            continue
        if quote is not None:
            quotes.append(quote)

    if data and malformed == len(data):
        raise CarrierRequestError("Carrier returned no readable rates", status_code=200, payload=data)
    skipped = len(data) - len(quotes) - malformed
    if skipped:
        logging.info(f"{skipped} carrier service(s) unavailable for this route")
    return sort_quotes(quotes)


def recommend_quote(quotes: List[Quote], shipping_paid: Decimal) -> Optional[Dict[str, Any]]:
    """The quote whose price is closest to what the customer paid for shipping."""
    if not quotes or shipping_paid <= 0:
        return None
    closest = min(quotes, key=lambda q: (abs(q.price - shipping_paid), q.price))
    return {
        "carrier_service_id": closest.carrier_service_id,
        "service_name": closest.service_name,
        "price": closest.price,
        "difference": closest.price - shipping_paid,
    }


async def get_quotes_for_orders(
    courier: MelhorEnvioCourierService,
    orders: List[Dict[str, Any]],
    from_postal_code: Optional[str] = None,
) -> Dict[str, Any]:
    """Quotes several storefront orders; one failing order does not stop the others."""
    results = []
    for order_data in orders:
        order_id = order_data.get("id") if isinstance(order_data, dict) else None
        order_name = order_data.get("name") if isinstance(order_data, dict) else None
        shipping_paid = to_money(0)
        quotes: List[Quote] = []
        error = None
        try:
            request = address_service.shipment_request_from_order_data(
                order_data, from_postal_code, services=settings.QUOTE_BATCH_SERVICES
            )
            shipping_paid = address_service.shipping_paid_from_order_data(order_data)
            quotes = await get_quotes(courier, request)
        except ShippingError as e:
            logging.error(f"Could not quote order {order_name or order_id}: {e}")
            error = e.message

        results.append({
            "order_id": order_id,
            "order_name": order_name,
            "shipping_paid_by_customer": shipping_paid,
            "quotes": quotes,
            "recommended_service": recommend_quote(quotes, shipping_paid),
            "error": error,
        })

    return {
        "results": results,
        "summary": {
            "total_orders": len(orders),
            "successful_calculations": sum(1 for r in results if r["quotes"]),
            "total_shipping_paid": sum((r["shipping_paid_by_customer"] for r in results), to_money(0)),
        },
    }
