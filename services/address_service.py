# services/address_service.py

import logging
import math
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import models
from settings import settings, SenderAddress, DefaultVolume
from services.couriers.common import Address, Package, Quote, ShipmentRequest
from services.couriers.errors import ValidationError
from services.utils import normalize_postal_code, only_digits, to_money, ZERO_MONEY

STREET_NUMBER_RE = re.compile(r"^(.+),\s*(\d+).*$")


def split_street_number(address1: Optional[str], address2: Optional[str] = None) -> Tuple[str, str, str]:
    """
    Splits "Rua X, 123" into street and number.
    Returns (street, number, complement); the number falls back to address2 or "S/N".
    """
    full_address = (address1 or "").strip()
    match = STREET_NUMBER_RE.match(full_address)
    if match:
        return match.group(1).strip(), match.group(2), (address2 or "").strip()
    return full_address, (address2 or "").strip() or "S/N", ""


def default_package(total_quantity: int, insured_value: Decimal, volume: DefaultVolume = None) -> Package:
    """One box for the whole order, stacking `items_per_stack` products per layer."""
    volume = volume or settings.DEFAULT_VOLUME
    quantity = max(int(total_quantity or 0), 1)
    layers = math.ceil(quantity / volume.items_per_stack)
    return Package(
        weight=Decimal(str(volume.weight_per_item)) * quantity,
        height=Decimal(str(volume.height)) * layers,
        width=Decimal(str(volume.width)),
        length=Decimal(str(volume.length)),
        insured_value=insured_value,
    )


def _money_field(data: Optional[Dict[str, Any]]) -> Decimal:
    """Reads `{presentmentMoney: {amount}}` / `{shopMoney: {amount}}` blocks."""
    if not data:
        return ZERO_MONEY
    money = data.get("presentmentMoney") or data.get("shopMoney") or {}
    amount = money.get("amount")
    return to_money(amount) if amount not in (None, "") else ZERO_MONEY


def _line_item_nodes(order_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    line_items = order_data.get("lineItems") or {}
    if isinstance(line_items, list):
        return line_items
    return [edge.get("node") or {} for edge in line_items.get("edges") or []]


def shipment_request_from_order_data(order_data: Dict[str, Any], from_postal_code: Optional[str] = None, services: Optional[str] = None) -> ShipmentRequest:
    """
    Builds a typed ShipmentRequest from a storefront order payload.
    Anything the carrier cannot work with is rejected here, before any call.
    """
    if not isinstance(order_data, dict):
        raise ValidationError("Order payload must be an object")
    shipping_address = order_data.get("shippingAddress") or {}
    if not shipping_address.get("zip"):
        raise ValidationError(f"Order {order_data.get('name') or order_data.get('id')} has no shipping postal code")

    nodes = _line_item_nodes(order_data)
    total_quantity = 0
    insured_value = ZERO_MONEY
    for node in nodes:
        quantity = int(node.get("quantity") or 1)
        total_quantity += quantity
        insured_value += _money_field(node.get("originalUnitPriceSet")) * quantity

    if insured_value == ZERO_MONEY:
        insured_value = _money_field(order_data.get("totalPriceSet"))

    return ShipmentRequest(
        origin=Address(postal_code=normalize_postal_code(from_postal_code or settings.DEFAULT_FROM_POSTAL_CODE)),
        destination=Address(
            postal_code=normalize_postal_code(shipping_address.get("zip")),
            city=shipping_address.get("city"),
            state_abbr=shipping_address.get("provinceCode") or shipping_address.get("province"),
        ),
        packages=[default_package(total_quantity, insured_value)],
        services=services,
    )


def shipping_paid_from_order_data(order_data: Dict[str, Any]) -> Decimal:
    return _money_field(order_data.get("totalShippingPriceSet"))


def shipment_request_from_order(order: models.Order, from_postal_code: Optional[str] = None) -> ShipmentRequest:
    if not order.shipping_zip:
        raise ValidationError(f"Order {order.name} has no shipping postal code")
    total_quantity = sum(item.quantity or 1 for item in order.line_items)
    insured_value = sum((to_money(item.unit_price) * (item.quantity or 1) for item in order.line_items), ZERO_MONEY)
    if insured_value == ZERO_MONEY:
        insured_value = to_money(order.total_price or 0)
    return ShipmentRequest(
        origin=Address(postal_code=normalize_postal_code(from_postal_code or settings.DEFAULT_FROM_POSTAL_CODE)),
        destination=Address(
            postal_code=normalize_postal_code(order.shipping_zip),
            city=order.shipping_city,
            state_abbr=order.shipping_province,
        ),
        packages=[default_package(total_quantity, insured_value)],
    )


# --- Cart payloads for label purchase ---

def sender_payload(sender: Optional[SenderAddress]) -> Dict[str, Any]:
    if sender is None:
        raise ValidationError("Sender address is not configured (SENDER)")
    payload = {
        "name": sender.name,
        "phone": only_digits(sender.phone),
        "email": sender.email,
        "address": sender.address,
        "complement": sender.complement,
        "number": sender.number,
        "district": sender.district,
        "city": sender.city,
        "state_abbr": sender.state_abbr,
        "country_id": "BR",
        "postal_code": normalize_postal_code(sender.postal_code),
        "note": sender.note,
    }
    # Company document (CNPJ) or personal document (CPF), never both.
    if sender.company_document:
        payload["company_document"] = only_digits(sender.company_document)
    elif sender.document:
        payload["document"] = only_digits(sender.document)
    return payload


def recipient_payload(order: models.Order) -> Dict[str, Any]:
    document = only_digits(order.customer_document)
    if len(document) not in (11, 14):
        raise ValidationError(f"Order {order.name} has no valid customer document (CPF/CNPJ)")
    street, number, complement = split_street_number(order.shipping_address1, order.shipping_address2)
    if not street:
        raise ValidationError(f"Order {order.name} has no shipping street")
    payload = {
        "name": (order.customer_name or "").strip() or "Cliente",
        "phone": only_digits(order.customer_phone),
        "email": order.customer_email or "",
        "address": street,
        "complement": complement,
        "number": number,
        "district": order.shipping_district or order.shipping_city or "Centro",
        "city": order.shipping_city or "",
        "state_abbr": order.shipping_province,
        "country_id": "BR",
        "postal_code": normalize_postal_code(order.shipping_zip),
        "note": "",
    }
    payload["company_document" if len(document) == 14 else "document"] = document
    return payload


def cart_item_for_order(order: models.Order, quote: Quote, sender: Optional[SenderAddress] = None) -> Dict[str, Any]:
    """The `/me/cart` body that buys `quote` for `order`."""
    request = shipment_request_from_order(order)
    package = request.packages[0]
    products = [
        {"name": item.name or "Produto", "quantity": item.quantity or 1, "unitary_value": float(to_money(item.unit_price))}
        for item in order.line_items
    ]
    if not products:
        logging.warning(f"Order {order.name} has no line items; declaring a single generic product")
        products = [{"name": "Produto", "quantity": 1, "unitary_value": float(package.insured_value)}]

    return {
        "service": quote.carrier_service_id,
        "from": sender_payload(sender if sender is not None else settings.SENDER),
        "to": recipient_payload(order),
        "products": products,
        "volumes": [{
            "height": float(package.height),
            "width": float(package.width),
            "length": float(package.length),
            "weight": float(package.weight),
        }],
        "options": {
            "insurance_value": float(package.insured_value),
            "receipt": False,
            "own_hand": False,
            "reverse": False,
            "non_commercial": True, # Content declaration instead of an invoice
            "platform": "Shopmi",
            "tags": [{"tag": order.name, "url": None}],
        },
    }
