import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from services.couriers.errors import CarrierRequestError, ValidationError

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")

CURRENCY_ALIASES = {"R$": "BRL", "BRL": "BRL", "": "BRL"}


def to_money(value: Any) -> Decimal:
    """Converts carrier amounts (usually strings such as "15.90") without going through float."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip().replace(",", "."))
        except (InvalidOperation, AttributeError):
            raise ValidationError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def carrier_money(value: Any, payload: Any = None) -> Decimal:
    """to_money for amounts the carrier sent us. A bad amount is a carrier error, not a caller one."""
    try:
        return to_money(value)
    except ValidationError:
        raise CarrierRequestError(f"Carrier sent an invalid amount: {value!r}", status_code=200, payload=payload)


def normalize_currency(value: Optional[str]) -> str:
    code = (value or "").strip().upper()
    return CURRENCY_ALIASES.get(code, code)


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def normalize_postal_code(value: Optional[str]) -> str:
    """A Brazilian CEP: exactly eight digits, with or without the dash."""
    digits = only_digits(value)
    if len(digits) != 8:
        raise ValidationError(f"Invalid postal code: {value!r}")
    return digits
