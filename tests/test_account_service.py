from decimal import Decimal

import pytest

from services import account_service
from services.couriers.errors import CarrierRequestError, CarrierUnavailableError
from tests.fake_carrier import reply


@pytest.mark.asyncio
async def test_company_info_from_first_company(courier, carrier):
    carrier.on("GET", "/me/company", reply(200, {"data": [
        {"id": 7, "name": "Shopmi LTDA", "document": "12345678000190", "state_register": "123.456"},
    ]}))

    company = await account_service.get_company_info(courier)

    assert company.name == "Shopmi LTDA"
    assert company.document == "12345678000190"
    assert company.contract_number == "123.456"


@pytest.mark.asyncio
async def test_balance_is_fixed_point(courier, carrier):
    carrier.on("GET", "/me/balance", reply(200, {"balance": "152.305", "reserved": "0.00"}))

    balance = await account_service.get_balance(courier)

    assert balance.amount == Decimal("152.31")
    assert balance.currency == "BRL"


@pytest.mark.asyncio
async def test_unreadable_balance_is_a_carrier_error(courier, carrier):
    carrier.on("GET", "/me/balance", reply(200, {"balance": "n/a"}))

    with pytest.raises(CarrierRequestError):
        await account_service.get_balance(courier)


@pytest.mark.asyncio
async def test_preflight_needs_both_reads(courier, carrier):
    carrier.on("GET", "/me/company", reply(200, [{"name": "Shopmi"}]))
    carrier.on("GET", "/me/balance", reply(500))

    with pytest.raises(CarrierUnavailableError):
        await account_service.preflight(courier)
