# services/account_service.py

import logging
from typing import Any

from services.couriers.common import Balance, CompanyInfo
from services.couriers.melhor_envio import MelhorEnvioCourierService
from services.utils import carrier_money, normalize_currency


def _first(data: Any) -> dict:
    if isinstance(data, list):
        return data[0] if data else {}
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"][0] if data["data"] else {}
    return data or {}


async def get_company_info(courier: MelhorEnvioCourierService) -> CompanyInfo:
    """Point-in-time snapshot of the carrier account's company profile."""
    data = _first(await courier.company())
    return CompanyInfo(
        name=data.get("name") or data.get("company_name"),
        document=data.get("document"),
        contract_number=(
            data.get("contract_number")
            or data.get("contract")
            or data.get("state_register")
        ),
    )


async def get_balance(courier: MelhorEnvioCourierService) -> Balance:
    data = await courier.balance() or {}
    amount = data.get("balance", data.get("amount", 0))
    balance = Balance(amount=carrier_money(amount, data), currency=normalize_currency(data.get("currency")))
    logging.info(f"Carrier balance for account '{courier.account_key}': {balance.amount} {balance.currency}")
    return balance


async def preflight(courier: MelhorEnvioCourierService) -> dict:
    """Used by the diagnostics endpoint: both reads must succeed."""
    company = await get_company_info(courier)
    balance = await get_balance(courier)
    return {"company": company, "balance": balance}
